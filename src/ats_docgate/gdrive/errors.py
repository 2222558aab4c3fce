"""Custom exception classes for the Google Drive integration.

This module defines the error taxonomy for Drive API calls and for the
bearer-token session that authorizes them. Callers usually only need to
distinguish three families:

- AuthenticationError subclasses: the session is dead, the user must reconnect.
- RemoteUnavailable: transport failure or a 5xx from Drive.
- RemoteRequestError / UploadFailed: Drive answered, but refused the request.
"""

from typing import Optional


class DriveError(Exception):
    """Base class for every error raised by the gdrive package."""


class AuthenticationError(DriveError):
    """Raised when the Drive session can no longer authorize requests.

    Every subclass means the same thing to the user: the Google Drive
    connection must be re-established from the settings screen.
    """

    def __init__(self, message: str, auth_method: Optional[str] = "bearer") -> None:
        self.auth_method = auth_method
        super().__init__(message)


class AuthExpired(AuthenticationError):
    """Raised when a request is still unauthorized after one token refresh.

    Also raised when a request is attempted on a session that holds no
    access token at all.
    """


class NoRefreshToken(AuthenticationError):
    """Raised when a refresh is needed but the session holds no refresh token."""


class RefreshRejected(AuthenticationError):
    """Raised when the token endpoint rejects the refresh token.

    This typically occurs when:
    - The user revoked the application's access
    - The refresh token expired (unused for a long period)
    - The OAuth client credentials were rotated on the server
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RemoteUnavailable(DriveError):
    """Raised when Drive (or the token endpoint) cannot be reached.

    Covers transport errors, timeouts and 5xx responses. It is never
    retried automatically.
    """

    def __init__(
        self, message: str, status_code: Optional[int] = None, url: Optional[str] = None
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class RemoteRequestError(DriveError):
    """Raised when Drive answers a request with a non-auth 4xx status."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class RemoteNotFound(RemoteRequestError):
    """Raised when a file or folder id does not exist (HTTP 404)."""


class DriveAccessError(RemoteRequestError):
    """Raised when the connected account may not touch a resource (HTTP 403).

    With the drive.file scope the application only sees files it created,
    so a folder created by hand in the Drive UI is reported here as well.
    """


class UploadFailed(DriveError):
    """Raised when creating a file in Drive returns a non-2xx response.

    The status code and response body are kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        folder_id: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.folder_id = folder_id
        self.file_name = file_name
        super().__init__(message)
