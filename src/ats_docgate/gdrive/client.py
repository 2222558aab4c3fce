"""Thin async client over the Google Drive v3 REST surface.

Every call attaches ``Authorization: Bearer <token>`` with the token read
from the shared TokenSession at dispatch time. A 401 triggers exactly one
refresh and one retry; a second 401 ends in AuthExpired.

Example:
    from ats_docgate.gdrive.client import RemoteObjectClient

    async with RemoteObjectClient(session) as client:
        files = await client.list_files("name = 'CV.pdf' and trashed = false")
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from ats_docgate.gdrive.auth import TokenSession
from ats_docgate.gdrive.config import ApiConfig
from ats_docgate.gdrive.errors import (
    AuthExpired,
    DriveAccessError,
    RemoteNotFound,
    RemoteRequestError,
    RemoteUnavailable,
)

# Set up structured logging
logger = logging.getLogger(__name__)


def escape_query_value(value: str) -> str:
    """Escape a literal for use inside single quotes in a Drive query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class RemoteObjectClient:
    """Authorized HTTP access to Drive files and folders.

    The client has no business logic. It knows the four Drive operations
    the registries need (list by query, create, get by id, delete), the
    multipart upload endpoint, and the 401 refresh-and-retry policy.

    Attributes:
        session: The TokenSession every request reads its token from.
    """

    # Number of retries after a 401, each preceded by one token refresh
    MAX_AUTH_RETRIES = 1

    # Page size for list calls
    PAGE_SIZE = 100

    def __init__(
        self,
        session: TokenSession,
        http_client: Optional[httpx.AsyncClient] = None,
        api_config: Optional[ApiConfig] = None,
    ) -> None:
        """Initialize the client.

        Args:
            session: Token session shared by every request.
            http_client: Optional httpx client. When omitted the client
                creates and owns one.
            api_config: Endpoint configuration. Defaults to Google's URLs.
        """
        self._session = session
        self._api = api_config or ApiConfig()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self._api.timeout_seconds)

    async def __aenter__(self) -> "RemoteObjectClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    @property
    def session(self) -> TokenSession:
        """Token session used by this client."""
        return self._session

    @property
    def api_config(self) -> ApiConfig:
        """Endpoint configuration used by this client."""
        return self._api

    def api_url(self, path: str) -> str:
        """Build a URL on the metadata API (``/drive/v3``)."""
        return f"{self._api.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def upload_url(self, path: str) -> str:
        """Build a URL on the upload API (``/upload/drive/v3``)."""
        return f"{self._api.upload_base_url.rstrip('/')}/{path.lstrip('/')}"

    # ------------------------------------------------------------------
    # Core request path
    # ------------------------------------------------------------------

    async def call(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        raise_for_status: bool = True,
    ) -> httpx.Response:
        """Send an authorized request with the single refresh-and-retry policy.

        Args:
            method: HTTP method.
            url: Absolute URL (see api_url / upload_url).
            params: Query string parameters.
            json_body: JSON request body.
            files: Multipart parts, passed through to httpx.
            raise_for_status: If False, non-2xx responses other than 401 are
                returned to the caller instead of raised.

        Returns:
            The httpx response.

        Raises:
            AuthExpired: If the session has no token, or the retried request
                is unauthorized again.
            NoRefreshToken, RefreshRejected: If the refresh itself fails.
            RemoteUnavailable: On transport errors, or 5xx when raising.
            RemoteRequestError: On other 4xx when raising.
        """
        if self._session.is_expired(self._api.expiry_skew_seconds) and self._session.refresh_token:
            logger.debug("Access token past its expiry, refreshing before dispatch")
            await self._session.refresh(stale_token=self._session.access_token)

        for attempt in range(self.MAX_AUTH_RETRIES + 1):
            token = self._session.access_token
            if token is None:
                raise AuthExpired("Not connected to Google Drive. Please reconnect your account.")

            response = await self._send(method, url, token, params, json_body, files)
            if response.status_code != 401:
                if raise_for_status:
                    self._raise_for_status(response, method, url)
                return response

            if attempt == self.MAX_AUTH_RETRIES:
                break

            logger.info(
                "Drive returned 401, refreshing access token",
                extra={"method": method, "url": url},
            )
            await self._session.refresh(stale_token=token)

        logger.error(
            "Drive request unauthorized after token refresh",
            extra={"method": method, "url": url},
        )
        raise AuthExpired(
            "Google Drive rejected the refreshed access token. "
            "Please reconnect your account."
        )

    async def _send(
        self,
        method: str,
        url: str,
        token: str,
        params: Optional[Dict[str, Any]],
        json_body: Optional[Dict[str, Any]],
        files: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        """Dispatch one HTTP request, mapping transport failures."""
        headers = {"Authorization": f"Bearer {token}"}
        try:
            return await self._http.request(
                method,
                url,
                params=params,
                json=json_body,
                files=files,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(
                "Drive request failed in transport",
                extra={"method": method, "url": url, "error": str(e), "error_type": type(e).__name__},
            )
            raise RemoteUnavailable(f"Google Drive unreachable: {e}", url=url) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, method: str, url: str) -> None:
        """Map a non-2xx Drive response to the error taxonomy."""
        status = response.status_code
        if response.is_success:
            return

        body = response.text
        logger.error(
            "Drive request failed",
            extra={"method": method, "url": url, "status_code": status, "body": body[:500]},
        )

        if status >= 500:
            raise RemoteUnavailable(
                f"Google Drive returned HTTP {status}", status_code=status, url=url
            )
        if status == 404:
            raise RemoteNotFound(f"Drive resource not found: {url}", status_code=status, body=body)
        if status == 403:
            raise DriveAccessError(
                "Permission denied by Google Drive. With the drive.file scope the "
                "application can only access files and folders it created.",
                status_code=status,
                body=body,
            )
        raise RemoteRequestError(
            f"Google Drive returned HTTP {status}", status_code=status, body=body
        )

    # ------------------------------------------------------------------
    # Drive operations
    # ------------------------------------------------------------------

    async def list_files(
        self,
        query: str,
        fields: str = "id,name,mimeType,parents,modifiedTime,size",
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List every file matching a Drive query, following page tokens.

        Args:
            query: Drive query, e.g. ``"'abc' in parents and trashed = false"``.
            fields: Per-file field projection.
            order_by: Optional Drive orderBy clause.

        Returns:
            List of file resource dictionaries.
        """
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {
                "q": query,
                "fields": f"nextPageToken,files({fields})",
                "pageSize": self.PAGE_SIZE,
            }
            if order_by:
                params["orderBy"] = order_by
            if page_token:
                params["pageToken"] = page_token

            response = await self.call("GET", self.api_url("files"), params=params)
            data = response.json()
            items.extend(data.get("files", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return items

    async def get(
        self,
        file_id: str,
        fields: str = "id,name,mimeType,parents,trashed,modifiedTime,size",
    ) -> Dict[str, Any]:
        """Fetch one file or folder resource by id."""
        response = await self.call("GET", self.api_url(f"files/{file_id}"), params={"fields": fields})
        return dict(response.json())

    async def create(
        self,
        metadata: Dict[str, Any],
        fields: str = "id,name,mimeType,parents",
    ) -> Dict[str, Any]:
        """Create a metadata-only resource (folders)."""
        response = await self.call(
            "POST", self.api_url("files"), params={"fields": fields}, json_body=metadata
        )
        return dict(response.json())

    async def upload(
        self,
        metadata: Dict[str, Any],
        content: bytes,
        mime_type: str,
        fields: str = "id,name,mimeType,parents,modifiedTime,size,webViewLink,webContentLink",
    ) -> httpx.Response:
        """Create a file with content in one multipart request.

        The raw response is returned so the caller can decide how to report
        a non-2xx status. Authorization failures are still handled here.
        """
        files = {
            "metadata": (None, json.dumps(metadata).encode("utf-8"), "application/json; charset=UTF-8"),
            "file": (metadata.get("name", "file"), content, mime_type),
        }
        return await self.call(
            "POST",
            self.upload_url("files"),
            params={"uploadType": "multipart", "fields": fields},
            files=files,
            raise_for_status=False,
        )

    async def delete(self, file_id: str) -> None:
        """Delete a file or folder permanently."""
        await self.call("DELETE", self.api_url(f"files/{file_id}"))

    async def get_user_info(self) -> Dict[str, str]:
        """Return the connected account's email and display name."""
        response = await self.call("GET", self._api.userinfo_url)
        data = response.json()
        email = data.get("email", "")
        return {"email": email, "name": data.get("name") or email}
