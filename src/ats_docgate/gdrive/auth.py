"""Bearer-token session for the Google Drive REST API.

The OAuth authorization-code exchange happens elsewhere (the backend's
/api/auth/google routes). What reaches this module is its result: an access
token, usually a refresh token, and sometimes an expiry. TokenSession owns
those values for the lifetime of the connection and knows how to trade the
refresh token for a new access token at the backend's refresh endpoint.

Example:
    from ats_docgate.gdrive.auth import TokenSession

    session = TokenSession.from_config(drive_config)
    token = session.access_token          # read at dispatch time
    await session.refresh(stale_token=token)
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from ats_docgate.gdrive.config import DriveConfig
from ats_docgate.gdrive.errors import NoRefreshToken, RefreshRejected, RemoteUnavailable

# Set up structured logging
logger = logging.getLogger(__name__)


class TokenSession:
    """Holds the current Drive access token and refreshes it in place.

    The session is the single shared cell every in-flight request reads its
    token from. Requests must read ``access_token`` right before they are
    dispatched and never keep a private copy across a refresh.

    Refreshes are serialized with an asyncio.Lock. When several requests get
    a 401 with the same stale token, the first one to take the lock performs
    the refresh and the others reuse its result.

    Attributes:
        access_token: Current access token, or None when disconnected.
        refresh_token: Refresh token, or None if the provider issued none.
        expiry: When the access token expires, if known.
    """

    def __init__(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
        expiry: Optional[datetime] = None,
        token_endpoint: str = "http://localhost:5000/api/auth/google/refresh",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
        on_refresh: Optional[Callable[["TokenSession"], None]] = None,
    ) -> None:
        """Initialize the session.

        Args:
            access_token: Access token from the OAuth exchange.
            refresh_token: Refresh token from the OAuth exchange.
            expiry: Expiry of the access token, if the provider sent one.
            token_endpoint: URL of the backend refresh endpoint.
            http_client: Optional shared httpx client used for refresh calls.
            timeout_seconds: Timeout for refresh calls without a shared client.
            on_refresh: Called after every successful refresh, e.g. to persist
                the new tokens. Errors it raises are logged, not propagated.
        """
        self._access_token = access_token or None
        self._refresh_token = refresh_token or None
        self._expiry = expiry
        self._token_endpoint = token_endpoint
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds
        self._on_refresh = on_refresh
        self._lock = asyncio.Lock()
        self._refresh_count = 0

    @classmethod
    def from_config(
        cls,
        config: DriveConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        on_refresh: Optional[Callable[["TokenSession"], None]] = None,
    ) -> "TokenSession":
        """Seed a session from the persisted connection settings.

        A connection marked as not connected produces an empty session; any
        request made with it fails with AuthExpired.
        """
        conn = config.connection
        if not conn.connected:
            return cls(
                access_token=None,
                token_endpoint=config.api.token_endpoint,
                http_client=http_client,
                timeout_seconds=config.api.timeout_seconds,
                on_refresh=on_refresh,
            )
        return cls(
            access_token=conn.access_token,
            refresh_token=conn.refresh_token,
            expiry=conn.token_expiry,
            token_endpoint=config.api.token_endpoint,
            http_client=http_client,
            timeout_seconds=config.api.timeout_seconds,
            on_refresh=on_refresh,
        )

    @property
    def access_token(self) -> Optional[str]:
        """Current access token (None when disconnected)."""
        return self._access_token

    @property
    def refresh_token(self) -> Optional[str]:
        """Current refresh token."""
        return self._refresh_token

    @property
    def expiry(self) -> Optional[datetime]:
        """Expiry of the current access token, if known."""
        return self._expiry

    @property
    def is_connected(self) -> bool:
        """True while the session holds an access token."""
        return self._access_token is not None

    @property
    def refresh_count(self) -> int:
        """Number of successful refreshes performed by this session."""
        return self._refresh_count

    def is_expired(self, skew_seconds: int = 0) -> bool:
        """Return True if the known expiry has passed.

        Sessions without an expiry never report themselves expired; the
        first 401 from Drive is what triggers their refresh.
        """
        if self._expiry is None:
            return False
        now = datetime.now(timezone.utc) if self._expiry.tzinfo else datetime.now()
        return now + timedelta(seconds=skew_seconds) >= self._expiry

    def set_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        expiry: Optional[datetime] = None,
    ) -> None:
        """Install tokens obtained from a fresh OAuth exchange.

        The refresh token is only replaced when a new one is given.
        """
        self._access_token = access_token
        if refresh_token:
            self._refresh_token = refresh_token
        self._expiry = expiry

    def clear(self) -> None:
        """Drop all tokens, forcing a full re-authentication."""
        self._access_token = None
        self._refresh_token = None
        self._expiry = None

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        """Exchange the refresh token for a new access token.

        Args:
            stale_token: The token the caller's failed request was sent with.
                If another coroutine already replaced it, no second refresh
                is made and the current token is returned.

        Returns:
            The new access token.

        Raises:
            NoRefreshToken: If the session holds no refresh token.
            RefreshRejected: If the token endpoint rejects the refresh token.
            RemoteUnavailable: If the token endpoint cannot be reached or
                answers with a 5xx. The session is kept in that case.
        """
        async with self._lock:
            if (
                stale_token is not None
                and self._access_token is not None
                and self._access_token != stale_token
            ):
                logger.debug("Access token already refreshed by a concurrent request")
                return self._access_token

            if not self._refresh_token:
                self.clear()
                logger.error("No refresh token available, Drive session cleared")
                raise NoRefreshToken(
                    "No refresh token available. Please reconnect your Google Drive account."
                )

            try:
                response = await self._post_refresh({"refreshToken": self._refresh_token})
            except httpx.HTTPError as e:
                logger.error(
                    "Token endpoint unreachable",
                    extra={"error": str(e), "token_endpoint": self._token_endpoint},
                )
                raise RemoteUnavailable(
                    f"Token endpoint unreachable: {e}", url=self._token_endpoint
                ) from e

            if response.status_code >= 500:
                logger.error(
                    "Token endpoint failed",
                    extra={"status_code": response.status_code, "token_endpoint": self._token_endpoint},
                )
                raise RemoteUnavailable(
                    f"Token endpoint returned HTTP {response.status_code}",
                    status_code=response.status_code,
                    url=self._token_endpoint,
                )

            if not response.is_success:
                self.clear()
                logger.error(
                    "Refresh token rejected, Drive session cleared",
                    extra={"status_code": response.status_code},
                )
                raise RefreshRejected(
                    f"Token refresh rejected with HTTP {response.status_code}. "
                    "Please reconnect your Google Drive account.",
                    status_code=response.status_code,
                )

            try:
                data = response.json()
                new_access_token = data["accessToken"]
            except (ValueError, KeyError, TypeError) as e:
                self.clear()
                raise RefreshRejected(
                    f"Token endpoint returned an unusable response: {e}",
                    status_code=response.status_code,
                ) from e

            # Single swap point: every request dispatched from here on sees the new token
            self._access_token = new_access_token
            if data.get("refreshToken"):
                self._refresh_token = data["refreshToken"]
            self._expiry = _parse_token_expiry(data.get("tokenExpiry"))
            self._refresh_count += 1

            logger.info(
                "Refreshed Drive access token",
                extra={"refresh_count": self._refresh_count},
            )

            if self._on_refresh is not None:
                # Token already swapped; persistence errors are logged only
                try:
                    self._on_refresh(self)
                except Exception as e:
                    logger.warning(
                        "Could not persist refreshed Drive tokens",
                        extra={"error": str(e), "error_type": type(e).__name__},
                    )

            return new_access_token

    async def _post_refresh(self, payload: Dict[str, Any]) -> httpx.Response:
        """POST the refresh payload to the token endpoint."""
        if self._http_client is not None:
            return await self._http_client.post(self._token_endpoint, json=payload)

        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            return await client.post(self._token_endpoint, json=payload)


def _parse_token_expiry(value: Any) -> Optional[datetime]:
    """Parse the ISO 8601 tokenExpiry returned by the refresh endpoint."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
