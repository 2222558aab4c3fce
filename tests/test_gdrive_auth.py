"""Unit tests for the Google Drive token session.

Tests refresh success and failure handling, concurrent refresh dedupe and
seeding from the persisted connection settings.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from ats_docgate.gdrive.auth import TokenSession
from ats_docgate.gdrive.config import DriveConfig
from ats_docgate.gdrive.errors import (
    AuthenticationError,
    NoRefreshToken,
    RefreshRejected,
    RemoteUnavailable,
)

from drive_fakes import TOKEN_URL, FakeDrive

# -----------------------------------------------------------------------------
# Test refresh
# -----------------------------------------------------------------------------


class TestRefresh:
    """Tests for TokenSession.refresh."""

    @pytest.mark.asyncio
    async def test_refresh_swaps_access_token(self, session: TokenSession, fake_drive: FakeDrive) -> None:
        """A successful refresh installs the new token and keeps the refresh token."""
        new_token = await session.refresh()

        assert new_token == "token-2"
        assert session.access_token == "token-2"
        assert session.refresh_token == "refresh-1"
        assert session.refresh_count == 1
        assert fake_drive.token_requests == 1

    @pytest.mark.asyncio
    async def test_refresh_replaces_rotated_refresh_token(self) -> None:
        """A refresh token returned by the endpoint replaces the old one."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "accessToken": "new-access",
                    "refreshToken": "new-refresh",
                    "tokenExpiry": "2030-01-01T00:00:00Z",
                },
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        session = TokenSession("old", "old-refresh", token_endpoint=TOKEN_URL, http_client=client)

        await session.refresh()

        assert session.access_token == "new-access"
        assert session.refresh_token == "new-refresh"
        assert session.expiry == datetime(2030, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_no_refresh_token_clears_session(self, http_client: httpx.AsyncClient) -> None:
        """Refreshing without a refresh token raises NoRefreshToken and clears the session."""
        session = TokenSession("token-1", None, token_endpoint=TOKEN_URL, http_client=http_client)

        with pytest.raises(NoRefreshToken):
            await session.refresh()

        assert session.access_token is None
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_rejected_refresh_token_clears_session(
        self, http_client: httpx.AsyncClient, fake_drive: FakeDrive
    ) -> None:
        """A 4xx from the token endpoint raises RefreshRejected and clears both tokens."""
        session = TokenSession("token-1", "revoked", token_endpoint=TOKEN_URL, http_client=http_client)

        with pytest.raises(RefreshRejected) as exc_info:
            await session.refresh()

        assert exc_info.value.status_code == 401
        assert isinstance(exc_info.value, AuthenticationError)
        assert session.access_token is None
        assert session.refresh_token is None

    @pytest.mark.asyncio
    async def test_token_endpoint_outage_keeps_session(
        self, session: TokenSession, fake_drive: FakeDrive
    ) -> None:
        """A 5xx from the token endpoint is RemoteUnavailable and the tokens are kept."""
        fake_drive.token_status = 503

        with pytest.raises(RemoteUnavailable):
            await session.refresh()

        assert session.access_token == "token-1"
        assert session.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_malformed_response_is_rejected(self) -> None:
        """A 2xx answer without accessToken is treated as a rejected refresh."""
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))
        )
        session = TokenSession("old", "refresh", token_endpoint=TOKEN_URL, http_client=client)

        with pytest.raises(RefreshRejected):
            await session.refresh()

        assert session.access_token is None

    @pytest.mark.asyncio
    async def test_on_refresh_callback_receives_session(self, http_client: httpx.AsyncClient) -> None:
        """The on_refresh hook runs after the swap."""
        seen = []
        session = TokenSession(
            "token-1",
            "refresh-1",
            token_endpoint=TOKEN_URL,
            http_client=http_client,
            on_refresh=lambda s: seen.append(s.access_token),
        )

        await session.refresh()

        assert seen == ["token-2"]

    @pytest.mark.asyncio
    async def test_failing_on_refresh_keeps_new_token(self, http_client: httpx.AsyncClient) -> None:
        """An error from the on_refresh hook is logged and the refresh still succeeds."""

        def broken_save(session: TokenSession) -> None:
            raise OSError("disk full")

        session = TokenSession(
            "token-1",
            "refresh-1",
            token_endpoint=TOKEN_URL,
            http_client=http_client,
            on_refresh=broken_save,
        )

        new_token = await session.refresh()

        assert new_token == "token-2"
        assert session.access_token == "token-2"
        assert session.refresh_count == 1


# -----------------------------------------------------------------------------
# Test concurrent refresh
# -----------------------------------------------------------------------------


class TestConcurrentRefresh:
    """Tests for refresh serialization across coroutines."""

    @pytest.mark.asyncio
    async def test_same_stale_token_refreshes_once(
        self, session: TokenSession, fake_drive: FakeDrive
    ) -> None:
        """Coroutines failing with the same stale token share one refresh."""
        results = await asyncio.gather(
            *(session.refresh(stale_token="token-1") for _ in range(5))
        )

        assert fake_drive.token_requests == 1
        assert set(results) == {"token-2"}
        assert session.refresh_count == 1

    @pytest.mark.asyncio
    async def test_refresh_without_stale_token_always_refreshes(
        self, session: TokenSession, fake_drive: FakeDrive
    ) -> None:
        """An explicit refresh (no stale token) always calls the endpoint."""
        await session.refresh()
        await session.refresh()

        assert fake_drive.token_requests == 2
        assert session.access_token == "token-3"


# -----------------------------------------------------------------------------
# Test expiry and seeding
# -----------------------------------------------------------------------------


class TestSessionState:
    """Tests for expiry checks and construction from config."""

    def test_is_expired_without_expiry(self) -> None:
        """Sessions with unknown expiry never report expired."""
        assert TokenSession("t").is_expired() is False

    def test_is_expired_with_skew(self) -> None:
        """The skew makes a token expiring soon count as expired."""
        expiry = datetime.now(timezone.utc) + timedelta(seconds=30)
        session = TokenSession("t", expiry=expiry)

        assert session.is_expired() is False
        assert session.is_expired(skew_seconds=60) is True

    def test_from_config_connected(self) -> None:
        """A connected configuration seeds tokens and endpoint."""
        config = DriveConfig.from_dict({
            "api": {"token_endpoint": "https://ats.example.com/refresh"},
            "connection": {
                "connected": True,
                "access_token": "stored-access",
                "refresh_token": "stored-refresh",
                "token_expiry": "2030-01-01T00:00:00Z",
            },
        })

        session = TokenSession.from_config(config)

        assert session.access_token == "stored-access"
        assert session.refresh_token == "stored-refresh"
        assert session.expiry == datetime(2030, 1, 1, tzinfo=timezone.utc)
        assert session.is_connected

    def test_from_config_disconnected(self) -> None:
        """A disconnected configuration produces an empty session."""
        config = DriveConfig.from_dict({
            "connection": {"connected": False, "access_token": "leftover"},
        })

        session = TokenSession.from_config(config)

        assert session.access_token is None
        assert not session.is_connected

    def test_set_tokens_keeps_refresh_token_when_none_given(self) -> None:
        """set_tokens only replaces the refresh token when a new one is given."""
        session = TokenSession("a", "r")

        session.set_tokens("b")

        assert session.access_token == "b"
        assert session.refresh_token == "r"

    def test_clear(self) -> None:
        session = TokenSession("a", "r", expiry=datetime.now(timezone.utc))

        session.clear()

        assert session.access_token is None
        assert session.refresh_token is None
        assert session.expiry is None
