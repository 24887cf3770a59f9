"""Tests for the Spotify Accounts API client against a local fake token endpoint."""

import base64
import time
from typing import Any, AsyncIterator
from urllib.parse import parse_qs, urlparse

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as FakeServer

from spotify_proxy.auth.exceptions import TokenExchangeError
from spotify_proxy.auth.oauth_client import ClientToken, SpotifyAuthClient, TokenResponse


class FakeAccounts:
    """Records token requests and replies with queued responses."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.responses: list[tuple[int, dict]] = []

    async def handle_token(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.requests.append(
            {
                "authorization": request.headers.get("Authorization"),
                "content_type": request.content_type,
                "form": dict(form),
            }
        )
        status, body = self.responses.pop(0) if self.responses else (200, {"access_token": "T"})
        return web.json_response(body, status=status)


@pytest.fixture
async def fake_accounts() -> AsyncIterator[tuple[FakeAccounts, FakeServer]]:
    fake = FakeAccounts()
    app = web.Application()
    app.router.add_post("/api/token", fake.handle_token)
    server = FakeServer(app)
    await server.start_server()
    yield fake, server
    await server.close()


@pytest.fixture
async def client(fake_accounts: tuple[FakeAccounts, FakeServer]) -> AsyncIterator[SpotifyAuthClient]:
    _, server = fake_accounts
    auth = SpotifyAuthClient(
        client_id="my-client",
        client_secret="my-secret",
        redirect_uri="http://localhost:8080/callback",
        accounts_url=str(server.make_url("/")),
        timeout=5.0,
    )
    yield auth
    await auth.close()


class TestTokenResponse:
    """Tests for token response parsing."""

    def test_from_dict(self) -> None:
        response = TokenResponse.from_dict(
            {"access_token": "A", "refresh_token": "R", "expires_in": 3600, "scope": "s"}
        )

        assert response.access_token == "A"
        assert response.refresh_token == "R"
        assert response.expires_in == 3600

    def test_missing_refresh_token_is_none(self) -> None:
        assert TokenResponse.from_dict({"access_token": "A"}).refresh_token is None
        assert TokenResponse.from_dict({"access_token": "A", "refresh_token": ""}).refresh_token is None

    def test_missing_access_token_raises(self) -> None:
        with pytest.raises(TokenExchangeError):
            TokenResponse.from_dict({"token_type": "Bearer"})


class TestClientToken:
    """Tests for the app-only token expiry check."""

    def test_empty_token_is_expired(self) -> None:
        assert ClientToken().is_expired() is True

    def test_valid_token(self) -> None:
        token = ClientToken(token="T", expires_at=time.time() + 3600)

        assert token.is_expired() is False

    def test_within_buffer_is_expired(self) -> None:
        token = ClientToken(token="T", expires_at=time.time() + 30)

        assert token.is_expired(buffer_s=60) is True


class TestAuthorizationUrl:
    """Tests for the login redirect URL."""

    def test_contains_oauth_params(self) -> None:
        auth = SpotifyAuthClient("my-client", "my-secret", "http://localhost:8080/callback")

        url = urlparse(auth.get_authorization_url("state-123"))
        params = parse_qs(url.query)

        assert url.netloc == "accounts.spotify.com"
        assert url.path == "/authorize"
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["my-client"]
        assert params["redirect_uri"] == ["http://localhost:8080/callback"]
        assert params["state"] == ["state-123"]
        assert "user-modify-playback-state" in params["scope"][0].split(" ")


class TestTokenExchange:
    """Tests for token endpoint exchanges."""

    async def test_authorization_code(
        self, client: SpotifyAuthClient, fake_accounts: tuple[FakeAccounts, FakeServer]
    ) -> None:
        fake, _ = fake_accounts
        fake.responses.append((200, {"access_token": "A", "refresh_token": "R"}))

        response = await client.exchange_authorization_code("the-code")

        assert response.access_token == "A"
        assert response.refresh_token == "R"
        sent = fake.requests[0]
        assert sent["form"] == {
            "grant_type": "authorization_code",
            "code": "the-code",
            "redirect_uri": "http://localhost:8080/callback",
        }
        assert sent["content_type"] == "application/x-www-form-urlencoded"

    async def test_uses_basic_auth(
        self, client: SpotifyAuthClient, fake_accounts: tuple[FakeAccounts, FakeServer]
    ) -> None:
        fake, _ = fake_accounts

        await client.exchange_refresh_token("R")

        expected = base64.b64encode(b"my-client:my-secret").decode("ascii")
        assert fake.requests[0]["authorization"] == f"Basic {expected}"

    async def test_refresh_token(
        self, client: SpotifyAuthClient, fake_accounts: tuple[FakeAccounts, FakeServer]
    ) -> None:
        fake, _ = fake_accounts
        fake.responses.append((200, {"access_token": "B", "expires_in": 3600}))

        response = await client.exchange_refresh_token("R")

        assert response.access_token == "B"
        assert response.refresh_token is None
        assert fake.requests[0]["form"] == {"grant_type": "refresh_token", "refresh_token": "R"}

    async def test_rejected_refresh_raises(
        self, client: SpotifyAuthClient, fake_accounts: tuple[FakeAccounts, FakeServer]
    ) -> None:
        fake, _ = fake_accounts
        fake.responses.append(
            (400, {"error": "invalid_grant", "error_description": "Refresh token revoked"})
        )

        with pytest.raises(TokenExchangeError) as exc_info:
            await client.exchange_refresh_token("R")

        assert exc_info.value.status == 400
        assert exc_info.value.error_code == "invalid_grant"
        assert "Refresh token revoked" in str(exc_info.value)

    async def test_client_credentials_cached(
        self, client: SpotifyAuthClient, fake_accounts: tuple[FakeAccounts, FakeServer]
    ) -> None:
        fake, _ = fake_accounts
        fake.responses.append((200, {"access_token": "APP", "expires_in": 3600}))

        first = await client.get_client_credentials_token()
        second = await client.get_client_credentials_token()

        assert first == second == "APP"
        assert len(fake.requests) == 1
        assert fake.requests[0]["form"] == {"grant_type": "client_credentials"}

    async def test_client_credentials_renewed_when_expired(
        self, client: SpotifyAuthClient, fake_accounts: tuple[FakeAccounts, FakeServer]
    ) -> None:
        fake, _ = fake_accounts
        fake.responses.append((200, {"access_token": "APP1", "expires_in": 30}))
        fake.responses.append((200, {"access_token": "APP2", "expires_in": 3600}))

        assert await client.get_client_credentials_token() == "APP1"
        assert await client.get_client_credentials_token() == "APP2"
        assert len(fake.requests) == 2
