"""
Spotify Accounts API client.

Handles the OAuth authorization-code flow, refresh-token exchange and
app-only client credentials tokens.
"""

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import aiohttp

from spotify_proxy.config import DEFAULT_SCOPES

from .exceptions import TokenExchangeError

logger = logging.getLogger(__name__)

# Refresh the client credentials token this long before it expires
CLIENT_TOKEN_EXPIRY_BUFFER_S = 60


@dataclass
class TokenResponse:
    """Token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenResponse":
        """Build from the token endpoint JSON body."""
        access_token = data.get("access_token")
        if not access_token:
            raise TokenExchangeError("Token response did not contain an access_token")
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expires_in=int(data.get("expires_in", 3600)),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )


@dataclass
class ClientToken:
    """App-only access token with expiration."""

    token: str = ""
    expires_at: float = 0.0  # time.time() seconds

    def is_expired(self, buffer_s: float = CLIENT_TOKEN_EXPIRY_BUFFER_S) -> bool:
        """Check if token is expired or will expire within buffer."""
        if not self.token or not self.expires_at:
            return True
        return time.time() + buffer_s >= self.expires_at


class SpotifyAuthClient:
    """Client for the Spotify Accounts service token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: str = DEFAULT_SCOPES,
        accounts_url: str = "https://accounts.spotify.com",
        timeout: float = 10.0,
    ):
        """
        Initialize auth client.

        Args:
            client_id: Spotify application client ID
            client_secret: Spotify application client secret
            redirect_uri: Registered OAuth redirect URI
            scopes: Space-separated OAuth scopes requested at login
            accounts_url: Base URL of the accounts service
            timeout: Per-request timeout in seconds
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.accounts_url = accounts_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._client_token = ClientToken()

    @property
    def token_url(self) -> str:
        return f"{self.accounts_url}/api/token"

    def get_authorization_url(self, state: str) -> str:
        """
        Build the URL the browser is sent to for user login.

        Args:
            state: Opaque value echoed back to the callback

        Returns:
            Authorization URL
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "scope": self.scopes,
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{self.accounts_url}/authorize?{urlencode(params)}"

    async def exchange_authorization_code(
        self, code: str, redirect_uri: Optional[str] = None
    ) -> TokenResponse:
        """
        Exchange an authorization code for user tokens.

        Args:
            code: Code received on the OAuth callback
            redirect_uri: Redirect URI used at login (defaults to configured one)

        Returns:
            Token response with access and refresh tokens

        Raises:
            TokenExchangeError: If the accounts service rejects the code
        """
        data = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or self.redirect_uri,
            }
        )
        logger.info("Exchanged authorization code for tokens")
        return TokenResponse.from_dict(data)

    async def exchange_refresh_token(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for a new access token.

        The response may or may not carry a new refresh token.

        Raises:
            TokenExchangeError: If the accounts service rejects the refresh token
        """
        data = await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )
        response = TokenResponse.from_dict(data)
        logger.debug(
            f"Refreshed access token (new refresh token: {response.refresh_token is not None})"
        )
        return response

    async def get_client_credentials_token(self) -> str:
        """
        Get an app-only access token for catalogue requests.

        Cached until shortly before it expires.
        """
        if not self._client_token.is_expired():
            return self._client_token.token

        data = await self._post_token({"grant_type": "client_credentials"})
        response = TokenResponse.from_dict(data)
        self._client_token = ClientToken(
            token=response.access_token,
            expires_at=time.time() + response.expires_in,
        )
        logger.info("Obtained client credentials token")
        return response.access_token

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def _basic_auth_header(self) -> str:
        credentials = f"{self.client_id}:{self.client_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(credentials).decode("ascii")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _post_token(self, form: dict[str, str]) -> dict[str, Any]:
        """POST a form to the token endpoint and return the JSON body."""
        headers = {
            "Authorization": self._basic_auth_header(),
            "Content-Type": "application/x-www-form-urlencoded",
        }
        session = self._get_session()
        async with session.post(self.token_url, data=form, headers=headers) as resp:
            if resp.status >= 400:
                error_code, description = await self._read_error(resp)
                grant = form.get("grant_type", "")
                logger.error(f"Token request ({grant}) failed: {resp.status} {error_code}")
                raise TokenExchangeError(
                    f"Token request failed ({resp.status}): {description or error_code}",
                    status=resp.status,
                    error_code=error_code,
                )
            result: dict[str, Any] = await resp.json(content_type=None)
            return result

    @staticmethod
    async def _read_error(resp: aiohttp.ClientResponse) -> tuple[Optional[str], str]:
        """Extract (error, error_description) from an error response."""
        text = await resp.text()
        try:
            payload = await resp.json(content_type=None)
        except ValueError:
            return None, text
        if not isinstance(payload, dict):
            return None, text
        error = payload.get("error")
        if isinstance(error, dict):
            # Web API style error object
            return str(error.get("status", "")), error.get("message", "")
        return error, payload.get("error_description", "")
