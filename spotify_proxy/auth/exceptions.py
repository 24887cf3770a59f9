"""
Authentication errors.
"""

from typing import Optional


class AuthenticationError(Exception):
    """Base class for token lifecycle failures."""

    pass


class UnauthenticatedError(AuthenticationError):
    """No access token is stored for the user; they need to log in first."""

    def __init__(self, user_id: str):
        super().__init__(f"No access token available for user {user_id}")
        self.user_id = user_id


class NoRefreshTokenError(AuthenticationError):
    """A refresh was needed but no refresh token is stored for the user."""

    def __init__(self, user_id: str):
        super().__init__(f"No refresh token available for user {user_id}")
        self.user_id = user_id


class TokenExchangeError(AuthenticationError):
    """The token endpoint rejected a code or refresh-token exchange."""

    def __init__(self, message: str, status: int = 0, error_code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.error_code = error_code
