"""Authentication utilities for JWT token handling.

Connections stamp their identity through the ``authenticate`` message. The
token is issued by the identity provider; this module only verifies it.
"""
from typing import Optional, Protocol
from jose import JWTError, jwt

from app.core.config import settings


class InvalidToken(Exception):
    """Raised when a token cannot be verified."""
    pass


class AuthVerifier(Protocol):
    """Capability that turns a token into a verified identity."""

    def verify(self, token: str) -> dict:
        """Return ``{"user_id": ...}`` or raise InvalidToken."""
        ...


def decode_access_token(
    token: str,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None
) -> dict:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string
        secret: Verification secret (defaults to settings.jwt_secret)
        algorithm: Expected algorithm (defaults to settings.jwt_algorithm)

    Returns:
        Decoded token payload

    Raises:
        InvalidToken: If token is invalid, expired or no secret is configured
    """
    secret = secret or settings.jwt_secret
    if not secret:
        raise InvalidToken("JWT secret is not configured")
    if not token or not isinstance(token, str):
        raise InvalidToken("Token is required")

    try:
        return jwt.decode(token, secret, algorithms=[algorithm or settings.jwt_algorithm])
    except JWTError as e:
        raise InvalidToken(f"Could not validate credentials: {e}") from e


class JwtAuthVerifier:
    """AuthVerifier backed by HS256-signed JWTs carrying the user id in ``sub``."""

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret = secret or settings.jwt_secret
        self.algorithm = algorithm or settings.jwt_algorithm

    def verify(self, token: str) -> dict:
        payload = decode_access_token(token, secret=self.secret, algorithm=self.algorithm)
        user_id = payload.get("sub")
        if user_id is None:
            raise InvalidToken("Token has no subject")
        return {"user_id": str(user_id)}
