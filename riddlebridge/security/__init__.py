"""Bearer token verification."""

from riddlebridge.security.tokens import (
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    TokenPayload,
    create_access_token,
    decode_token,
)

__all__ = [
    "TokenError",
    "TokenExpiredError",
    "TokenInvalidError",
    "TokenPayload",
    "create_access_token",
    "decode_token",
]
