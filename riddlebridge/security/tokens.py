"""
Bearer Token Verification

The bridge trusts access tokens issued by the platform's auth service:
HS-signed JWTs whose ``sub`` claim is the user id that owns bridge
transactions.
"""

from datetime import UTC, datetime, timedelta

import jwt as pyjwt
import structlog
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from pydantic import BaseModel

from riddlebridge.config import Settings

logger = structlog.get_logger(__name__)

# Hardcoded whitelist; the configured algorithm must be one of these
ALLOWED_JWT_ALGORITHMS = ["HS256", "HS384", "HS512"]

MAX_TOKEN_SIZE_BYTES = 8192


class TokenError(Exception):
    """Base exception for token errors."""
    pass


class TokenExpiredError(TokenError):
    pass


class TokenInvalidError(TokenError):
    pass


class TokenPayload(BaseModel):
    sub: str
    exp: datetime | None = None
    iat: datetime | None = None
    jti: str | None = None


def decode_token(token: str, settings: Settings) -> TokenPayload:
    """
    Decode and validate an access token.

    Raises:
        TokenExpiredError: If the token has expired
        TokenInvalidError: If the token is malformed, oversized or badly signed
    """
    if len(token.encode("utf-8")) > MAX_TOKEN_SIZE_BYTES:
        raise TokenInvalidError("Token too large")
    if settings.jwt_algorithm not in ALLOWED_JWT_ALGORITHMS:
        raise TokenInvalidError(f"Disallowed algorithm: {settings.jwt_algorithm}")

    try:
        payload = pyjwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except ExpiredSignatureError:
        raise TokenExpiredError("Token has expired") from None
    except InvalidTokenError as e:
        logger.debug("token_rejected", error=str(e))
        raise TokenInvalidError(f"Invalid token: {e}") from e

    if not isinstance(payload.get("sub"), str) or not payload["sub"]:
        raise TokenInvalidError("Token subject is missing")
    return TokenPayload.model_validate(payload)


def create_access_token(user_id: str, settings: Settings, expires_minutes: int = 60) -> str:
    """Issue an access token for ``user_id`` (development and tests)."""
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
        "type": "access",
    }
    encoded: str = pyjwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return encoded
