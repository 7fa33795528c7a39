from datetime import datetime, timedelta, timezone

import jwt
from jwt import InvalidTokenError

from ..config import Settings

DEFAULT_TOKEN_TTL = timedelta(hours=12)


def issue_token(*, user_id: int, settings: Settings, expires_in: timedelta | None = None) -> str:
    """Sign a bearer token whose subject is the user id."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + (expires_in if expires_in is not None else DEFAULT_TOKEN_TTL),
    }
    return jwt.encode(claims, settings.auth_secret, algorithm=settings.auth_algorithm)


def read_token(token: str, *, settings: Settings) -> int:
    """Return the user id carried by a bearer token. Raises ValueError if unusable."""
    try:
        claims = jwt.decode(
            token,
            settings.auth_secret,
            algorithms=[settings.auth_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError as exc:  # expired, bad signature, missing claims
        raise ValueError("invalid token") from exc
    try:
        return int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token subject is not a user id") from exc
