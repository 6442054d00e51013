"""
Identity boundary: JWT access tokens issued by the external auth service.

This service never stores credentials. It only validates bearer tokens
signed with the shared secret and turns their claims into an `Actor`.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt

from marketorders.core.config import settings
from marketorders.core.logging import get_logger

logger = get_logger(__name__)

SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    """Who performed an operation, as recorded in order timelines."""

    id: str
    role: str = "customer"
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == settings.admin_role


SYSTEM_ACTOR = Actor(id=SYSTEM_ACTOR_ID, role="system")


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=settings.jwt_expiration_hours)
    )
    to_encode.update({"exp": expire, "iat": datetime.now(timezone.utc)})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning("Invalid JWT token", error=str(e))
        return None


def actor_from_token(token: str) -> Actor | None:
    """Build an Actor from a bearer token, or None if the token is unusable."""
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    return Actor(
        id=str(payload["sub"]),
        role=str(payload.get("role", "customer")),
        email=payload.get("email"),
    )
