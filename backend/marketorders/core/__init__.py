"""
Core package containing configuration, database, security, logging and errors.
"""
from marketorders.core.config import settings
from marketorders.core.database import Base, async_session_factory
from marketorders.core.logging import configure_logging, get_logger
from marketorders.core.security import (
    SYSTEM_ACTOR,
    Actor,
    actor_from_token,
    create_access_token,
    decode_access_token,
)

__all__ = [
    "settings",
    "Base",
    "async_session_factory",
    "configure_logging",
    "get_logger",
    "Actor",
    "SYSTEM_ACTOR",
    "actor_from_token",
    "create_access_token",
    "decode_access_token",
]
