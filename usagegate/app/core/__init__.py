"""Core utilities for the usagegate application."""

from usagegate.app.core.config import settings
from usagegate.app.core.logging import get_logger, setup_logging
from usagegate.app.core.store import (
    InMemoryStateStore,
    RedisStateStore,
    StateStore,
    get_store,
    reset_store,
    set_store,
)

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "StateStore",
    "InMemoryStateStore",
    "RedisStateStore",
    "get_store",
    "set_store",
    "reset_store",
]
