"""API endpoints package for usagegate."""

from usagegate.app.api.auth import router as auth_router
from usagegate.app.api.ping import router as ping_router

__all__ = [
    "auth_router",
    "ping_router",
]
