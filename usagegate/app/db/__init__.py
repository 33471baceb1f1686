"""Database package for usagegate.

This package provides:
- The User model holding login credentials
- Asynchronous session management
- CRUD operations
- FastAPI dependency injection support
"""

from usagegate.app.db.base import Base
from usagegate.app.db.models import User
from usagegate.app.db.async_session import (
    close_async_engine,
    get_async_engine,
    get_async_session,
    get_async_session_maker,
    get_db,
    init_async_db,
)
from usagegate.app.db.dependencies import SessionDep
from usagegate.app.db.crud import (
    create_user,
    get_user_by_username,
    verify_user_credentials,
)

__all__ = [
    "Base",
    "User",
    "close_async_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_maker",
    "get_db",
    "init_async_db",
    "SessionDep",
    "create_user",
    "get_user_by_username",
    "verify_user_credentials",
]
