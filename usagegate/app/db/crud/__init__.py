"""CRUD operations package."""

from usagegate.app.db.crud.user import (
    create_user,
    get_user_by_username,
    verify_user_credentials,
)

__all__ = [
    "create_user",
    "get_user_by_username",
    "verify_user_credentials",
]
