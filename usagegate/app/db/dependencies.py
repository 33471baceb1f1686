"""Database dependencies for FastAPI dependency injection.

Usage:
    from usagegate.app.db.dependencies import SessionDep

    @router.post("/login")
    async def login(session: SessionDep):
        ...
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from usagegate.app.db.async_session import get_db

SessionDep = Annotated[AsyncSession, Depends(get_db)]

__all__ = ["SessionDep"]
