"""User CRUD operations."""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from usagegate.app.core.security import hash_password, verify_password
from usagegate.app.db.models import User


async def get_user_by_username(
    session: AsyncSession,
    username: str
) -> Optional[User]:
    """Find a user by username.

    Returns:
        User object if found, None otherwise
    """
    result = await session.execute(
        select(User).where(User.username == username)
    )
    return result.scalar_one_or_none()


async def verify_user_credentials(
    session: AsyncSession,
    username: str,
    password: str
) -> Optional[User]:
    """Return the user when username and password match, None otherwise."""
    if not username or not password:
        return None
    user = await get_user_by_username(session, username)
    if user is None:
        return None
    if not verify_password(password, user.password_salt, user.password_hash):
        return None
    return user


async def create_user(
    session: AsyncSession,
    username: str,
    password: str,
    auto_commit: bool = True
) -> User:
    """Create a user with a salted password hash."""
    salt, hashed = hash_password(password)
    user = User(username=username, password_salt=salt, password_hash=hashed)
    session.add(user)
    if auto_commit:
        await session.commit()
    else:
        await session.flush()
    return user
