"""Tests for user storage and the credential check behind /login."""

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from usagegate.app.db.base import Base
from usagegate.app.db.crud import (
    create_user,
    get_user_by_username,
    verify_user_credentials,
)
from usagegate.app.exceptions import AuthError
from usagegate.app.services.ping_service import PingService


@pytest_asyncio.fixture
async def db_session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as session:
        yield session
    await engine.dispose()


class TestUserCrud:

    @pytest.mark.asyncio
    async def test_create_and_fetch(self, db_session):
        user = await create_user(db_session, "alice", "wonderland")
        assert user.id is not None
        assert user.password_hash != "wonderland"

        fetched = await get_user_by_username(db_session, "alice")
        assert fetched is not None
        assert fetched.id == user.id

    @pytest.mark.asyncio
    async def test_unknown_user(self, db_session):
        assert await get_user_by_username(db_session, "nobody") is None

    @pytest.mark.asyncio
    async def test_duplicate_username(self, db_session):
        await create_user(db_session, "alice", "wonderland")
        with pytest.raises(IntegrityError):
            await create_user(db_session, "alice", "other")


class TestVerifyCredentials:

    @pytest.mark.asyncio
    async def test_valid_credentials(self, db_session):
        await create_user(db_session, "alice", "wonderland")
        user = await verify_user_credentials(db_session, "alice", "wonderland")
        assert user is not None
        assert user.username == "alice"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "username, password",
        [("alice", "wrong"), ("bob", "wonderland"), ("", "wonderland"), ("alice", "")],
    )
    async def test_invalid_credentials(self, db_session, username, password):
        await create_user(db_session, "alice", "wonderland")
        assert await verify_user_credentials(db_session, username, password) is None


class TestLoginAgainstDatabase:

    @pytest.mark.asyncio
    async def test_authenticate_opens_session(self, db_session, store):
        await create_user(db_session, "alice", "wonderland")
        service = PingService(store)

        token = await service.authenticate(db_session, "alice", "wonderland")

        assert await service.session_gate.validate(token) == "alice"

    @pytest.mark.asyncio
    async def test_authenticate_rejects_wrong_password(self, db_session, store):
        await create_user(db_session, "alice", "wonderland")
        with pytest.raises(AuthError):
            await PingService(store).authenticate(db_session, "alice", "nope")
