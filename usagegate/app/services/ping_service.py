"""Request-facing usage accounting operations.

Composes the session gate, the cooldown rate limiter and the usage recorder
into the sequence every /ping request goes through, and exposes the
leaderboard and distinct-caller read paths.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from usagegate.app.core.config import settings
from usagegate.app.core.logging import get_log_context, get_logger
from usagegate.app.core.store import StateStore, get_store
from usagegate.app.db.crud import verify_user_credentials
from usagegate.app.db.models import User
from usagegate.app.exceptions import AuthError, RateLimitedError
from usagegate.app.services.models import ActionResult, LeaderboardEntry
from usagegate.app.services.rate_limiter import CooldownRateLimiter
from usagegate.app.services.session_gate import SessionGate
from usagegate.app.services.usage import CardinalityReader, LeaderboardReader, UsageRecorder

logger = get_logger(__name__)

CredentialChecker = Callable[[AsyncSession, str, str], Awaitable[Optional[User]]]


class PingService:
    """Service for the session-gated, rate-limited ping action.

    Provides:
    - Login: credential check, then a session stored with a fixed TTL
    - Ping: session validation, cooldown check, score and sketch update
    - Leaderboard of the most frequent callers
    - Approximate count of distinct callers
    """

    def __init__(
        self,
        store: StateStore,
        session_gate: Optional[SessionGate] = None,
        rate_limiter: Optional[CooldownRateLimiter] = None,
        recorder: Optional[UsageRecorder] = None,
        leaderboard: Optional[LeaderboardReader] = None,
        cardinality: Optional[CardinalityReader] = None,
        credential_checker: CredentialChecker = verify_user_credentials,
        work_seconds: Optional[float] = None,
    ) -> None:
        self._store = store
        self.session_gate = session_gate or SessionGate(store)
        self.rate_limiter = rate_limiter or CooldownRateLimiter(store)
        self.recorder = recorder or UsageRecorder(store)
        self.leaderboard = leaderboard or LeaderboardReader(store)
        self.cardinality = cardinality or CardinalityReader(store)
        self._credential_checker = credential_checker
        self._work_seconds = (
            work_seconds if work_seconds is not None else settings.ping_work_seconds
        )

    async def authenticate(self, db_session: AsyncSession, username: str, password: str) -> str:
        """Check credentials and open a session.

        Returns:
            The new session token.

        Raises:
            AuthError: If the username or password is wrong.
            StoreUnavailableError: If the session cannot be stored.
        """
        user = await self._credential_checker(db_session, username, password)
        if user is None:
            logger.info("login.rejected")
            raise AuthError("Wrong username or password")
        return await self.session_gate.create_session(user.username)

    async def perform_rate_limited_action(
        self, token: Optional[str], now: Optional[int] = None
    ) -> ActionResult:
        """Run the ping action for the session owner.

        Raises:
            AuthError: If the session is missing, invalid or expired.
            RateLimitedError: If the caller is still cooling down.
            StoreUnavailableError: If the store fails at any step.
        """
        caller = await self.session_gate.validate(token)

        decision = await self.rate_limiter.try_acquire(caller, now)
        if not decision.allowed:
            raise RateLimitedError(retry_after=decision.retry_after)

        score = await self.recorder.record(caller)

        if self._work_seconds > 0:
            await asyncio.sleep(self._work_seconds)

        logger.info("ping.succeeded", extra=get_log_context(caller=caller, score=score))
        return ActionResult(caller=caller, score=score)

    async def get_leaderboard(self, k: Optional[int] = None) -> list[LeaderboardEntry]:
        """Top-k callers by allowed calls (k defaults to leaderboard_size)."""
        return await self.leaderboard.top_k(k)

    async def get_distinct_caller_estimate(self) -> int:
        """Approximate number of distinct callers that ever pinged."""
        return await self.cardinality.estimate_distinct_count()


_ping_service: Optional[PingService] = None


def get_ping_service() -> PingService:
    """Get the global ping service instance bound to the global store."""
    global _ping_service
    if _ping_service is None:
        _ping_service = PingService(get_store())
    return _ping_service


def reset_ping_service() -> None:
    """Reset the global ping service instance."""
    global _ping_service
    _ping_service = None
