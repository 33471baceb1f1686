"""Per-caller cooldown rate limiting on top of the shared state store.

Each caller has one hash holding the seconds it stays blocked after its last
allowed call. Decisions are computed here; the write is a store-side
compare-and-set on the last call time, so two processes racing on the same
caller cannot both win the same cooldown.
"""

import time
from typing import Callable, Optional

from usagegate.app.core.config import settings
from usagegate.app.core.logging import get_log_context, get_logger
from usagegate.app.core.store import StateStore
from usagegate.app.services.models import RateLimitDecision, RateState

logger = get_logger(__name__)


class CooldownRateLimiter:
    """Cooldown limiter renewing its window on every allowed call.

    Two policies, selected by max_calls_per_window:

    - 1: strict cooldown. After an allowed call the caller is blocked until
      more than window_seconds have elapsed.
    - 2: renewing window. The new block is whatever remains of the previous
      call's window, clamped at zero, so at most two calls fit in any
      window_seconds span and callers far apart are never penalized.

    Redis key format:
    - {prefix}:ratelimit:{caller} - hash with block_until_offset, last_call_epoch
    """

    def __init__(
        self,
        store: StateStore,
        window_seconds: Optional[int] = None,
        max_calls_per_window: Optional[int] = None,
        key_prefix: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.window_seconds = (
            window_seconds if window_seconds is not None
            else settings.rate_limit_window_seconds
        )
        self.max_calls_per_window = (
            max_calls_per_window if max_calls_per_window is not None
            else settings.max_calls_per_window
        )
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        if self.max_calls_per_window not in (1, 2):
            raise ValueError("max_calls_per_window must be 1 or 2")
        self._key_prefix = key_prefix or settings.key_prefix
        self._clock = clock

    def _make_key(self, caller: str) -> str:
        return f"{self._key_prefix}:ratelimit:{caller}"

    def _initial_block(self) -> int:
        return self.window_seconds if self.max_calls_per_window == 1 else 0

    def _next_block(self, state: RateState, now: int) -> int:
        if self.max_calls_per_window == 1:
            return self.window_seconds
        return max(0, state.last_call_epoch + self.window_seconds - now)

    async def try_acquire(self, caller: str, now: Optional[int] = None) -> RateLimitDecision:
        """Decide whether caller may call now, recording the call if allowed.

        Args:
            caller: Authenticated caller identity.
            now: Epoch seconds of the call; defaults to the limiter's clock.

        Returns:
            RateLimitDecision; blocked decisions carry retry_after seconds.

        Raises:
            StoreUnavailableError: If the read or the write fails. Nothing is
                written unless the read completed.
        """
        if not caller:
            raise ValueError("caller must be a non-empty string")
        now = int(now if now is not None else self._clock())
        key = self._make_key(caller)

        state = RateState.from_mapping(await self._store.hash_get_all(key))

        if state is None:
            new_state = RateState(block_until_offset=self._initial_block(), last_call_epoch=now)
            expected = None
        else:
            retry_after = state.remaining_block(now)
            if retry_after > 0:
                return self._blocked(caller, now, retry_after, state)
            new_state = RateState(
                block_until_offset=self._next_block(state, now),
                last_call_epoch=now,
            )
            expected = str(state.last_call_epoch)

        written = await self._store.hash_compare_and_set(
            key, RateState.LAST_CALL_FIELD, expected, new_state.to_mapping()
        )
        if not written:
            # Another process recorded a call for this caller in between
            logger.info(
                "ratelimit.race_lost",
                extra=get_log_context(caller=caller),
            )
            winner = RateState.from_mapping(await self._store.hash_get_all(key))
            retry_after = winner.remaining_block(now) if winner is not None else 0
            return self._blocked(caller, now, max(retry_after, 1), winner)

        logger.info(
            "ratelimit.allowed",
            extra=get_log_context(
                caller=caller,
                block_s=new_state.block_until_offset,
                window_s=self.window_seconds,
            ),
        )
        return RateLimitDecision(allowed=True, caller=caller, checked_at=now, state=new_state)

    def _blocked(
        self,
        caller: str,
        now: int,
        retry_after: int,
        state: Optional[RateState],
    ) -> RateLimitDecision:
        logger.warning(
            "ratelimit.exceeded",
            extra=get_log_context(
                caller=caller,
                retry_after_s=retry_after,
                window_s=self.window_seconds,
            ),
        )
        return RateLimitDecision(
            allowed=False,
            caller=caller,
            checked_at=now,
            retry_after=retry_after,
            state=state,
        )
