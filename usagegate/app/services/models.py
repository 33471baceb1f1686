"""Data models for usage accounting."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class RateState:
    """Per-caller cooldown state persisted in the shared store.

    Attributes:
        block_until_offset: Seconds after last_call_epoch during which
            further calls are blocked
        last_call_epoch: Epoch seconds of the last allowed call
    """
    block_until_offset: int
    last_call_epoch: int

    BLOCK_FIELD = "block_until_offset"
    LAST_CALL_FIELD = "last_call_epoch"

    def to_mapping(self) -> dict[str, str]:
        """Convert to hash fields for the store."""
        return {
            self.BLOCK_FIELD: str(self.block_until_offset),
            self.LAST_CALL_FIELD: str(self.last_call_epoch),
        }

    @classmethod
    def from_mapping(cls, data: dict[str, str]) -> Optional["RateState"]:
        """Create from hash fields; None when the caller has no state yet."""
        if not data or cls.LAST_CALL_FIELD not in data:
            return None
        return cls(
            block_until_offset=int(data.get(cls.BLOCK_FIELD, 0)),
            last_call_epoch=int(data[cls.LAST_CALL_FIELD]),
        )

    def remaining_block(self, now: int) -> int:
        """Seconds until a call at or after now would be allowed (0 if allowed)."""
        elapsed = now - self.last_call_epoch
        if elapsed > self.block_until_offset:
            return 0
        return self.block_until_offset - elapsed + 1


@dataclass
class RateLimitDecision:
    """Result of a rate limit check."""
    allowed: bool
    caller: str
    checked_at: int
    retry_after: int = 0
    state: Optional[RateState] = field(default=None)


@dataclass
class LeaderboardEntry:
    """One caller's cumulative allowed-call count."""
    caller: str
    score: int

    def to_dict(self) -> dict:
        return {"username": self.caller, "score": self.score}


@dataclass
class ActionResult:
    """Outcome of a successful rate-limited action."""
    caller: str
    score: int
    message: str = "Ping succeeded."

    def to_dict(self) -> dict:
        return {"message": self.message, "caller": self.caller, "score": self.score}
