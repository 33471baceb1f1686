"""Usage accounting services."""

from usagegate.app.services.models import (
    ActionResult,
    LeaderboardEntry,
    RateLimitDecision,
    RateState,
)
from usagegate.app.services.ping_service import (
    PingService,
    get_ping_service,
    reset_ping_service,
)
from usagegate.app.services.rate_limiter import CooldownRateLimiter
from usagegate.app.services.session_gate import SessionGate
from usagegate.app.services.usage import (
    CardinalityReader,
    LeaderboardReader,
    UsageRecorder,
)

__all__ = [
    "ActionResult",
    "LeaderboardEntry",
    "RateLimitDecision",
    "RateState",
    "PingService",
    "get_ping_service",
    "reset_ping_service",
    "CooldownRateLimiter",
    "SessionGate",
    "CardinalityReader",
    "LeaderboardReader",
    "UsageRecorder",
]
