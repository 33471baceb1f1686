"""Shared state store abstraction.

Provides the primitives the usage-accounting services need (expiring strings,
hashes, sorted sets and a HyperLogLog sketch) with a Redis implementation for
multi-process deployments and an in-memory implementation for a single
process.
"""

import asyncio
import heapq
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

import redis
import redis.asyncio as aioredis
from hyperloglog import HyperLogLog

from usagegate.app.core.logging import get_logger
from usagegate.app.core.redis_lua import HASH_COMPARE_AND_SET_SCRIPT
from usagegate.app.exceptions import StoreUnavailableError

logger = get_logger(__name__)

# Failures that mean "the store could not answer"
REDIS_EXCEPTIONS = (
    redis.ConnectionError,
    redis.TimeoutError,
    redis.RedisError,
    asyncio.TimeoutError,
    OSError,
)


@dataclass
class _StringEntry:
    """Internal string value with TTL tracking."""

    value: str
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class StateStore(ABC):
    """Abstract base class for shared state stores.

    Every operation is atomic on its own. Implementations raise
    StoreUnavailableError when the backing service cannot be reached.
    """

    @abstractmethod
    async def get_string(self, key: str) -> str | None:
        """Return the string stored at key, or None if absent or expired."""

    @abstractmethod
    async def set_string(self, key: str, value: str, ttl: int) -> None:
        """Store a string that expires after ttl seconds (ttl <= 0: never)."""

    @abstractmethod
    async def hash_get_all(self, key: str) -> dict[str, str]:
        """Return every field of the hash at key (empty dict if absent)."""

    @abstractmethod
    async def hash_set_field(self, key: str, field: str, value: str) -> None:
        """Set a single hash field."""

    @abstractmethod
    async def hash_compare_and_set(
        self,
        key: str,
        guard_field: str,
        expected: str | None,
        mapping: dict[str, str],
    ) -> bool:
        """Write mapping into the hash only if guard_field still equals expected.

        Args:
            key: Hash key.
            guard_field: Field compared before writing.
            expected: Value guard_field must hold; None means it must be absent.
            mapping: Fields to write when the guard matches.

        Returns:
            True if the hash was written, False if the guard did not match.
        """

    @abstractmethod
    async def ordered_set_increment(self, key: str, member: str, delta: float) -> float:
        """Atomically add delta to member's score (inserting at 0) and return it."""

    @abstractmethod
    async def ordered_set_top_descending(self, key: str, count: int) -> list[tuple[str, float]]:
        """Return up to count (member, score) pairs, highest score first."""

    @abstractmethod
    async def probabilistic_add(self, key: str, member: str) -> None:
        """Add member to the HyperLogLog sketch at key."""

    @abstractmethod
    async def probabilistic_estimate(self, key: str) -> int:
        """Return the estimated number of distinct members added to key."""

    @abstractmethod
    async def record_usage(
        self, ordered_key: str, sketch_key: str, member: str, delta: float = 1
    ) -> float:
        """Increment member in ordered_key and add it to sketch_key as one unit.

        Either both writes are applied or neither is.

        Returns:
            The member's new score.
        """

    @abstractmethod
    async def ping(self) -> bool:
        """Check the store is reachable."""

    async def close(self) -> None:
        """Release connections held by the store."""


class InMemoryStateStore(StateStore):
    """In-memory state store.

    Stores everything in Python dictionaries guarded by an asyncio lock.
    State is per process: running several workers gives each its own rate
    limits and leaderboard, so use RedisStateStore for those deployments.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        error_rate: float = 0.01,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source used for string expiry.
            error_rate: Relative error of the HyperLogLog sketches.
        """
        self._clock = clock
        self._error_rate = error_rate
        self._strings: dict[str, _StringEntry] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._sorted_sets: dict[str, dict[str, float]] = {}
        self._sketches: dict[str, HyperLogLog] = {}
        self._lock = asyncio.Lock()

    async def get_string(self, key: str) -> str | None:
        async with self._lock:
            entry = self._strings.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._strings[key]
                return None
            return entry.value

    async def set_string(self, key: str, value: str, ttl: int) -> None:
        async with self._lock:
            expires_at = self._clock() + ttl if ttl > 0 else None
            self._strings[key] = _StringEntry(value=value, expires_at=expires_at)

    async def hash_get_all(self, key: str) -> dict[str, str]:
        async with self._lock:
            return dict(self._hashes.get(key, {}))

    async def hash_set_field(self, key: str, field: str, value: str) -> None:
        async with self._lock:
            self._hashes.setdefault(key, {})[field] = str(value)

    async def hash_compare_and_set(
        self,
        key: str,
        guard_field: str,
        expected: str | None,
        mapping: dict[str, str],
    ) -> bool:
        async with self._lock:
            current = self._hashes.get(key, {}).get(guard_field)
            if current != expected:
                return False
            fields = self._hashes.setdefault(key, {})
            for field, value in mapping.items():
                fields[field] = str(value)
            return True

    async def ordered_set_increment(self, key: str, member: str, delta: float) -> float:
        async with self._lock:
            members = self._sorted_sets.setdefault(key, {})
            members[member] = members.get(member, 0.0) + delta
            return members[member]

    async def ordered_set_top_descending(self, key: str, count: int) -> list[tuple[str, float]]:
        if count < 1:
            return []
        async with self._lock:
            members = self._sorted_sets.get(key, {})
            # Same order as ZREVRANGE: score desc, then member desc
            return heapq.nlargest(
                count, members.items(), key=lambda item: (item[1], item[0])
            )

    async def probabilistic_add(self, key: str, member: str) -> None:
        async with self._lock:
            sketch = self._sketches.get(key)
            if sketch is None:
                sketch = HyperLogLog(self._error_rate)
                self._sketches[key] = sketch
            sketch.add(member)

    async def probabilistic_estimate(self, key: str) -> int:
        async with self._lock:
            sketch = self._sketches.get(key)
            return len(sketch) if sketch is not None else 0

    async def record_usage(
        self, ordered_key: str, sketch_key: str, member: str, delta: float = 1
    ) -> float:
        async with self._lock:
            sketch = self._sketches.get(sketch_key)
            if sketch is None:
                sketch = HyperLogLog(self._error_rate)
            # Sketch first: if it fails, the score is untouched
            sketch.add(member)
            self._sketches[sketch_key] = sketch
            members = self._sorted_sets.setdefault(ordered_key, {})
            members[member] = members.get(member, 0.0) + delta
            return members[member]

    async def ping(self) -> bool:
        return True

    async def clear(self) -> None:
        """Drop all stored state."""
        async with self._lock:
            self._strings.clear()
            self._hashes.clear()
            self._sorted_sets.clear()
            self._sketches.clear()


class RedisStateStore(StateStore):
    """Redis-based state store shared by every server process.

    Example:
        >>> store = RedisStateStore("redis://localhost:6379/0")
        >>> await store.set_string("session:abc", "alice", ttl=300)
    """

    def __init__(
        self,
        redis_url: str,
        redis_client: Optional[Any] = None,
        socket_timeout: float = 2.0,
        connect_timeout: float = 2.0,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            redis_client: Optional pre-built redis.asyncio client.
            socket_timeout: Seconds to wait for a command reply.
            connect_timeout: Seconds to wait for a connection.
        """
        self._redis_url = redis_url
        self._redis = redis_client
        self._socket_timeout = socket_timeout
        self._connect_timeout = connect_timeout

    def _get_client(self) -> Any:
        """Get or create the Redis client connection."""
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._connect_timeout,
            )
        return self._redis

    @staticmethod
    def _unavailable(operation: str, key: str, exc: BaseException) -> StoreUnavailableError:
        logger.error(
            f"Redis {operation} failed: {exc}",
            extra={"operation": operation, "key": key, "error_type": type(exc).__name__},
        )
        return StoreUnavailableError(f"Shared state store unavailable during {operation}")

    async def get_string(self, key: str) -> str | None:
        try:
            return await self._get_client().get(key)
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("get_string", key, e) from e

    async def set_string(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._get_client().set(key, value, ex=ttl if ttl > 0 else None)
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("set_string", key, e) from e

    async def hash_get_all(self, key: str) -> dict[str, str]:
        try:
            return dict(await self._get_client().hgetall(key))
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("hash_get_all", key, e) from e

    async def hash_set_field(self, key: str, field: str, value: str) -> None:
        try:
            await self._get_client().hset(key, field, value)
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("hash_set_field", key, e) from e

    async def hash_compare_and_set(
        self,
        key: str,
        guard_field: str,
        expected: str | None,
        mapping: dict[str, str],
    ) -> bool:
        args: list[str] = [guard_field, expected if expected is not None else ""]
        for field, value in mapping.items():
            args.extend((field, str(value)))
        try:
            written = await self._get_client().eval(
                HASH_COMPARE_AND_SET_SCRIPT, 1, key, *args
            )
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("hash_compare_and_set", key, e) from e
        return int(written) == 1

    async def ordered_set_increment(self, key: str, member: str, delta: float) -> float:
        try:
            return float(await self._get_client().zincrby(key, delta, member))
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("ordered_set_increment", key, e) from e

    async def ordered_set_top_descending(self, key: str, count: int) -> list[tuple[str, float]]:
        # ZREVRANGE with stop=-1 would return the whole set
        if count < 1:
            return []
        try:
            rows = await self._get_client().zrevrange(key, 0, count - 1, withscores=True)
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("ordered_set_top_descending", key, e) from e
        return [(member, float(score)) for member, score in rows]

    async def probabilistic_add(self, key: str, member: str) -> None:
        try:
            await self._get_client().pfadd(key, member)
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("probabilistic_add", key, e) from e

    async def probabilistic_estimate(self, key: str) -> int:
        try:
            return int(await self._get_client().pfcount(key))
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("probabilistic_estimate", key, e) from e

    async def record_usage(
        self, ordered_key: str, sketch_key: str, member: str, delta: float = 1
    ) -> float:
        # MULTI/EXEC: nothing is applied unless EXEC reaches the server
        try:
            async with self._get_client().pipeline(transaction=True) as pipe:
                pipe.zincrby(ordered_key, delta, member)
                pipe.pfadd(sketch_key, member)
                score, _ = await pipe.execute()
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("record_usage", ordered_key, e) from e
        return float(score)

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except REDIS_EXCEPTIONS as e:
            raise self._unavailable("ping", "-", e) from e

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            # Use aclose() for proper async cleanup in redis-py 5.0+
            await self._redis.aclose()
            self._redis = None


# Global store instance (singleton pattern)
_store_instance: StateStore | None = None


def get_store(force_new: bool = False) -> StateStore:
    """Get or create the global state store.

    Uses Redis when settings.redis_enabled is set, otherwise an in-memory
    store (single process only).
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    from usagegate.app.core.config import settings

    if settings.redis_enabled:
        _store_instance = RedisStateStore(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            connect_timeout=settings.redis_connect_timeout,
        )
        logger.info("Using Redis state store")
    else:
        _store_instance = InMemoryStateStore(error_rate=settings.cardinality_error_rate)
        logger.warning(
            "Using in-memory state store; rate limits and leaderboard are "
            "not shared between processes"
        )
    return _store_instance


def set_store(store: StateStore) -> None:
    """Install a specific store as the global instance (tests, embedding)."""
    global _store_instance
    _store_instance = store


def reset_store() -> None:
    """Reset the global store instance.

    This is primarily useful for testing.
    """
    global _store_instance
    _store_instance = None
