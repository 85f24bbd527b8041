"""Store contract and the in-process reference implementation.

The engine only needs a handful of set-oriented primitives from its backing
store: plain sets with atomic union/intersection into a destination key,
sorted sets for numeric postings, hashes for per-record metadata, and key
expiry. ``Store`` spells that contract out; ``MemoryStore`` implements it
with dictionaries guarded by a lock, mirroring the semantics of a Redis-like
server (empty collections vanish, expiry applies only to existing keys,
store operations replace the destination and clear its expiry).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
import logging
import threading
import time
from typing import Protocol, runtime_checkable

from ion_search.errors import StoreError


logger = logging.getLogger(__name__)


@runtime_checkable
class Store(Protocol):
    """Operations the engine requires from its backing store."""

    # Sets
    def sadd(self, key: str, *members: str) -> int: ...
    def srem(self, key: str, *members: str) -> int: ...
    def smembers(self, key: str) -> set[str]: ...
    def sismember(self, key: str, member: str) -> bool: ...
    def scard(self, key: str) -> int: ...
    def sunionstore(self, destination: str, *keys: str) -> int: ...
    def sinterstore(self, destination: str, *keys: str) -> int: ...

    # Sorted sets
    def zadd(self, key: str, mapping: Mapping[str, float]) -> int: ...
    def zrem(self, key: str, *members: str) -> int: ...
    def zscore(self, key: str, member: str) -> float | None: ...
    def zrangebyscore(
        self,
        key: str,
        minimum: float | None = None,
        maximum: float | None = None,
        *,
        min_exclusive: bool = False,
        max_exclusive: bool = False,
    ) -> list[str]: ...

    # Hashes
    def hset(self, key: str, field: str, value: str) -> int: ...
    def hget(self, key: str, field: str) -> str | None: ...
    def hmget(self, key: str, fields: Iterable[str]) -> list[str | None]: ...
    def hdel(self, key: str, *fields: str) -> int: ...
    def hgetall(self, key: str) -> dict[str, str]: ...

    # Keys
    def exists(self, key: str) -> bool: ...
    def delete(self, *keys: str) -> int: ...
    def expire(self, key: str, seconds: int) -> bool: ...
    def ttl(self, key: str) -> float | None: ...


def in_bounds(
    score: float,
    minimum: float | None,
    maximum: float | None,
    *,
    min_exclusive: bool,
    max_exclusive: bool,
) -> bool:
    """Return True when ``score`` lies within the given (optional) bounds."""
    if minimum is not None:
        if score < minimum or (min_exclusive and score == minimum):
            return False
    if maximum is not None:
        if score > maximum or (max_exclusive and score == maximum):
            return False
    return True


class MemoryStore:
    """Thread-safe in-memory ``Store``.

    Args:
        clock: Monotonic time source in seconds, injectable for expiry tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._sets: dict[str, set[str]] = {}
        self._zsets: dict[str, dict[str, float]] = {}
        self._hashes: dict[str, dict[str, str]] = {}
        self._expires: dict[str, float] = {}

    # -- internals ---------------------------------------------------------

    def _evict_if_expired(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and deadline <= self._clock():
            self._drop(key)

    def _drop(self, key: str) -> bool:
        self._expires.pop(key, None)
        removed = False
        for table in (self._sets, self._zsets, self._hashes):
            if table.pop(key, None) is not None:
                removed = True
        return removed

    def _check_type(self, key: str, table: dict) -> None:
        for other in (self._sets, self._zsets, self._hashes):
            if other is not table and key in other:
                msg = f"Operation against key '{key}' holding the wrong kind of value"
                raise StoreError(msg)

    def _read_set(self, key: str) -> set[str]:
        self._evict_if_expired(key)
        self._check_type(key, self._sets)
        return self._sets.get(key, set())

    def _write_set(self, key: str, members: set[str]) -> int:
        self._drop(key)
        if members:
            self._sets[key] = members
        return len(members)

    def purge_expired(self) -> int:
        """Drop every expired key now; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, deadline in self._expires.items() if deadline <= now]
            for key in expired:
                self._drop(key)
            return len(expired)

    def keys(self) -> list[str]:
        """Return all live keys (debugging and tests)."""
        with self._lock:
            self.purge_expired()
            return sorted({*self._sets, *self._zsets, *self._hashes})

    # -- sets --------------------------------------------------------------

    def sadd(self, key: str, *members: str) -> int:
        with self._lock:
            self._evict_if_expired(key)
            self._check_type(key, self._sets)
            bucket = self._sets.setdefault(key, set())
            before = len(bucket)
            bucket.update(members)
            if not bucket:
                del self._sets[key]
            return len(bucket) - before

    def srem(self, key: str, *members: str) -> int:
        with self._lock:
            bucket = self._read_set(key)
            before = len(bucket)
            bucket.difference_update(members)
            removed = before - len(bucket)
            if not bucket:
                self._drop(key)
            return removed

    def smembers(self, key: str) -> set[str]:
        with self._lock:
            return set(self._read_set(key))

    def sismember(self, key: str, member: str) -> bool:
        with self._lock:
            return member in self._read_set(key)

    def scard(self, key: str) -> int:
        with self._lock:
            return len(self._read_set(key))

    def sunionstore(self, destination: str, *keys: str) -> int:
        with self._lock:
            result: set[str] = set()
            for key in keys:
                result |= self._read_set(key)
            return self._write_set(destination, result)

    def sinterstore(self, destination: str, *keys: str) -> int:
        with self._lock:
            sources = [self._read_set(key) for key in keys]
            result = set.intersection(*sources) if sources else set()
            return self._write_set(destination, set(result))

    # -- sorted sets -------------------------------------------------------

    def _read_zset(self, key: str) -> dict[str, float]:
        self._evict_if_expired(key)
        self._check_type(key, self._zsets)
        return self._zsets.get(key, {})

    def zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        with self._lock:
            self._evict_if_expired(key)
            self._check_type(key, self._zsets)
            bucket = self._zsets.setdefault(key, {})
            added = sum(1 for member in mapping if member not in bucket)
            bucket.update({member: float(score) for member, score in mapping.items()})
            if not bucket:
                del self._zsets[key]
            return added

    def zrem(self, key: str, *members: str) -> int:
        with self._lock:
            bucket = self._read_zset(key)
            removed = 0
            for member in members:
                if bucket.pop(member, None) is not None:
                    removed += 1
            if not bucket:
                self._drop(key)
            return removed

    def zscore(self, key: str, member: str) -> float | None:
        with self._lock:
            return self._read_zset(key).get(member)

    def zrangebyscore(
        self,
        key: str,
        minimum: float | None = None,
        maximum: float | None = None,
        *,
        min_exclusive: bool = False,
        max_exclusive: bool = False,
    ) -> list[str]:
        with self._lock:
            bucket = self._read_zset(key)
            matches = [
                (score, member)
                for member, score in bucket.items()
                if in_bounds(score, minimum, maximum, min_exclusive=min_exclusive, max_exclusive=max_exclusive)
            ]
            return [member for _, member in sorted(matches)]

    # -- hashes ------------------------------------------------------------

    def _read_hash(self, key: str) -> dict[str, str]:
        self._evict_if_expired(key)
        self._check_type(key, self._hashes)
        return self._hashes.get(key, {})

    def hset(self, key: str, field: str, value: str) -> int:
        with self._lock:
            self._evict_if_expired(key)
            self._check_type(key, self._hashes)
            bucket = self._hashes.setdefault(key, {})
            created = 0 if field in bucket else 1
            bucket[field] = value
            return created

    def hget(self, key: str, field: str) -> str | None:
        with self._lock:
            return self._read_hash(key).get(field)

    def hmget(self, key: str, fields: Iterable[str]) -> list[str | None]:
        with self._lock:
            bucket = self._read_hash(key)
            return [bucket.get(field) for field in fields]

    def hdel(self, key: str, *fields: str) -> int:
        with self._lock:
            bucket = self._read_hash(key)
            removed = 0
            for field in fields:
                if bucket.pop(field, None) is not None:
                    removed += 1
            if not bucket:
                self._drop(key)
            return removed

    def hgetall(self, key: str) -> dict[str, str]:
        with self._lock:
            return dict(self._read_hash(key))

    # -- keys --------------------------------------------------------------

    def exists(self, key: str) -> bool:
        with self._lock:
            self._evict_if_expired(key)
            return key in self._sets or key in self._zsets or key in self._hashes

    def delete(self, *keys: str) -> int:
        with self._lock:
            return sum(1 for key in keys if self._drop(key))

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            if not self.exists(key):
                return False
            if seconds <= 0:
                self._drop(key)
                return True
            self._expires[key] = self._clock() + seconds
            return True

    def ttl(self, key: str) -> float | None:
        """Seconds until ``key`` expires, or None for persistent/missing keys."""
        with self._lock:
            if not self.exists(key):
                return None
            deadline = self._expires.get(key)
            if deadline is None:
                return None
            return max(deadline - self._clock(), 0.0)
