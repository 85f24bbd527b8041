"""Set algebra over store-backed sets.

``union`` and ``intersect`` materialize their result into a fresh volatile
key unless given a single key, which is returned as-is. Volatile keys live
under ``<prefix>:~:`` and carry a short expiry so a crashed evaluation never
leaks storage; ``EphemeralScope`` deletes them eagerly once an evaluation is
done with them.
"""

from __future__ import annotations

from collections.abc import Sequence
import logging
from types import TracebackType
from uuid import uuid4

from ion_search.observability.metrics import EPHEMERAL_KEYS
from ion_search.search.keys import INTERNAL, Key
from ion_search.search.store import Store


logger = logging.getLogger(__name__)

DEFAULT_TTL = 30


def volatile_key(prefix: Key | str) -> str:
    """Return a fresh, unused key name under the volatile namespace."""
    base = prefix if isinstance(prefix, Key) else Key(prefix)
    return str(base[INTERNAL][uuid4().hex])


def _apply_ttl(store: Store, key: str, ttl: int) -> None:
    if ttl > 0:
        store.expire(key, ttl)


def union(store: Store, keys: Sequence[str], *, prefix: Key | str, ttl: int = DEFAULT_TTL) -> str:
    """Return a key holding the union of ``keys``.

    A single key is returned unchanged; otherwise the union is stored in one
    new volatile key. ``ttl=0`` makes that key persistent.
    """
    if not keys:
        raise ValueError("union() requires at least one key")
    if len(keys) == 1:
        return keys[0]
    result = volatile_key(prefix)
    store.sunionstore(result, *keys)
    _apply_ttl(store, result, ttl)
    EPHEMERAL_KEYS.labels(operation="union").inc()
    return result


def intersect(store: Store, keys: Sequence[str], *, prefix: Key | str, ttl: int = DEFAULT_TTL) -> str:
    """Return a key holding the intersection of ``keys``.

    A single key is returned unchanged; otherwise a new volatile key is seeded
    with the first input and intersected with each remaining input in turn.
    """
    if not keys:
        raise ValueError("intersect() requires at least one key")
    if len(keys) == 1:
        return keys[0]
    result = volatile_key(prefix)
    store.sunionstore(result, keys[0])
    for key in keys[1:]:
        if store.sinterstore(result, result, key) == 0:
            break
    _apply_ttl(store, result, ttl)
    EPHEMERAL_KEYS.labels(operation="intersect").inc()
    return result


class EphemeralScope:
    """Owns the volatile keys created during one evaluation.

    Keys created through the scope are deleted when it closes, except those
    handed to ``retain``. Expiry remains the safety net if ``close`` never runs.

    Example:
        with EphemeralScope(store, prefix="Ion", ttl=30) as scope:
            key = scope.intersect([a, b])
            members = store.smembers(key)
    """

    def __init__(self, store: Store, *, prefix: Key | str, ttl: int = DEFAULT_TTL) -> None:
        self.store = store
        self.prefix = prefix
        self.ttl = ttl
        self._owned: list[str] = []
        self._retained: set[str] = set()

    @property
    def owned_keys(self) -> tuple[str, ...]:
        return tuple(self._owned)

    def _track(self, key: str, inputs: Sequence[str]) -> str:
        if len(inputs) > 1:
            self._owned.append(key)
        return key

    def union(self, keys: Sequence[str]) -> str:
        return self._track(union(self.store, keys, prefix=self.prefix, ttl=self.ttl), keys)

    def intersect(self, keys: Sequence[str]) -> str:
        return self._track(intersect(self.store, keys, prefix=self.prefix, ttl=self.ttl), keys)

    def materialize(self, members: Sequence[str]) -> str:
        """Write ``members`` into a new owned volatile key."""
        key = volatile_key(self.prefix)
        self._owned.append(key)
        if members:
            self.store.sadd(key, *members)
            _apply_ttl(self.store, key, self.ttl)
        EPHEMERAL_KEYS.labels(operation="materialize").inc()
        return key

    def retain(self, key: str) -> str:
        """Copy ``key`` into a persistent key that outlives the scope."""
        kept = volatile_key(self.prefix)
        self.store.sunionstore(kept, key)
        self._retained.add(kept)
        return kept

    def close(self) -> None:
        doomed = [key for key in self._owned if key not in self._retained]
        self._owned.clear()
        if doomed:
            self.store.delete(*doomed)
            logger.debug("Discarded %d volatile keys", len(doomed))

    def __enter__(self) -> EphemeralScope:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
