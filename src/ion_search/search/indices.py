"""Index strategies: how a field value becomes postings and how a leaf query reads them.

Every strategy owns one root key (``<prefix>:<type>:<kind>:<field>``) and
writes only at or below it:

- ``TextIndex``: one set per token, ``<root>:<token>``
- ``PhoneticIndex``: same layout, tokens are metaphone codes
- ``NumberIndex``: one sorted set at ``<root>``, member score = value
- ``SortIndex``: one hash at ``<root>``, record id -> comparison key

``posting_keys`` reports the keys a value will be written under before anything
is written, so the caller can extend its per-record reference list first;
``unindex`` removes a record given that list.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Collection, Mapping
import logging
import math
from numbers import Real
from typing import Any, ClassVar

from ion_search.errors import InvalidQuery
from ion_search.search.analyzers import Analyzer, PhoneticAnalyzer, TextAnalyzer, sort_key, unique_terms
from ion_search.search.candidates import CandidateSet
from ion_search.search.keys import Key
from ion_search.search.schema import FieldKind, IndexField
from ion_search.search.sets import EphemeralScope
from ion_search.search.store import Store


logger = logging.getLogger(__name__)


class IndexStrategy(ABC):
    """Base class for per-field index strategies.

    Subclasses set ``kind`` and implement ``posting_keys``, ``index``, ``unindex``
    and (when ``searchable``) ``search``. ``index`` must write only under the keys
    ``posting_keys`` reports for the same value.
    """

    kind: ClassVar[str]
    searchable: ClassVar[bool] = True

    def __init__(self, field: IndexField, root: Key, *, stopwords: Collection[str] | None = None) -> None:
        self.field = field
        self.root = root
        self.stopwords = stopwords

    @property
    def key(self) -> str:
        return str(self.root)

    def owns(self, ref: str) -> bool:
        """Return True if ``ref`` is this strategy's root or lies below it."""
        return ref == self.key or ref.startswith(f"{self.key}:")

    def validate_operand(self, operand: Any) -> Any:
        """Check a query operand at build time; returns the normalized operand."""
        return operand

    @abstractmethod
    def posting_keys(self, value: Any) -> list[str]:
        """Return the keys ``index`` would write for ``value``, without touching the store."""

    @abstractmethod
    def index(self, store: Store, record_id: str, value: Any) -> list[str]:
        """Write postings for ``value``; return the keys written."""

    @abstractmethod
    def unindex(self, store: Store, record_id: str, refs: Collection[str]) -> None:
        """Remove ``record_id`` from every key in ``refs`` this strategy owns."""

    def search(self, store: Store, operand: Any, scope: EphemeralScope) -> CandidateSet:
        msg = f"{self.kind} index on '{self.field.name}' does not support matching"
        raise InvalidQuery(msg)


class TextIndex(IndexStrategy):
    """Word postings; a query matches records sharing any of its tokens."""

    kind = FieldKind.TEXT.value

    def __init__(self, field: IndexField, root: Key, *, stopwords: Collection[str] | None = None) -> None:
        super().__init__(field, root, stopwords=stopwords)
        self.analyzer: Analyzer = self._build_analyzer()

    def _build_analyzer(self) -> Analyzer:
        return TextAnalyzer(stopwords=self.stopwords)

    def terms(self, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set, frozenset)):
            value = " ".join(str(item) for item in value if item is not None)
        return unique_terms(self.analyzer(str(value)))

    def validate_operand(self, operand: Any) -> str:
        if operand is None:
            msg = f"{self.kind} query on '{self.field.name}' needs a value"
            raise InvalidQuery(msg)
        return str(operand)

    def posting_keys(self, value: Any) -> list[str]:
        return [str(self.root[term]) for term in self.terms(value)]

    def index(self, store: Store, record_id: str, value: Any) -> list[str]:
        keys = self.posting_keys(value)
        for key in keys:
            store.sadd(key, record_id)
        return keys

    def unindex(self, store: Store, record_id: str, refs: Collection[str]) -> None:
        for ref in refs:
            if ref != self.key and self.owns(ref):
                store.srem(ref, record_id)

    def search(self, store: Store, operand: Any, scope: EphemeralScope) -> CandidateSet:
        terms = self.terms(operand)
        if not terms:
            return CandidateSet(key=scope.materialize([]))
        keys = [str(self.root[term]) for term in terms]
        # Score is the number of distinct query tokens a record is posted under.
        matches: Counter[str] = Counter()
        for key in keys:
            matches.update(store.smembers(key))
        return CandidateSet(key=scope.union(keys), scores={member: float(count) for member, count in matches.items()})


class PhoneticIndex(TextIndex):
    """Text postings keyed by metaphone codes, so spelling variants still match."""

    kind = FieldKind.PHONETIC.value

    def _build_analyzer(self) -> Analyzer:
        return PhoneticAnalyzer(stopwords=self.stopwords)


_BOUND_OPTIONS = frozenset({"gt", "lt", "min", "max"})

Bounds = tuple[float | None, float | None, bool, bool]


def _as_number(value: Any, *, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        msg = f"{what} must be a number, got {value!r}"
        raise InvalidQuery(msg)
    number = float(value)
    if math.isnan(number):
        msg = f"{what} must not be NaN"
        raise InvalidQuery(msg)
    return number


def parse_bounds(operand: Any) -> Bounds | None:
    """Turn a number leaf operand into ``(minimum, maximum, min_exclusive, max_exclusive)``.

    A bare number means equality. A mapping may combine ``gt``/``min`` for the
    lower bound and ``lt``/``max`` for the upper; when both are given on one
    side the stricter wins. Returns None when the bounds admit no value.
    """
    if not isinstance(operand, Mapping):
        value = _as_number(operand, what="number query value")
        return (value, value, False, False)

    unknown = set(operand) - _BOUND_OPTIONS
    if unknown:
        msg = f"Unknown number query options {sorted(unknown)}; expected any of {sorted(_BOUND_OPTIONS)}"
        raise InvalidQuery(msg)
    options = {name: _as_number(value, what=f"'{name}'") for name, value in operand.items()}

    minimum: float | None = None
    min_exclusive = False
    if "min" in options:
        minimum = options["min"]
    if "gt" in options and (minimum is None or options["gt"] >= minimum):
        minimum, min_exclusive = options["gt"], True

    maximum: float | None = None
    max_exclusive = False
    if "max" in options:
        maximum = options["max"]
    if "lt" in options and (maximum is None or options["lt"] <= maximum):
        maximum, max_exclusive = options["lt"], True

    if minimum is not None and maximum is not None:
        if minimum > maximum or (minimum == maximum and (min_exclusive or max_exclusive)):
            return None
    return (minimum, maximum, min_exclusive, max_exclusive)


class NumberIndex(IndexStrategy):
    """Numeric values in a sorted set answering equality and range predicates."""

    kind = FieldKind.NUMBER.value

    @staticmethod
    def coerce(value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        return None if math.isnan(number) else number

    def validate_operand(self, operand: Any) -> Any:
        parse_bounds(operand)
        return dict(operand) if isinstance(operand, Mapping) else operand

    def posting_keys(self, value: Any) -> list[str]:
        return [] if self.coerce(value) is None else [self.key]

    def index(self, store: Store, record_id: str, value: Any) -> list[str]:
        number = self.coerce(value)
        if number is None:
            if value is not None:
                logger.debug("Skipping non-numeric value for %s on record %s", self.field.name, record_id)
            return []
        store.zadd(self.key, {record_id: number})
        return [self.key]

    def unindex(self, store: Store, record_id: str, refs: Collection[str]) -> None:
        if self.key in refs:
            store.zrem(self.key, record_id)

    def search(self, store: Store, operand: Any, scope: EphemeralScope) -> CandidateSet:
        bounds = parse_bounds(operand)
        if bounds is None:
            logger.debug("Contradictory bounds %r on %s; empty match", operand, self.field.name)
            return CandidateSet(key=scope.materialize([]))
        minimum, maximum, min_exclusive, max_exclusive = bounds
        members = store.zrangebyscore(
            self.key, minimum, maximum, min_exclusive=min_exclusive, max_exclusive=max_exclusive
        )
        return CandidateSet(key=scope.materialize(members), scores=dict.fromkeys(members, 1.0))


class SortIndex(IndexStrategy):
    """Per-record comparison keys; consulted only to reorder results."""

    kind = FieldKind.SORT.value
    searchable = False

    def posting_keys(self, value: Any) -> list[str]:
        return [] if value is None else [self.key]

    def index(self, store: Store, record_id: str, value: Any) -> list[str]:
        if value is None:
            return []
        store.hset(self.key, record_id, sort_key(value))
        return [self.key]

    def unindex(self, store: Store, record_id: str, refs: Collection[str]) -> None:
        if self.key in refs:
            store.hdel(self.key, record_id)

    def sort_keys(self, store: Store, record_ids: Collection[str]) -> dict[str, str | None]:
        ordered = list(record_ids)
        return dict(zip(ordered, store.hmget(self.key, ordered), strict=True))


BUILTIN_STRATEGIES: dict[str, type[IndexStrategy]] = {
    strategy.kind: strategy for strategy in (TextIndex, PhoneticIndex, NumberIndex, SortIndex)
}
