"""Query clauses and the builder used to compose them.

A query is a tree of immutable clauses:

- ``Leaf``: match one field through its index strategy
- ``AllOf``: conjunction of its children
- ``AnyOf``: disjunction of its children
- ``Weighted``: scales a clause's scores (meaningful inside ``AnyOf``)
- ``Boost``: adds a fixed amount to matches already in the enclosing scope

``QueryBuilder`` is handed to the caller's closure as its only argument;
nested groups receive their own child builder, so values from the
surrounding code are always passed explicitly:

    index.search(lambda q: (
        q.text("name", title),
        q.any_of(lambda sub: (
            sub.weighted(5.0, sub.text("name", words)),
            sub.weighted(1.0, sub.text("synopsis", words)),
        )),
        q.boost(2.0, q.text("tags", "sale")),
    ))
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from numbers import Real
from typing import TYPE_CHECKING, Any, Union

from ion_search.errors import InvalidQuery, UnknownField
from ion_search.search.schema import FieldKind, normalize_kind


if TYPE_CHECKING:
    from ion_search.search.indices import IndexStrategy
    from ion_search.search.plugins import PluginRegistry


@dataclass(frozen=True)
class Leaf:
    kind: str
    field: str
    operand: Any


@dataclass(frozen=True)
class AllOf:
    children: tuple[Clause, ...]


@dataclass(frozen=True)
class AnyOf:
    children: tuple[Clause, ...]


@dataclass(frozen=True)
class Weighted:
    weight: float
    clause: Clause


@dataclass(frozen=True)
class Boost:
    weight: float
    clause: Clause


Clause = Union[Leaf, AllOf, AnyOf, Weighted, Boost]
CLAUSE_TYPES = (Leaf, AllOf, AnyOf, Weighted, Boost)

Resolver = Callable[[str, str], "IndexStrategy"]
BuilderFn = Callable[["QueryBuilder"], Any]


def _walk(clauses: tuple[Clause, ...] | list[Clause]):
    for clause in clauses:
        yield clause
        if isinstance(clause, (AllOf, AnyOf)):
            yield from _walk(clause.children)
        elif isinstance(clause, (Weighted, Boost)):
            yield from _walk((clause.clause,))


def _check_weight(weight: Any) -> float:
    if isinstance(weight, bool) or not isinstance(weight, Real):
        msg = f"Clause weight must be a number, got {weight!r}"
        raise InvalidQuery(msg)
    return float(weight)


class QueryBuilder:
    """Collects clauses for one scope of a query.

    Args:
        resolver: Returns the index strategy for ``(kind, field)`` or raises
            ``UnknownField``; used to validate leaves as they are built.
        plugins: Registry providing custom query verbs.
    """

    def __init__(self, resolver: Resolver, plugins: PluginRegistry) -> None:
        self._resolver = resolver
        self._plugins = plugins
        self._clauses: list[Clause] = []

    @property
    def clauses(self) -> tuple[Clause, ...]:
        return tuple(self._clauses)

    def child(self) -> QueryBuilder:
        return QueryBuilder(self._resolver, self._plugins)

    def _add(self, clause: Clause) -> Clause:
        self._clauses.append(clause)
        return clause

    def _adopt(self, clauses: tuple[Clause, ...]) -> None:
        # Clauses built on this builder and then passed to a group belong to the group only.
        self._clauses = [existing for existing in self._clauses if not any(existing is c for c in clauses)]

    def _collect(self, items: tuple[Clause | BuilderFn, ...]) -> tuple[Clause, ...]:
        if len(items) == 1 and callable(items[0]) and not isinstance(items[0], CLAUSE_TYPES):
            return self.child().run(items[0]).clauses
        for item in items:
            if not isinstance(item, CLAUSE_TYPES):
                msg = f"Expected a query clause or a single builder function, got {item!r}"
                raise InvalidQuery(msg)
        clauses = tuple(items)  # type: ignore[arg-type]
        self._adopt(clauses)
        return clauses

    def run(self, fn: BuilderFn) -> QueryBuilder:
        """Call ``fn`` with this builder and return the builder.

        Clauses the function returns without having added them here (built
        directly or on another builder) are appended in order.
        """
        returned = fn(self)
        if returned is None or returned is self:
            return self
        if isinstance(returned, CLAUSE_TYPES):
            returned = (returned,)
        elif not isinstance(returned, (list, tuple)):
            msg = f"A query function must return clauses or None, got {returned!r}"
            raise InvalidQuery(msg)
        held = {id(clause) for clause in _walk(self._clauses)}
        for clause in returned:
            if clause is None:
                continue
            if not isinstance(clause, CLAUSE_TYPES):
                msg = f"Expected query clauses from the query function, got {clause!r}"
                raise InvalidQuery(msg)
            if id(clause) not in held:
                self._add(clause)
                held.add(id(clause))
        return self

    def _single(self, item: Clause | BuilderFn) -> Clause:
        clauses = self._collect((item,))
        if len(clauses) == 1:
            return clauses[0]
        return AllOf(clauses)

    # -- leaves ------------------------------------------------------------

    def match(self, kind: FieldKind | str, field: str, operand: Any = None, **options: Any) -> Clause:
        """Add a leaf for any registered, searchable index kind."""
        kind_name = normalize_kind(kind)
        if options:
            if operand is not None:
                msg = f"Pass either a value or options to the {kind_name} query on '{field}', not both"
                raise InvalidQuery(msg)
            operand = options
        strategy = self._resolver(kind_name, field)
        if not strategy.searchable:
            # Sort indices only reorder results.
            raise UnknownField(field, expected=f"searchable {kind_name}")
        return self._add(Leaf(kind_name, field, strategy.validate_operand(operand)))

    def text(self, field: str, value: str) -> Clause:
        return self.match(FieldKind.TEXT, field, value)

    def phonetic(self, field: str, value: str) -> Clause:
        return self.match(FieldKind.PHONETIC, field, value)

    metaphone = phonetic

    def number(self, field: str, value: float | Mapping[str, float] | None = None, **bounds: float) -> Clause:
        """Equality with a bare value, or any of ``gt``/``lt``/``min``/``max``."""
        if value is None and not bounds:
            msg = f"number query on '{field}' needs a value or bounds"
            raise InvalidQuery(msg)
        return self.match(FieldKind.NUMBER, field, value, **bounds)

    # -- groups ------------------------------------------------------------

    def all_of(self, *items: Clause | BuilderFn) -> Clause:
        return self._add(AllOf(self._collect(items)))

    def any_of(self, *items: Clause | BuilderFn) -> Clause:
        return self._add(AnyOf(self._collect(items)))

    def weighted(self, weight: float, clause: Clause | BuilderFn) -> Clause:
        return self._add(Weighted(_check_weight(weight), self._single(clause)))

    score = weighted

    def boost(self, weight: float | Clause | BuilderFn = 1.0, clause: Clause | BuilderFn | None = None) -> Clause:
        """Raise the score of current matches that also match ``clause``; never adds matches."""
        if clause is None:
            if isinstance(weight, Real) and not isinstance(weight, bool):
                raise InvalidQuery("boost() needs a clause")
            weight, clause = 1.0, weight  # type: ignore[assignment]
        return self._add(Boost(_check_weight(weight), self._single(clause)))  # type: ignore[arg-type]

    # -- extensions --------------------------------------------------------

    def verb(self, name: str, *args: Any, **kwargs: Any) -> Clause | None:
        """Run a registered query verb against this builder."""
        return self._plugins.invoke_verb(name, self, *args, **kwargs)

    def build(self) -> Clause:
        """Return the root clause: an implicit conjunction of everything added."""
        return AllOf(self.clauses)
