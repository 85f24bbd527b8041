"""Engine entry points: define searchable record types, keep their postings current, search them.

The engine never hooks into a persistence layer by itself. Whatever saves
records calls ``SearchIndex.update_indices`` after its own durable write and
``SearchIndex.remove_indices`` around its delete; both satisfy the
``IndexObserver`` protocol.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
import logging
from typing import Any, Protocol, runtime_checkable

from ion_search.config import Settings, get_settings
from ion_search.errors import IonError, UnknownField
from ion_search.observability.metrics import INDEX_UPDATES, LAST_RESULT_SIZE, SEARCH_LATENCY, track_latency
from ion_search.observability.tracing import create_span
from ion_search.search.evaluator import Evaluator
from ion_search.search.indices import IndexStrategy
from ion_search.search.keys import Key
from ion_search.search.plugins import PluginRegistry
from ion_search.search.query import CLAUSE_TYPES, AllOf, Clause, QueryBuilder
from ion_search.search.results import ResultSet
from ion_search.search.schema import FieldKind, IndexField, IndexSchema, normalize_kind, read_attribute
from ion_search.search.sets import EphemeralScope
from ion_search.search.store import Store
from ion_search.search.store_factory import create_store


logger = logging.getLogger(__name__)

Loader = Callable[[str], Any]
IdGetter = Callable[[Any], Any]
Query = Callable[[QueryBuilder], Any] | Clause | Sequence[Clause] | QueryBuilder | None


@runtime_checkable
class IndexObserver(Protocol):
    """What a persistence layer calls around record writes and deletes."""

    def update_indices(self, record: Any) -> None: ...

    def remove_indices(self, record: Any) -> None: ...


def _default_id(record: Any) -> Any:
    return read_attribute(record, "id")


class SearchIndex:
    """Postings and search for one record type.

    Args:
        name: Record type name; namespaces every key of this index
        schema: Registered fields
        store: Backing store
        settings: Engine settings (stopwords, key prefix, volatile key TTL)
        plugins: Registries for index kinds, query verbs and post-processors
        loader: Resolves a record id to a record (or None when it is gone)
        id_getter: Reads the record id; defaults to the ``id`` attribute/key
    """

    def __init__(
        self,
        name: str,
        schema: IndexSchema,
        *,
        store: Store,
        settings: Settings,
        plugins: PluginRegistry,
        loader: Loader | None = None,
        id_getter: IdGetter | None = None,
    ) -> None:
        self.name = name
        self.schema = schema
        self.store = store
        self.settings = settings
        self.plugins = plugins
        self.loader = loader
        self.id_getter = id_getter or _default_id
        self.root = Key(settings.key_prefix)[name]
        self._strategies: dict[tuple[str, str], IndexStrategy] = {}
        for index_field in schema:
            strategy_cls = plugins.strategy_for(index_field.kind)
            self._strategies[(index_field.kind, index_field.name)] = strategy_cls(
                index_field,
                self.root[index_field.kind][index_field.name],
                stopwords=settings.stopwords,
            )

    def __repr__(self) -> str:
        return f"<SearchIndex {self.name!r} fields={len(self._strategies)}>"

    # -- lookups -----------------------------------------------------------

    def strategy(self, kind: FieldKind | str, field: str) -> IndexStrategy:
        """Return the strategy indexing ``field`` as ``kind`` or raise ``UnknownField``."""
        kind_name = normalize_kind(kind)
        try:
            return self._strategies[(kind_name, field)]
        except KeyError:
            raise UnknownField(field, expected=kind_name, index_name=self.name) from None

    @property
    def strategies(self) -> tuple[IndexStrategy, ...]:
        return tuple(self._strategies.values())

    def record_id(self, record: Any) -> str:
        value = self.id_getter(record)
        if value is None or value == "":
            msg = f"Cannot index a {self.name} record without an id"
            raise IonError(msg)
        return str(value)

    def refs_key(self, record_id: str) -> str:
        return str(self.root["~refs"][record_id])

    def load(self, record_id: str) -> Any:
        if self.loader is None:
            msg = f"No loader configured for '{self.name}'; use ResultSet.ids instead of iterating"
            raise IonError(msg)
        return self.loader(record_id)

    # -- observer contract -------------------------------------------------

    def update_indices(self, record: Any) -> None:
        """Replace every posting for ``record`` with postings for its current values."""
        record_id = self.record_id(record)
        # Extract everything first so a failing extractor leaves the old postings intact.
        values = [(strategy, strategy.field.value_for(record)) for strategy in self._strategies.values()]
        planned = {key for strategy, value in values for key in strategy.posting_keys(value)}
        refs_key = self.refs_key(record_id)
        with create_span("ion.index.update", attributes={"ion.index": self.name, "ion.record_id": record_id}):
            # Refs cover every key holding this record at each step.
            if planned:
                self.store.sadd(refs_key, *planned)
            refs = self.store.smembers(refs_key)
            for strategy in self._strategies.values():
                strategy.unindex(self.store, record_id, refs)
            for strategy, value in values:
                strategy.index(self.store, record_id, value)
            stale = refs - planned
            if stale:
                self.store.srem(refs_key, *stale)
        INDEX_UPDATES.labels(index=self.name, operation="update").inc()
        logger.debug("Indexed %s %s under %d keys", self.name, record_id, len(planned))

    def remove_indices(self, record: Any) -> None:
        """Remove every posting for ``record``."""
        record_id = self.record_id(record)
        with create_span("ion.index.remove", attributes={"ion.index": self.name, "ion.record_id": record_id}):
            self._unindex(record_id)
        INDEX_UPDATES.labels(index=self.name, operation="remove").inc()
        logger.debug("Removed %s %s from the index", self.name, record_id)

    def _unindex(self, record_id: str) -> None:
        refs_key = self.refs_key(record_id)
        refs = self.store.smembers(refs_key)
        if not refs:
            return
        for strategy in self._strategies.values():
            strategy.unindex(self.store, record_id, refs)
        self.store.delete(refs_key)

    def reindex(self, records: Iterable[Any]) -> int:
        """Update postings for many records; returns how many were indexed."""
        count = 0
        for record in records:
            self.update_indices(record)
            count += 1
        logger.info("Reindexed %d %s records", count, self.name)
        return count

    # -- querying ----------------------------------------------------------

    def query(self) -> QueryBuilder:
        """Return a fresh builder for this index."""
        return QueryBuilder(self.strategy, self.plugins)

    def _to_clause(self, query: Query) -> Clause:
        if query is None:
            return AllOf(())
        if isinstance(query, QueryBuilder):
            return query.build()
        if isinstance(query, CLAUSE_TYPES):
            return query
        if callable(query):
            return self.query().run(query).build()
        clauses = tuple(query)
        for clause in clauses:
            if not isinstance(clause, CLAUSE_TYPES):
                raise TypeError(f"Expected query clauses, got {clause!r}")
        return AllOf(clauses)

    def search(self, query: Query = None, *, retain: bool = False) -> ResultSet:
        """Evaluate ``query`` and return its result set.

        ``query`` may be a function receiving a ``QueryBuilder``, a clause, a
        sequence of clauses (combined with ``AllOf``) or a builder. With
        ``retain=True`` the matching ids are also copied into a persistent
        store key exposed as ``ResultSet.key``.
        """
        clause = self._to_clause(query)
        with (
            create_span("ion.search", attributes={"ion.index": self.name}),
            track_latency(SEARCH_LATENCY, index=self.name),
            EphemeralScope(self.store, prefix=self.settings.key_prefix, ttl=self.settings.ephemeral_ttl) as scope,
        ):
            candidates = Evaluator(self.store, self.strategy, scope).evaluate(clause)
            key = scope.retain(candidates.key) if retain else None

        LAST_RESULT_SIZE.labels(index=self.name).set(len(candidates))
        logger.debug("Search on %s matched %d records", self.name, len(candidates))
        return ResultSet(self, candidates.scores, key=key)


class Engine:
    """Holds the store, settings and plugins shared by every defined index.

    Settings fall back to the process-wide default from ``get_settings`` and
    the store to the backend those settings select.
    """

    def __init__(
        self,
        store: Store | None = None,
        settings: Settings | None = None,
        plugins: PluginRegistry | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        self.plugins = plugins if plugins is not None else PluginRegistry()
        self.store = store if store is not None else create_store(self.settings)
        self._indices: dict[str, SearchIndex] = {}

    def define(
        self,
        name: str,
        fields: Iterable[IndexField],
        *,
        loader: Loader | None = None,
        id_getter: IdGetter | None = None,
    ) -> SearchIndex:
        """Register a record type and its indexed fields."""
        if name in self._indices:
            raise ValueError(f"Index '{name}' is already defined")
        schema = IndexSchema(name, fields, known_kinds=self.plugins.index_kinds)
        index = SearchIndex(
            name,
            schema,
            store=self.store,
            settings=self.settings,
            plugins=self.plugins,
            loader=loader,
            id_getter=id_getter,
        )
        self._indices[name] = index
        logger.info("Defined index %s with %d fields", name, len(schema))
        return index

    def __getitem__(self, name: str) -> SearchIndex:
        return self._indices[name]

    def __contains__(self, name: object) -> bool:
        return name in self._indices

    @property
    def indices(self) -> dict[str, SearchIndex]:
        return dict(self._indices)
