"""Extension registries supplied to an engine at construction time.

Three things can be plugged in without touching engine classes:

- index kinds: name -> ``IndexStrategy`` subclass (leaf matchers)
- query verbs: name -> callable ``(builder, *args, **kwargs)`` composing clauses
- result post-processors: name -> callable ``(result_set, *args, **kwargs)``

Example:
    plugins = PluginRegistry()
    plugins.register_verb(
        "keywords",
        lambda q, what: q.any_of(lambda sub: (sub.text("title", what), sub.phonetic("artist", what))),
    )
    engine = Engine(plugins=plugins)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ion_search.errors import InvalidIndexKind, InvalidQuery
from ion_search.search.indices import BUILTIN_STRATEGIES, IndexStrategy
from ion_search.search.schema import normalize_kind


if TYPE_CHECKING:
    from ion_search.search.query import Clause, QueryBuilder
    from ion_search.search.results import ResultSet

Verb = Callable[..., "Clause | None"]
PostProcessor = Callable[..., Any]


class PluginRegistry:
    """Registries for index kinds, query verbs and result post-processors."""

    def __init__(self) -> None:
        self._strategies: dict[str, type[IndexStrategy]] = dict(BUILTIN_STRATEGIES)
        self._verbs: dict[str, Verb] = {}
        self._post_processors: dict[str, PostProcessor] = {}

    # -- index kinds -------------------------------------------------------

    def register_index_kind(self, name: str, strategy: type[IndexStrategy]) -> None:
        kind = normalize_kind(name)
        if not (isinstance(strategy, type) and issubclass(strategy, IndexStrategy)):
            msg = f"Index kind '{name}' must be an IndexStrategy subclass, got {strategy!r}"
            raise InvalidIndexKind(msg)
        self._strategies[kind] = strategy

    @property
    def index_kinds(self) -> frozenset[str]:
        return frozenset(self._strategies)

    def strategy_for(self, kind: str) -> type[IndexStrategy]:
        try:
            return self._strategies[normalize_kind(kind)]
        except KeyError:
            msg = f"Unknown index kind '{kind}'. Available: {sorted(self._strategies)}"
            raise InvalidIndexKind(msg) from None

    # -- query verbs -------------------------------------------------------

    def register_verb(self, name: str, verb: Verb) -> None:
        if not callable(verb):
            raise TypeError(f"Query verb '{name}' must be callable")
        self._verbs[name] = verb

    def verb(self, name: str) -> Verb:
        try:
            return self._verbs[name]
        except KeyError:
            msg = f"Unknown query verb '{name}'. Available: {sorted(self._verbs)}"
            raise InvalidQuery(msg) from None

    def invoke_verb(self, name: str, builder: QueryBuilder, *args: Any, **kwargs: Any) -> Clause | None:
        return self.verb(name)(builder, *args, **kwargs)

    # -- result post-processors --------------------------------------------

    def register_post_processor(self, name: str, processor: PostProcessor) -> None:
        if not callable(processor):
            raise TypeError(f"Post-processor '{name}' must be callable")
        self._post_processors[name] = processor

    def post_process(self, name: str, results: ResultSet, *args: Any, **kwargs: Any) -> Any:
        try:
            processor = self._post_processors[name]
        except KeyError:
            msg = f"Unknown result post-processor '{name}'. Available: {sorted(self._post_processors)}"
            raise KeyError(msg) from None
        return processor(results, *args, **kwargs)
