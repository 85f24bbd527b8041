"""Query evaluation: clause tree in, scored candidate set out.

Ids are combined in the store through the set algebra (so large postings
never have to be merged in Python) while scores travel alongside as plain
mappings restricted to the ids that survive each step.

Scope rules:

- ``AllOf``: intersect ids, sum child scores
- ``AnyOf``: union ids, sum child scores over the children each id matched
- ``Weighted``: scale the inner clause's scores
- ``Boost``: applied after the regular children of its scope, in order;
  adds its weight to accumulated ids that also match, never adds ids
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
import logging

from ion_search.errors import InvalidQuery
from ion_search.search.candidates import CandidateSet, sum_scores
from ion_search.search.indices import IndexStrategy
from ion_search.search.query import AllOf, AnyOf, Boost, Clause, Leaf, Weighted
from ion_search.search.sets import EphemeralScope
from ion_search.search.store import Store


logger = logging.getLogger(__name__)


class Evaluator:
    """Evaluates clauses against one store within one ``EphemeralScope``."""

    def __init__(
        self,
        store: Store,
        resolver: Callable[[str, str], IndexStrategy],
        scope: EphemeralScope,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.scope = scope

    def evaluate(self, clause: Clause) -> CandidateSet:
        if isinstance(clause, Leaf):
            return self._leaf(clause)
        if isinstance(clause, AllOf):
            return self._group(clause.children, self.scope.intersect)
        if isinstance(clause, AnyOf):
            return self._group(clause.children, self.scope.union)
        if isinstance(clause, Weighted):
            return self._weighted(clause)
        if isinstance(clause, Boost):
            # A boost outside a group has nothing to re-score.
            return self._empty()
        msg = f"Cannot evaluate {clause!r}"
        raise InvalidQuery(msg)

    def _empty(self) -> CandidateSet:
        return CandidateSet(key=self.scope.materialize([]))

    def _leaf(self, leaf: Leaf) -> CandidateSet:
        strategy = self.resolver(leaf.kind, leaf.field)
        result = strategy.search(self.store, leaf.operand, self.scope)
        logger.debug("Leaf %s:%s matched %d records", leaf.kind, leaf.field, len(result))
        return result

    def _group(
        self,
        children: Sequence[Clause],
        combine: Callable[[Sequence[str]], str],
    ) -> CandidateSet:
        regular = [child for child in children if not isinstance(child, Boost)]
        boosts = [child for child in children if isinstance(child, Boost)]

        if not regular:
            accumulated = self._empty()
        else:
            parts = [self.evaluate(child) for child in regular]
            if len(parts) == 1:
                accumulated = parts[0]
            else:
                key = combine([part.key for part in parts])
                members = self.store.smembers(key)
                accumulated = CandidateSet(key=key, scores=sum_scores(members, (part.scores for part in parts)))

        for boost in boosts:
            accumulated = self._boost(boost, accumulated)
        return accumulated

    def _weighted(self, clause: Weighted) -> CandidateSet:
        inner = self.evaluate(clause.clause)
        return CandidateSet(
            key=inner.key,
            scores={record_id: score * clause.weight for record_id, score in inner.scores.items()},
        )

    def _boost(self, clause: Boost, accumulated: CandidateSet) -> CandidateSet:
        if not accumulated.scores:
            return accumulated
        inner = self.evaluate(clause.clause)
        if not inner.scores:
            return accumulated
        hits = self.store.smembers(self.scope.intersect([accumulated.key, inner.key]))
        scores = dict(accumulated.scores)
        for record_id in hits:
            if record_id in scores:
                scores[record_id] += clause.weight
        return CandidateSet(key=accumulated.key, scores=scores)
