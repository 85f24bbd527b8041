"""Candidate sets produced by evaluating query clauses."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class CandidateSet:
    """Record ids matched by a clause plus their clause-local scores.

    ``key`` names the store set holding the ids; ``scores`` has exactly one
    entry per id in that set.
    """

    key: str
    scores: Mapping[str, float] = field(default_factory=dict)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(self.scores)

    def __len__(self) -> int:
        return len(self.scores)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self.scores


def id_sort_key(record_id: str) -> tuple[int, int, str]:
    """Ascending id order: all-digit ids numerically first, then the rest as strings."""
    if record_id.isdigit():
        return (0, int(record_id), record_id)
    return (1, 0, record_id)


def rank(scores: Mapping[str, float]) -> list[str]:
    """Order ids by descending score, ties broken by ascending id."""
    return sorted(scores, key=lambda record_id: (-scores[record_id], id_sort_key(record_id)))


def sum_scores(members: Iterable[str], parts: Iterable[Mapping[str, float]]) -> dict[str, float]:
    """Sum each member's score over ``parts``; members absent from a part add nothing."""
    parts = list(parts)
    return {member: float(sum(part.get(member, 0.0) for part in parts)) for member in members}
