"""Result sets: ordered, windowed views over an evaluated query."""

from __future__ import annotations

import builtins
from collections.abc import Iterator, Mapping
import logging
from typing import TYPE_CHECKING, Any, Literal

from ion_search.search.candidates import id_sort_key, rank
from ion_search.search.schema import FieldKind


if TYPE_CHECKING:
    from ion_search.engine import SearchIndex


logger = logging.getLogger(__name__)

SortOrder = Literal["asc", "desc"]


class ResultSet:
    """The outcome of one search.

    ``size`` always reports the full candidate count; ``range`` only changes
    which slice ``ids`` and iteration expose. Ordering is by relevance unless
    ``sort_by`` switched it to a sort index.
    """

    def __init__(self, index: SearchIndex, scores: Mapping[str, float], *, key: str | None = None) -> None:
        self._index = index
        self._scores = dict(scores)
        self._ranked = rank(self._scores)
        self._sorted: list[str] | None = None
        self._sort_field: str | None = None
        self._window: slice | None = None
        self.key = key

    def __repr__(self) -> str:
        return f"<ResultSet index={self._index.name!r} size={self.size} window={self._window}>"

    # -- counts and ids ----------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._scores)

    def __len__(self) -> int:
        return self.size

    @property
    def all_ids(self) -> list[str]:
        """Every candidate id in the active order, ignoring the window."""
        return list(self._sorted if self._sorted is not None else self._ranked)

    @property
    def ids(self) -> list[str]:
        """Candidate ids in the active order, restricted to the window."""
        ordered = self.all_ids
        return ordered if self._window is None else ordered[self._window]

    @property
    def window(self) -> slice | None:
        return self._window

    @property
    def sort_field(self) -> str | None:
        return self._sort_field

    def score(self, record_id: str) -> float | None:
        return self._scores.get(record_id)

    @property
    def scores(self) -> dict[str, float]:
        return dict(self._scores)

    # -- windowing ---------------------------------------------------------

    def range(
        self,
        start: int | builtins.range | slice | str | None = None,
        limit: int | None = None,
        *,
        page: int | None = None,
        to: int | None = None,
    ) -> ResultSet:
        """Set the window and return self.

        Accepted forms::

            results.range(54, 10)               # start, limit
            results.range(3)                    # from 3 to the end
            results.range(page=1, limit=30)     # 1-based pages
            results.range(3, to=9)              # inclusive end
            results.range(range(0, 4))          # Python range (step 1)
            results.range(slice(0, None))
            results.range("all")                # reset
        """
        if isinstance(start, str):
            if start != "all" or limit is not None or page is not None or to is not None:
                raise ValueError(f"Unsupported range specification {start!r}")
            self._window = None
            return self

        if isinstance(start, (builtins.range, slice)):
            if limit is not None or page is not None or to is not None:
                raise ValueError("A range or slice window cannot be combined with other options")
            if start.step not in (None, 1):
                raise ValueError("Result windows must be contiguous (step 1)")
            self._window = slice(start.start, start.stop)
            return self

        if page is not None:
            if start is not None or to is not None:
                raise ValueError("page cannot be combined with start or to")
            if limit is None or limit < 0:
                raise ValueError("page requires a non-negative limit")
            if page < 1:
                raise ValueError("page numbers start at 1")
            offset = (page - 1) * limit
            self._window = slice(offset, offset + limit)
            return self

        offset = 0 if start is None else start
        if offset < 0:
            raise ValueError("start must not be negative")
        if to is not None and limit is not None:
            raise ValueError("Pass either limit or to, not both")
        if to is not None:
            stop = None if to == -1 else to + 1
        elif limit is not None:
            if limit < 0:
                raise ValueError("limit must not be negative")
            stop = offset + limit
        else:
            stop = None
        self._window = slice(offset, stop)
        return self

    # -- ordering ----------------------------------------------------------

    def sort_by(self, field: str | None, order: SortOrder = "asc") -> ResultSet:
        """Order by a sort index (relevance is ignored); ``None`` restores relevance order.

        Records without a sort value come last. Ties on the sort value, and the
        records without one, stay in ascending id order.
        """
        if field is None:
            self._sorted = None
            self._sort_field = None
            return self
        if order not in ("asc", "desc"):
            raise ValueError(f"order must be 'asc' or 'desc', got {order!r}")

        strategy = self._index.strategy(FieldKind.SORT, field)
        sort_keys = strategy.sort_keys(self._index.store, self._ranked)
        keyed = sorted((record_id for record_id, value in sort_keys.items() if value is not None), key=id_sort_key)
        # Stable sort: equal sort keys keep ascending id order in both directions.
        keyed.sort(key=sort_keys.__getitem__, reverse=order == "desc")
        missing = sorted((record_id for record_id, value in sort_keys.items() if value is None), key=id_sort_key)
        self._sorted = keyed + missing
        self._sort_field = field
        return self

    # -- materialization ---------------------------------------------------

    def __iter__(self) -> Iterator[Any]:
        for record_id in self.ids:
            record = self._index.load(record_id)
            if record is None:
                logger.debug("Skipping unresolvable record %s in %s", record_id, self._index.name)
                continue
            yield record

    def to_list(self) -> list[Any]:
        return list(self)

    def apply(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """Run a registered result post-processor on this result set."""
        return self._index.plugins.post_process(name, self, *args, **kwargs)
