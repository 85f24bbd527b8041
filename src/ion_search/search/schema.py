"""
Field definitions for searchable record types.

A field names a record attribute, the kind of index built from it, and an
optional extractor that computes the indexed value from the record. Kinds:

- text: word postings, matched disjunctively per query token
- phonetic: like text, with each token replaced by its metaphone code
- number: numeric sorted structure answering equality and range predicates
- sort: per-field comparison keys, used only to reorder results

Field definitions are immutable once registered on an ``IndexSchema``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ion_search.errors import InvalidIndexKind, UnknownField


Extractor = Callable[[Any], Any]


class FieldKind(str, Enum):
    """Index kinds understood by the built-in strategies."""

    TEXT = "text"
    PHONETIC = "phonetic"
    NUMBER = "number"
    SORT = "sort"


_KIND_ALIASES = {"metaphone": FieldKind.PHONETIC.value, "numeric": FieldKind.NUMBER.value}


def normalize_kind(kind: FieldKind | str) -> str:
    """Return the canonical kind name (enum values and aliases collapse)."""
    if isinstance(kind, FieldKind):
        return kind.value
    if not isinstance(kind, str) or not kind:
        msg = f"Index kind must be a non-empty string, got {kind!r}"
        raise InvalidIndexKind(msg)
    lowered = kind.lower()
    return _KIND_ALIASES.get(lowered, lowered)


def read_attribute(record: Any, name: str) -> Any:
    """Default extractor: mapping key or attribute named like the field."""
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


@dataclass(frozen=True)
class IndexField:
    """
    A single indexed field of a record type.

    Args:
        name: Field name used in queries and posting keys
        kind: Index kind name (see ``FieldKind``; custom kinds come from plugins)
        extractor: Callable returning the raw value to index from a record.
            Defaults to reading the attribute of the same name.
    """

    name: str
    kind: str
    extractor: Extractor | None = None

    def value_for(self, record: Any) -> Any:
        if self.extractor is not None:
            return self.extractor(record)
        return read_attribute(record, self.name)

    def to_dict(self) -> dict[str, Any]:
        """Serialize field definition (extractors are not serializable)."""
        return {"name": self.name, "kind": self.kind, "custom_extractor": self.extractor is not None}


def field(name: str, kind: FieldKind | str, extractor: Extractor | None = None) -> IndexField:
    """Build a field definition, normalizing the kind name."""
    if not name:
        raise ValueError("Field name must not be empty")
    return IndexField(name=name, kind=normalize_kind(kind), extractor=extractor)


def text_field(name: str, extractor: Extractor | None = None) -> IndexField:
    return field(name, FieldKind.TEXT, extractor)


def phonetic_field(name: str, extractor: Extractor | None = None) -> IndexField:
    return field(name, FieldKind.PHONETIC, extractor)


def number_field(name: str, extractor: Extractor | None = None) -> IndexField:
    return field(name, FieldKind.NUMBER, extractor)


def sort_field(name: str, extractor: Extractor | None = None) -> IndexField:
    return field(name, FieldKind.SORT, extractor)


class IndexSchema:
    """
    The set of indexed fields registered for one record type.

    The same attribute may be indexed under several kinds (e.g. ``name`` as
    both text and sort), so fields are keyed by ``(kind, name)``.

    Example:
        schema = IndexSchema(
            "Album",
            [text_field("name"), phonetic_field("artist"), sort_field("name")],
            known_kinds={"text", "phonetic", "number", "sort"},
        )
    """

    def __init__(self, name: str, fields: Iterable[IndexField], *, known_kinds: Iterable[str]) -> None:
        self.name = name
        self._known_kinds = frozenset(known_kinds)
        self._fields: dict[tuple[str, str], IndexField] = {}
        for index_field in fields:
            self._register(index_field)

    def _register(self, index_field: IndexField) -> None:
        if index_field.kind not in self._known_kinds:
            msg = (
                f"Unknown index kind '{index_field.kind}' for field '{index_field.name}' on '{self.name}'. "
                f"Available: {sorted(self._known_kinds)}"
            )
            raise InvalidIndexKind(msg)
        key = (index_field.kind, index_field.name)
        if key in self._fields:
            msg = f"Field '{index_field.name}' is already indexed as {index_field.kind} on '{self.name}'"
            raise ValueError(msg)
        self._fields[key] = index_field

    def __iter__(self) -> Iterator[IndexField]:
        return iter(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._fields

    def get(self, kind: FieldKind | str, name: str) -> IndexField:
        """Return the field of ``kind`` named ``name`` or raise ``UnknownField``."""
        kind_name = normalize_kind(kind)
        try:
            return self._fields[(kind_name, name)]
        except KeyError:
            raise UnknownField(name, expected=kind_name, index_name=self.name) from None

    def fields_of(self, kind: FieldKind | str) -> list[IndexField]:
        kind_name = normalize_kind(kind)
        return [f for f in self._fields.values() if f.kind == kind_name]

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "fields": [f.to_dict() for f in self._fields.values()]}
