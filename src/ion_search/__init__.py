"""Embeddable, store-backed search: text, phonetic, numeric and sort indices with composable scored queries."""

from ion_search.config import Settings, get_settings, reset_settings
from ion_search.engine import Engine, IndexObserver, SearchIndex
from ion_search.errors import InvalidIndexKind, InvalidQuery, IonError, StoreError, UnknownField
from ion_search.search.plugins import PluginRegistry
from ion_search.search.query import AllOf, AnyOf, Boost, Leaf, QueryBuilder, Weighted
from ion_search.search.results import ResultSet
from ion_search.search.schema import (
    FieldKind,
    IndexField,
    field,
    number_field,
    phonetic_field,
    sort_field,
    text_field,
)
from ion_search.search.sqlite_store import SqliteStore
from ion_search.search.store import MemoryStore, Store


__all__ = [
    "AllOf",
    "AnyOf",
    "Boost",
    "Engine",
    "FieldKind",
    "IndexField",
    "IndexObserver",
    "InvalidIndexKind",
    "InvalidQuery",
    "IonError",
    "Leaf",
    "MemoryStore",
    "PluginRegistry",
    "QueryBuilder",
    "ResultSet",
    "SearchIndex",
    "Settings",
    "SqliteStore",
    "Store",
    "StoreError",
    "UnknownField",
    "Weighted",
    "field",
    "get_settings",
    "number_field",
    "phonetic_field",
    "reset_settings",
    "sort_field",
    "text_field",
]
