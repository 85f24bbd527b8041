"""Unit tests for index maintenance and the engine facade."""

from types import SimpleNamespace

import pytest

from ion_search import (
    Engine,
    IndexObserver,
    InvalidIndexKind,
    IonError,
    MemoryStore,
    PluginRegistry,
    Settings,
    field,
    number_field,
    phonetic_field,
    sort_field,
    text_field,
)
from ion_search.errors import StoreError
from ion_search.search.candidates import CandidateSet
from ion_search.search.indices import IndexStrategy


class ExactIndex(IndexStrategy):
    """Whole-value postings, case-insensitive."""

    kind = "exact"

    def _key(self, value):
        return str(self.root[str(value).strip().lower()])

    def posting_keys(self, value):
        return [] if value is None else [self._key(value)]

    def index(self, store, record_id, value):
        keys = self.posting_keys(value)
        for key in keys:
            store.sadd(key, record_id)
        return keys

    def unindex(self, store, record_id, refs):
        for ref in refs:
            if self.owns(ref):
                store.srem(ref, record_id)

    def search(self, store, operand, scope):
        key = self._key(operand)
        return CandidateSet(key=key, scores=dict.fromkeys(store.smembers(key), 1.0))


class RefusingStore(MemoryStore):
    """Memory store that fails the next ``sadd`` to a key containing ``refuse``."""

    def __init__(self):
        super().__init__()
        self.refuse = None

    def sadd(self, key, *members):
        if self.refuse is not None and self.refuse in key:
            self.refuse = None
            raise StoreError(f"write to {key} refused")
        return super().sadd(key, *members)


def _refs(index, record_id):
    return index.store.smembers(index.refs_key(record_id))


@pytest.mark.unit
class TestUpdateIndices:
    """Postings always reflect a record's current values."""

    def test_refs_track_written_keys(self, albums):
        refs = _refs(albums, "3")

        assert "Ion:Album:text:title:kind" in refs
        assert "Ion:Album:text:title:blue" in refs
        assert "Ion:Album:number:year" in refs
        assert "Ion:Album:sort:title" in refs
        assert not any(ref.endswith(":of") for ref in refs)

    def test_reindex_is_idempotent(self, albums, album_records, store):
        before_keys = store.keys()
        before_refs = _refs(albums, "3")

        albums.update_indices(album_records["3"])
        albums.update_indices(album_records["3"])

        assert store.keys() == before_keys
        assert _refs(albums, "3") == before_refs

    def test_changed_value_replaces_postings(self, albums, album_records):
        record = album_records["4"]
        record["title"] = "Giant Steps"
        record["year"] = 1960

        albums.update_indices(record)

        assert "4" not in albums.search(lambda q: q.text("title", "train")).all_ids
        assert albums.search(lambda q: q.text("title", "giant")).all_ids == ["4"]
        assert albums.search(lambda q: q.number("year", 1960)).all_ids == ["4"]
        assert albums.search(lambda q: q.number("year", 1957)).size == 0

    def test_empty_postings_are_removed(self, albums, album_records, store):
        record = album_records["5"]
        record["genre"] = "pop"

        albums.update_indices(record)

        assert not store.exists("Ion:Album:text:genre:folk")

    def test_record_objects(self, engine):
        people = engine.define("Person", [phonetic_field("name"), number_field("age")])

        people.update_indices(SimpleNamespace(id=7, name="Stephane Michael Cook", age=41))

        assert people.search(lambda q: q.phonetic("name", "Stiefen Michel Cooke")).all_ids == ["7"]

    def test_missing_id(self, albums):
        with pytest.raises(IonError, match="without an id"):
            albums.update_indices({"title": "Orphan"})

    def test_failing_extractor_keeps_old_postings(self, engine):
        def title(record):
            if record.get("broken"):
                raise RuntimeError("bad record")
            return record["title"]

        index = engine.define("Book", [text_field("title", title)])
        index.update_indices({"id": 1, "title": "Dune"})

        with pytest.raises(RuntimeError):
            index.update_indices({"id": 1, "title": "Emma", "broken": True})

        assert index.search(lambda q: q.text("title", "dune")).all_ids == ["1"]

    @pytest.mark.parametrize("refuse", ["~refs", "title:submarine"])
    def test_interrupted_update_is_repaired(self, settings, refuse):
        store = RefusingStore()
        books = Engine(store=store, settings=settings).define("Book", [text_field("title")])
        books.update_indices({"id": 1, "title": "Abbey Road"})

        store.refuse = refuse
        with pytest.raises(StoreError):
            books.update_indices({"id": 1, "title": "Yellow Submarine"})
        books.update_indices({"id": 1, "title": "Help"})

        for word in ("abbey", "yellow", "submarine"):
            assert books.search(lambda q, word=word: q.text("title", word)).size == 0
        assert books.search(lambda q: q.text("title", "help")).all_ids == ["1"]
        assert _refs(books, "1") == {"Ion:Book:text:title:help"}

    def test_interrupted_update_is_removable(self, settings):
        store = RefusingStore()
        books = Engine(store=store, settings=settings).define("Book", [text_field("title")])
        books.update_indices({"id": 1, "title": "Abbey Road"})

        store.refuse = "title:submarine"
        with pytest.raises(StoreError):
            books.update_indices({"id": 1, "title": "Yellow Submarine"})
        books.remove_indices({"id": 1})

        assert store.keys() == []

    def test_reindex_many(self, engine, album_records):
        index = engine.define("Album", [text_field("title")])

        assert index.reindex(album_records.values()) == len(album_records)


@pytest.mark.unit
class TestRemoveIndices:
    """Removal drops a record from every index."""

    def test_remove(self, albums, album_records, store):
        albums.remove_indices(album_records["1"])

        assert albums.search(lambda q: q.phonetic("artist", "beatles")).all_ids == ["10"]
        assert albums.search(lambda q: q.number("year", 1969)).all_ids == ["2"]
        assert store.hget("Ion:Album:sort:title", "1") is None
        assert not store.exists(albums.refs_key("1"))

    def test_remove_unknown_record_is_noop(self, albums, store):
        before = store.keys()

        albums.remove_indices({"id": 999})

        assert store.keys() == before

    def test_satisfies_observer_protocol(self, albums):
        assert isinstance(albums, IndexObserver)


@pytest.mark.unit
class TestCustomFields:
    """Extractors and id getters adapt arbitrary records."""

    def test_extractor(self, engine):
        people = engine.define(
            "Person",
            [text_field("name", lambda person: f"{person['first']} {person['last']}"), sort_field("last")],
        )
        people.update_indices({"id": 1, "first": "Miles", "last": "Davis"})

        assert people.search(lambda q: q.text("name", "miles")).all_ids == ["1"]

    def test_id_getter(self, engine):
        elements = engine.define(
            "Element",
            [text_field("name"), number_field("number")],
            id_getter=lambda element: element["symbol"],
        )
        elements.reindex(
            [
                {"symbol": "H", "name": "Hydrogen", "number": 1},
                {"symbol": "He", "name": "Helium", "number": 2},
                {"symbol": "Li", "name": "Lithium", "number": 3},
            ]
        )

        assert elements.search(lambda q: q.number("number", lt=3)).all_ids == ["H", "He"]


@pytest.mark.unit
class TestPlugins:
    """Custom index kinds plug into definitions and queries."""

    def test_custom_index_kind(self, store, settings):
        plugins = PluginRegistry()
        plugins.register_index_kind("exact", ExactIndex)
        engine = Engine(store=store, settings=settings, plugins=plugins)
        products = engine.define("Product", [field("sku", "exact"), text_field("name")])
        products.update_indices({"id": 1, "sku": "AB-1", "name": "Blue kettle"})
        products.update_indices({"id": 2, "sku": "AB-2", "name": "Blue mug"})

        results = products.search(lambda q: (q.match("exact", "sku", " ab-1"), q.text("name", "blue")))

        assert results.all_ids == ["1"]
        assert results.score("1") == 2.0

        products.remove_indices({"id": 1, "sku": "AB-1"})
        assert products.search(lambda q: q.match("exact", "sku", "AB-1")).size == 0

    def test_unregistered_kind(self, engine):
        with pytest.raises(InvalidIndexKind):
            engine.define("Product", [field("sku", "exact")])

    def test_register_rejects_non_strategy(self):
        with pytest.raises(InvalidIndexKind):
            PluginRegistry().register_index_kind("exact", dict)

    def test_registries_are_per_engine(self):
        first = PluginRegistry()
        first.register_index_kind("exact", ExactIndex)

        assert "exact" in first.index_kinds
        assert "exact" not in PluginRegistry().index_kinds

    def test_non_callable_verb_rejected(self):
        with pytest.raises(TypeError):
            PluginRegistry().register_verb("broken", "not callable")


@pytest.mark.unit
class TestEngine:
    """Engine-level definitions and defaults."""

    def test_define_and_lookup(self, engine):
        index = engine.define("Album", [text_field("title")])

        assert engine["Album"] is index
        assert "Album" in engine
        assert "Song" not in engine
        assert engine.indices == {"Album": index}

    def test_duplicate_definition(self, engine):
        engine.define("Album", [text_field("title")])

        with pytest.raises(ValueError, match="already defined"):
            engine.define("Album", [text_field("title")])

    def test_key_prefix_namespaces_keys(self):
        store = MemoryStore()
        engine = Engine(store=store, settings=Settings(_env_file=None, key_prefix="Shop"))
        index = engine.define("Album", [text_field("title")])

        index.update_indices({"id": 1, "title": "Blue"})

        assert store.keys() == ["Shop:Album:text:title:blue", "Shop:Album:~refs:1"]

    def test_stopwords_from_settings(self, store):
        settings = Settings(_env_file=None, stopwords=["blue"])
        index = Engine(store=store, settings=settings).define("Album", [text_field("title")])
        index.update_indices({"id": 1, "title": "Kind of Blue"})

        assert index.search(lambda q: q.text("title", "blue")).size == 0
        assert index.search(lambda q: q.text("title", "of")).all_ids == ["1"]

    def test_defaults_from_process_settings(self, monkeypatch):
        monkeypatch.setenv("ION_KEY_PREFIX", "Env")

        engine = Engine()

        assert isinstance(engine.store, MemoryStore)
        assert engine.settings.key_prefix == "Env"
        assert repr(engine.define("Album", [text_field("title")])) == "<SearchIndex 'Album' fields=1>"
