"""Shared test fixtures for ion-search."""

import os

import pytest

from ion_search import (
    Engine,
    MemoryStore,
    Settings,
    number_field,
    phonetic_field,
    reset_settings,
    sort_field,
    text_field,
)


ALBUMS = {
    "1": {"id": 1, "title": "Abbey Road", "artist": "The Beatles", "year": 1969, "genre": "rock"},
    "2": {"id": 2, "title": "Let It Bleed", "artist": "The Rolling Stones", "year": 1969, "genre": "rock"},
    "3": {"id": 3, "title": "Kind of Blue", "artist": "Miles Davis", "year": 1959, "genre": "jazz"},
    "4": {"id": 4, "title": "Blue Train", "artist": "John Coltrane", "year": 1957, "genre": "jazz"},
    "5": {"id": 5, "title": "Blue", "artist": "Joni Mitchell", "year": 1971, "genre": "folk"},
    "10": {"id": 10, "title": "Rubber Soul", "artist": "the beatles", "year": 1965, "genre": "rock"},
}


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Strip ION_* variables and the cached default settings around every test."""
    for key in list(os.environ):
        if key.upper().startswith("ION_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    """Default settings, isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine(store, settings):
    return Engine(store=store, settings=settings)


@pytest.fixture
def album_records():
    """Mutable copy of the sample albums keyed by id string."""
    return {record_id: dict(record) for record_id, record in ALBUMS.items()}


@pytest.fixture
def albums(engine, album_records):
    """An indexed ``Album`` search index backed by ``album_records``."""
    index = engine.define(
        "Album",
        [
            text_field("title"),
            phonetic_field("artist"),
            number_field("year"),
            text_field("genre"),
            sort_field("title"),
            sort_field("artist"),
        ],
        loader=album_records.get,
    )
    index.reindex(album_records.values())
    return index
