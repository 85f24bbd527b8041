"""Unit tests for result windows, sorting and materialization."""

import pytest

from ion_search import text_field
from ion_search.errors import IonError, UnknownField


@pytest.fixture
def rock(albums):
    return albums.search(lambda q: q.text("genre", "rock"))


@pytest.fixture
def everything(albums):
    return albums.search(lambda q: q.number("year", min=0))


@pytest.mark.unit
class TestRange:
    """Windows change what ids exposes, never size."""

    def test_default_window_is_everything(self, rock):
        assert rock.ids == ["1", "2", "10"]
        assert rock.window is None

    def test_start_and_limit(self, rock):
        assert rock.range(0, 2).ids == ["1", "2"]
        assert rock.size == 3
        assert len(rock) == 3

    def test_start_only(self, rock):
        assert rock.range(1).ids == ["2", "10"]

    def test_page_and_limit(self, rock):
        assert rock.range(page=1, limit=2).ids == ["1", "2"]
        assert rock.range(page=2, limit=2).ids == ["10"]
        assert rock.range(page=3, limit=2).ids == []

    def test_inclusive_to(self, rock):
        assert rock.range(0, to=1).ids == ["1", "2"]
        assert rock.range(1, to=-1).ids == ["2", "10"]

    def test_python_range_and_slice(self, rock):
        assert rock.range(range(1, 3)).ids == ["2", "10"]
        assert rock.range(slice(0, 1)).ids == ["1"]

    def test_all_resets(self, rock):
        rock.range(0, 1)

        assert rock.range("all").ids == ["1", "2", "10"]
        assert rock.window is None

    def test_all_ids_ignores_window(self, rock):
        rock.range(0, 1)

        assert rock.all_ids == ["1", "2", "10"]

    @pytest.mark.parametrize(
        ("args", "kwargs"),
        [
            (("everything",), {}),
            (("all", 3), {}),
            ((range(0, 4, 2),), {}),
            ((slice(0, 2),), {"limit": 1}),
            ((), {"page": 0, "limit": 2}),
            ((), {"page": 1}),
            ((1,), {"page": 1, "limit": 2}),
            ((-1,), {}),
            ((0, -2), {}),
            ((0, 2), {"to": 3}),
        ],
    )
    def test_invalid_specifications(self, rock, args, kwargs):
        with pytest.raises(ValueError):
            rock.range(*args, **kwargs)


@pytest.mark.unit
class TestSortBy:
    """Sort indices reorder results, ignoring relevance."""

    def test_sort_by_title(self, everything):
        assert everything.sort_by("title").ids == ["1", "5", "4", "3", "2", "10"]
        assert everything.sort_field == "title"

    def test_sort_descending(self, everything):
        assert everything.sort_by("title", "desc").ids == ["10", "2", "3", "4", "5", "1"]

    def test_articles_and_case_ignored(self, everything):
        assert everything.sort_by("artist").ids == ["1", "10", "4", "5", "3", "2"]

    def test_ties_keep_id_order_when_descending(self, everything):
        assert everything.sort_by("artist", "desc").ids == ["2", "3", "5", "4", "1", "10"]

    def test_window_applies_after_sort(self, everything):
        assert everything.sort_by("title").range(0, 2).ids == ["1", "5"]

    def test_none_restores_relevance(self, everything):
        relevance = everything.ids

        everything.sort_by("title").sort_by(None)

        assert everything.ids == relevance
        assert everything.sort_field is None

    def test_unsortable_field(self, everything):
        with pytest.raises(UnknownField):
            everything.sort_by("year")

    def test_bad_order(self, everything):
        with pytest.raises(ValueError):
            everything.sort_by("title", "sideways")

    def test_missing_values_sort_last(self, albums, album_records):
        record = {"id": 11, "title": "Untitled", "artist": None, "year": 2000, "genre": "rock"}
        album_records["11"] = record
        albums.update_indices(record)
        rock = albums.search(lambda q: q.text("genre", "rock"))

        assert rock.sort_by("artist").ids == ["1", "10", "2", "11"]
        assert rock.sort_by("artist", "desc").ids == ["2", "1", "10", "11"]


@pytest.mark.unit
class TestMaterialization:
    """Iteration loads records through the index loader."""

    def test_iteration_loads_records(self, rock):
        assert [album["title"] for album in rock] == ["Abbey Road", "Let It Bleed", "Rubber Soul"]

    def test_iteration_respects_window(self, rock):
        assert [album["title"] for album in rock.range(1, 1)] == ["Let It Bleed"]

    def test_unresolvable_records_skipped(self, rock, album_records):
        del album_records["2"]

        assert [album["id"] for album in rock.to_list()] == [1, 10]
        assert rock.size == 3

    def test_no_loader(self, engine, album_records):
        index = engine.define("Bare", [text_field("title")])
        index.update_indices({"id": 1, "title": "Blue"})
        results = index.search(lambda q: q.text("title", "blue"))

        assert results.ids == ["1"]
        with pytest.raises(IonError, match="No loader"):
            list(results)

    def test_score_lookup(self, rock):
        assert rock.score("1") == 1.0
        assert rock.score("3") is None
        assert set(rock.scores) == {"1", "2", "10"}


@pytest.mark.unit
class TestPostProcessors:
    """Registered post-processors receive the result set."""

    def test_apply(self, albums, rock):
        albums.plugins.register_post_processor(
            "titles", lambda results, limit=None: [album["title"] for album in results][:limit]
        )

        assert rock.apply("titles") == ["Abbey Road", "Let It Bleed", "Rubber Soul"]
        assert rock.apply("titles", limit=1) == ["Abbey Road"]

    def test_unknown_post_processor(self, rock):
        with pytest.raises(KeyError):
            rock.apply("facets")
