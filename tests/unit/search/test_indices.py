"""Unit tests for the built-in index strategies."""

import pytest

from ion_search.config import DEFAULT_STOPWORDS
from ion_search.errors import InvalidQuery
from ion_search.search.indices import NumberIndex, PhoneticIndex, SortIndex, TextIndex, parse_bounds
from ion_search.search.keys import Key
from ion_search.search.schema import number_field, phonetic_field, sort_field, text_field
from ion_search.search.sets import EphemeralScope


ROOT = Key("Ion")["Item"]


@pytest.fixture
def scope(store):
    with EphemeralScope(store, prefix="Ion") as active:
        yield active


def _search(strategy, store, scope, operand):
    result = strategy.search(store, operand, scope)
    return result.ids, result


@pytest.mark.unit
class TestTextIndex:
    """Word postings and match-count scoring."""

    @pytest.fixture
    def titles(self, store):
        strategy = TextIndex(text_field("title"), ROOT["text"]["title"], stopwords=DEFAULT_STOPWORDS)
        strategy.index(store, "1", "Kind of Blue")
        strategy.index(store, "2", "Blue Train")
        strategy.index(store, "3", "Giant Steps")
        return strategy

    def test_index_returns_written_keys(self, store):
        strategy = TextIndex(text_field("title"), ROOT["text"]["title"], stopwords=DEFAULT_STOPWORDS)

        keys = strategy.index(store, "1", "Kind of Blue")

        assert keys == ["Ion:Item:text:title:kind", "Ion:Item:text:title:blue"]
        assert store.smembers("Ion:Item:text:title:blue") == {"1"}

    def test_posting_keys_match_index_without_writing(self, store):
        strategy = TextIndex(text_field("title"), ROOT["text"]["title"], stopwords=DEFAULT_STOPWORDS)

        assert strategy.posting_keys("Kind of Blue") == ["Ion:Item:text:title:kind", "Ion:Item:text:title:blue"]
        assert strategy.posting_keys(None) == []
        assert store.keys() == []

    def test_any_token_matches(self, titles, store, scope):
        ids, _ = _search(titles, store, scope, "blue steps")

        assert ids == {"1", "2", "3"}

    def test_score_counts_matching_tokens(self, titles, store, scope):
        _, result = _search(titles, store, scope, "blue train")

        assert result.scores == {"1": 1.0, "2": 2.0}

    def test_case_and_punctuation_insensitive(self, titles, store, scope):
        ids, _ = _search(titles, store, scope, "BLUE!")

        assert ids == {"1", "2"}

    def test_only_stopwords_matches_nothing(self, titles, store, scope):
        ids, result = _search(titles, store, scope, "of the")

        assert ids == frozenset()
        assert store.smembers(result.key) == set()

    def test_list_values_indexed(self, store, scope):
        strategy = TextIndex(text_field("tags"), ROOT["text"]["tags"], stopwords=DEFAULT_STOPWORDS)
        strategy.index(store, "1", ["jazz", "modal", None])

        ids, _ = _search(strategy, store, scope, "modal")

        assert ids == {"1"}

    def test_none_value_writes_nothing(self, store):
        strategy = TextIndex(text_field("title"), ROOT["text"]["title"])

        assert strategy.index(store, "1", None) == []

    def test_unindex_only_touches_owned_refs(self, titles, store):
        store.sadd("Ion:Item:text:other:blue", "1")

        titles.unindex(store, "1", ["Ion:Item:text:title:kind", "Ion:Item:text:title:blue", "Ion:Item:text:other:blue"])

        assert store.smembers("Ion:Item:text:title:blue") == {"2"}
        assert store.smembers("Ion:Item:text:other:blue") == {"1"}

    def test_operand_required(self, titles):
        with pytest.raises(InvalidQuery):
            titles.validate_operand(None)


@pytest.mark.unit
class TestPhoneticIndex:
    """Phonetic postings match spelling variants."""

    def test_variants_match(self, store, scope):
        strategy = PhoneticIndex(phonetic_field("name"), ROOT["phonetic"]["name"], stopwords=DEFAULT_STOPWORDS)
        strategy.index(store, "1", "Stephane Michael Cook")
        strategy.index(store, "2", "Miles Davis")

        ids, result = _search(strategy, store, scope, "Stiefen Michel Cooke")

        assert ids == {"1"}
        assert result.scores["1"] == 3.0

    def test_partial_variant(self, store, scope):
        strategy = PhoneticIndex(phonetic_field("name"), ROOT["phonetic"]["name"], stopwords=DEFAULT_STOPWORDS)
        strategy.index(store, "1", "Stephane Michael Cook")

        ids, _ = _search(strategy, store, scope, "steven quoc")

        assert ids == {"1"}


@pytest.mark.unit
class TestParseBounds:
    """Bound options combine with the stricter bound winning."""

    def test_bare_value_is_equality(self):
        assert parse_bounds(5) == (5.0, 5.0, False, False)

    def test_stricter_bound_wins(self):
        assert parse_bounds({"gt": 3, "min": 2}) == (3.0, None, True, False)
        assert parse_bounds({"gt": 3, "min": 4}) == (4.0, None, False, False)
        assert parse_bounds({"lt": 8, "max": 9}) == (None, 8.0, False, True)
        assert parse_bounds({"lt": 8, "max": 8}) == (None, 8.0, False, True)

    def test_contradictory_bounds(self):
        assert parse_bounds({"min": 10, "max": 1}) is None
        assert parse_bounds({"gt": 5, "max": 5}) is None

    @pytest.mark.parametrize("operand", [{"above": 1}, {"min": "ten"}, {"max": True}, "5", float("nan")])
    def test_invalid_operands(self, operand):
        with pytest.raises(InvalidQuery):
            parse_bounds(operand)


@pytest.mark.unit
class TestNumberIndex:
    """Numeric postings answer equality and ranges."""

    @pytest.fixture
    def numbers(self, store):
        strategy = NumberIndex(number_field("n"), ROOT["number"]["n"])
        for value in (1, 2, 3, 4, 5, 10):
            strategy.index(store, str(value), value)
        return strategy

    @pytest.mark.parametrize(
        ("operand", "expected"),
        [
            ({"gt": 2, "lt": 5}, {"3", "4"}),
            ({"min": 4}, {"4", "5", "10"}),
            ({"max": 10}, {"1", "2", "3", "4", "5", "10"}),
            ({"min": 2, "max": 4}, {"2", "3", "4"}),
            ({"min": 10, "max": 1}, set()),
            (5, {"5"}),
            (7, set()),
        ],
    )
    def test_bounds(self, numbers, store, scope, operand, expected):
        ids, _ = _search(numbers, store, scope, operand)

        assert ids == expected

    def test_matches_score_one(self, numbers, store, scope):
        _, result = _search(numbers, store, scope, {"min": 4})

        assert set(result.scores.values()) == {1.0}

    def test_result_key_holds_ids(self, numbers, store, scope):
        _, result = _search(numbers, store, scope, {"gt": 2, "lt": 5})

        assert store.smembers(result.key) == {"3", "4"}

    def test_reindex_moves_value(self, numbers, store, scope):
        numbers.index(store, "1", 100)

        ids, _ = _search(numbers, store, scope, {"min": 50})

        assert ids == {"1"}

    @pytest.mark.parametrize("value", [None, "n/a", True, float("nan")])
    def test_non_numeric_values_skipped(self, store, value):
        strategy = NumberIndex(number_field("n"), ROOT["number"]["n"])

        assert strategy.posting_keys(value) == []
        assert strategy.index(store, "1", value) == []

    def test_numeric_strings_indexed(self, store):
        strategy = NumberIndex(number_field("n"), ROOT["number"]["n"])

        assert strategy.index(store, "1", "12.5") == ["Ion:Item:number:n"]
        assert store.zscore("Ion:Item:number:n", "1") == 12.5

    def test_unindex(self, numbers, store):
        numbers.unindex(store, "5", ["Ion:Item:number:n"])

        assert store.zscore("Ion:Item:number:n", "5") is None


@pytest.mark.unit
class TestSortIndex:
    """Sort indices hold comparison keys and cannot be matched."""

    def test_stores_sort_key(self, store):
        strategy = SortIndex(sort_field("artist"), ROOT["sort"]["artist"])

        assert strategy.index(store, "1", "The Beatles") == ["Ion:Item:sort:artist"]
        assert strategy.sort_keys(store, ["1", "2"]) == {"1": "beatles", "2": None}

    def test_not_searchable(self, store, scope):
        strategy = SortIndex(sort_field("artist"), ROOT["sort"]["artist"])

        assert strategy.searchable is False
        with pytest.raises(InvalidQuery):
            strategy.search(store, "beatles", scope)

    def test_unindex(self, store):
        strategy = SortIndex(sort_field("artist"), ROOT["sort"]["artist"])
        strategy.index(store, "1", "Miles Davis")

        strategy.unindex(store, "1", ["Ion:Item:sort:artist"])

        assert store.hget("Ion:Item:sort:artist", "1") is None


def test_owns_checks_prefix_boundary():
    strategy = TextIndex(text_field("title"), ROOT["text"]["title"])

    assert strategy.owns("Ion:Item:text:title:blue")
    assert not strategy.owns("Ion:Item:text:titles:blue")
