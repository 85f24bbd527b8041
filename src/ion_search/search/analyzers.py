"""Analyzer utilities shared by indexing and querying.

Tokenizers and filters compose into pipelines the same way on both sides of
the engine, so a query string always produces the tokens a stored value
would. Phonetic analysis layers a metaphone encoding on top of the text
pipeline; sort keys are derived separately since they are never tokenized.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable, Iterator, MutableMapping, Sequence
from dataclasses import dataclass, field
import re
from typing import Any, Protocol
import unicodedata

from ion_search.config import DEFAULT_STOPWORDS


@dataclass
class Token:
    """Represents a token emitted by analyzers."""

    text: str
    position: int
    start_char: int
    end_char: int
    attributes: MutableMapping[str, Any] = field(default_factory=dict)

    def copy_with(self, **updates: Any) -> Token:
        data = {
            "text": self.text,
            "position": self.position,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "attributes": dict(self.attributes),
        }
        data.update(updates)
        return Token(**data)


class Analyzer(Protocol):
    """Protocol implemented by analyzers."""

    def __call__(self, text: str) -> list[Token]:  # pragma: no cover - interface definition
        ...


class Tokenizer(Protocol):
    """Protocol implemented by tokenizers."""

    def __call__(self, text: str) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class TokenFilter(Protocol):
    """Protocol implemented by token filters."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class RegexTokenizer:
    """Regex-based tokenizer that yields word tokens (apostrophes kept inside words)."""

    def __init__(self, pattern: str = r"\w+(?:'\w+)*", flags: int = re.UNICODE | re.MULTILINE) -> None:
        self.pattern = re.compile(pattern, flags)

    def __call__(self, text: str) -> Iterator[Token]:
        for position, match in enumerate(self.pattern.finditer(text)):
            yield Token(
                text=match.group(0),
                position=position,
                start_char=match.start(),
                end_char=match.end(),
            )


class LowercaseFilter:
    """Filter that case-folds token text."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            folded = token.text.casefold()
            if folded == token.text:
                yield token
            else:
                yield token.copy_with(text=folded)


_PUNCTUATION = re.compile(r"[\W_]+", re.UNICODE)


class PunctuationFilter:
    """Strips punctuation left inside tokens and drops tokens that become empty."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            cleaned = _PUNCTUATION.sub("", token.text)
            if not cleaned:
                continue
            yield token if cleaned == token.text else token.copy_with(text=cleaned)


class StopFilter:
    """Removes stopwords from the stream."""

    def __init__(self, stopwords: Collection[str] | None = None) -> None:
        vocab = stopwords if stopwords is not None else DEFAULT_STOPWORDS
        self.stopwords = {word.lower() for word in vocab}

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            if token.text.lower() not in self.stopwords:
                yield token


# Classic metaphone, expressed as ordered regex rewrites over a lowercase
# ASCII word. Replacements are uppercase so later rules never re-match them.
_METAPHONE_RULES: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern), replacement)
    for pattern, replacement in (
        (r"([bcdfhjklmnpqrstvwxyz])\1+", r"\1"),
        (r"^ae", "E"),
        (r"^[gkp]n", "N"),
        (r"^wr", "R"),
        (r"^x", "S"),
        (r"x", "KS"),
        (r"^wh", "W"),
        (r"mb$", "M"),
        (r"(?!^)sch", "SK"),
        (r"th", "0"),
        (r"t?ch|sh", "X"),
        (r"c(?=ia)", "X"),
        (r"[st](?=i[ao])", "X"),
        (r"s?c(?=[iey])", "S"),
        (r"ck?|q", "K"),
        (r"dg(?=[iey])", "J"),
        (r"d", "T"),
        (r"g(?=h[^aeiou])", ""),
        (r"gn(ed)?", "N"),
        (r"([^g]|^)g(?=[iey])", r"\1J"),
        (r"g+", "K"),
        (r"ph", "F"),
        (r"([aeiou])h(?=\b|[^aeiou])", r"\1"),
        (r"[wy](?![aeiou])", ""),
        (r"z", "S"),
        (r"v", "F"),
        (r"(?!^)[aeiou]+", ""),
    )
)

_NON_ALPHA = re.compile(r"[^a-z]")


def metaphone(word: str) -> str:
    """Return the metaphone code for a single word.

    Non-ASCII letters are folded to their base form first; anything that is
    not a letter is discarded. Returns an empty string when nothing is left.

    Examples:
        >>> metaphone("Stephane")
        'STFN'
        >>> metaphone("Stiefen")
        'STFN'
        >>> metaphone("Cooke")
        'KK'
    """
    folded = _strip_marks(word).lower()
    encoded = _NON_ALPHA.sub("", folded)
    for pattern, replacement in _METAPHONE_RULES:
        encoded = pattern.sub(replacement, encoded)
    return encoded.upper()


class MetaphoneFilter:
    """Replaces each token with its metaphone code."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            code = metaphone(token.text)
            if code:
                yield token.copy_with(text=code, attributes={**token.attributes, "source": token.text})


class AnalyzerPipeline:
    """Composable analyzer pipeline (tokenizer + filters)."""

    def __init__(self, tokenizer: Tokenizer, filters: Sequence[TokenFilter] | None = None) -> None:
        self.tokenizer = tokenizer
        self.filters = list(filters or [])

    def __call__(self, text: str) -> list[Token]:
        stream: Iterable[Token] = self.tokenizer(text)
        for token_filter in self.filters:
            stream = token_filter(stream)
        tokens = list(stream)
        for idx, token in enumerate(tokens):  # normalize positions post-filtering
            token.position = idx
        return tokens


class KeywordAnalyzer:
    """Analyzer that treats the entire input as a single token."""

    def __call__(self, text: str) -> list[Token]:
        if not text:
            return []
        return [Token(text=text, position=0, start_char=0, end_char=len(text))]


class TextAnalyzer:
    """Word analyzer used by text indices: case-folded, punctuation-free, no stopwords."""

    def __init__(self, *, stopwords: Collection[str] | None = None) -> None:
        self.pipeline = AnalyzerPipeline(
            RegexTokenizer(),
            [LowercaseFilter(), PunctuationFilter(), StopFilter(stopwords)],
        )

    def __call__(self, text: str) -> list[Token]:
        return self.pipeline(text)


class PhoneticAnalyzer:
    """Text analysis followed by metaphone encoding of every token."""

    def __init__(self, *, stopwords: Collection[str] | None = None) -> None:
        self.pipeline = AnalyzerPipeline(
            RegexTokenizer(),
            [LowercaseFilter(), PunctuationFilter(), StopFilter(stopwords), MetaphoneFilter()],
        )

    def __call__(self, text: str) -> list[Token]:
        return self.pipeline(text)


def unique_terms(tokens: Iterable[Token]) -> list[str]:
    """Return distinct token texts in first-seen order."""
    seen: set[str] = set()
    terms: list[str] = []
    for token in tokens:
        if token.text and token.text not in seen:
            seen.add(token.text)
            terms.append(token.text)
    return terms


_LEADING_ARTICLE = re.compile(r"^(?:an?|the)\s+")
_WHITESPACE = re.compile(r"\s+")


def _strip_marks(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def sort_key(value: Any) -> str:
    """Return the comparison key used by sort indices.

    The key is case-folded with accents removed, and a single leading English
    article is dropped so "The Beatles" files under "beatles".
    """
    if value is None:
        return ""
    text = _strip_marks(str(value)).casefold()
    text = _WHITESPACE.sub(" ", text).strip()
    return _LEADING_ARTICLE.sub("", text, count=1)


_ANALYZER_FACTORIES: dict[str, Callable[[Collection[str] | None], Analyzer]] = {
    "text": lambda stopwords: TextAnalyzer(stopwords=stopwords),
    "phonetic": lambda stopwords: PhoneticAnalyzer(stopwords=stopwords),
    "metaphone": lambda stopwords: PhoneticAnalyzer(stopwords=stopwords),
    "keyword": lambda stopwords: KeywordAnalyzer(),
}


def get_analyzer(name: str | None, *, stopwords: Collection[str] | None = None) -> Analyzer:
    """Return analyzer by name, defaulting to the text analyzer."""

    if name is None:
        return _ANALYZER_FACTORIES["text"](stopwords)
    normalized = name.lower()
    if normalized not in _ANALYZER_FACTORIES:
        msg = f"Unknown analyzer '{name}'. Available: {sorted(_ANALYZER_FACTORIES)}"
        raise ValueError(msg)
    return _ANALYZER_FACTORIES[normalized](stopwords)
