"""Exception hierarchy for ion-search.

Callers can catch ``IonError`` for anything raised by the engine, or one of
the subclasses to discriminate build-time mistakes from store failures.
"""

from __future__ import annotations


class IonError(Exception):
    """Base class for all ion-search exceptions."""


class UnknownField(IonError):
    """Raised when a query or sort names a field without a suitable index."""

    def __init__(self, field_name: str, *, expected: str | None = None, index_name: str | None = None) -> None:
        self.field_name = field_name
        self.expected = expected
        self.index_name = index_name
        where = f" on '{index_name}'" if index_name else ""
        if expected:
            message = f"No {expected} index registered for field '{field_name}'{where}"
        else:
            message = f"No index registered for field '{field_name}'{where}"
        super().__init__(message)


class InvalidIndexKind(IonError):
    """Raised when a field is registered with an unrecognized index kind."""


class InvalidQuery(IonError):
    """Raised when a query clause is malformed (bad operand, unknown verb)."""


class StoreError(IonError):
    """Raised when the backing store fails; the original error is chained."""
