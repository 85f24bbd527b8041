"""Namespaced store key construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


SEPARATOR = ":"


@dataclass(frozen=True, slots=True)
class Key:
    """An immutable, hierarchical store key.

    Indexing appends a segment: ``Key("Ion")["Album"]["name"]`` renders as
    ``"Ion:Album:name"``.
    """

    name: str

    def __getitem__(self, part: Any) -> Key:
        return Key(f"{self.name}{SEPARATOR}{part}")

    def __str__(self) -> str:
        return self.name


# Segment marking engine-internal keys (volatile sets, per-record references).
INTERNAL = "~"
