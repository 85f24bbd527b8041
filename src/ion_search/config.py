"""Centralized configuration for ion-search using Pydantic Settings."""

from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_STOPWORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "but",
        "by",
        "for",
        "if",
        "in",
        "into",
        "is",
        "it",
        "no",
        "not",
        "of",
        "on",
        "or",
        "such",
        "that",
        "the",
        "their",
        "then",
        "there",
        "these",
        "they",
        "this",
        "to",
        "was",
        "will",
        "with",
    }
)


class Settings(BaseSettings):
    """Engine options loaded from ``ION_*`` environment variables.

    Unknown options are accepted and kept as extension flags; use
    ``has_option`` to test whether one was ever set.
    """

    model_config = SettingsConfigDict(
        env_prefix="ION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="allow",
    )

    stopwords: set[str] = Field(
        default_factory=lambda: set(DEFAULT_STOPWORDS),
        description="Tokens excluded from text and phonetic tokenization",
    )
    key_prefix: str = Field(default="Ion", min_length=1, description="Namespace prepended to every store key")
    ephemeral_ttl: int = Field(
        default=30, ge=0, description="Seconds before temporary query keys expire (0 keeps them)"
    )

    # Store
    store_backend: Literal["memory", "sqlite"] = Field(default="memory", description="Backing store implementation")
    store_path: str = Field(default="ion.sqlite3", description="Database file used by the sqlite backend")

    # Logging
    log_level: str = Field(default="info", description="Logging level")
    json_logs: bool = Field(default=True, description="Emit structured JSON logs")

    @field_validator("stopwords", mode="after")
    @classmethod
    def _normalize_stopwords(cls, value: set[str]) -> set[str]:
        return {word.strip().lower() for word in value if word.strip()}

    def has_option(self, name: str) -> bool:
        """Return True if ``name`` is a declared option or was ever set.

        Truthiness is irrelevant: an extra option set to ``0`` still counts.
        """
        if name in type(self).model_fields:
            return True
        return name in (self.model_extra or {})

    def set_option(self, name: str, value: Any) -> None:
        """Set a declared option or an extension flag."""
        setattr(self, name, value)

    def get_option(self, name: str, default: Any = None) -> Any:
        """Return an option value, or ``default`` when it was never set."""
        if not self.has_option(name):
            return default
        return getattr(self, name)


_settings_holder: dict[str, Settings | None] = {"settings": None}


def get_settings() -> Settings:
    """Return the process-wide default settings, building them on first use."""
    settings = _settings_holder["settings"]
    if settings is None:
        settings = Settings()
        _settings_holder["settings"] = settings
    return settings


def reset_settings() -> None:
    """Drop the cached default settings so the next call rebuilds them."""
    _settings_holder["settings"] = None
