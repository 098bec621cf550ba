"""
Typed settings for relmap.

Manifesto:
    One validated settings object replaces loose string properties.
    ``RelmapSettings`` reads ``RELMAP_*`` environment variables and ``.env``
    files; ``Configuration.set_property`` overrides individual fields per
    factory.

Tags:
    relmap, configuration, settings, pydantic

Doc-Types:
    api-reference
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relmap.core.session import RelationshipLoadPolicy


class SchemaAction(str, Enum):
    """What the session factory does to the schema on build and close."""

    NONE = "none"
    CREATE = "create"
    RECREATE = "recreate"
    CREATE_DROP = "create-drop"


class RelmapSettings(BaseSettings):
    """relmap configuration.

    All fields can be set via ``RELMAP_*`` environment variables (e.g.
    ``RELMAP_DATABASE_URL=postgresql://localhost/app``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    database_url: str | None = Field(default=None, description="SQLAlchemy-style connection URL")
    database_username: str | None = Field(default=None)
    database_password: str | None = Field(default=None, repr=False)
    dialect: str | None = Field(default=None, description="Dialect name; inferred from the URL when unset")

    # ── Pool (SQLAlchemy provider) ───────────────────────────────
    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout: int = Field(default=30, ge=0)
    echo: bool = Field(default=False)

    # ── Behaviour ────────────────────────────────────────────────
    show_sql: bool = Field(default=False)
    schema_action: SchemaAction = Field(default=SchemaAction.NONE)
    relationship_policy: RelationshipLoadPolicy = Field(default=RelationshipLoadPolicy.BEST_EFFORT)

    # ── Monitoring ───────────────────────────────────────────────
    monitor_enabled: bool = Field(default=False)
    slow_query_ms: float = Field(default=1000.0, ge=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("schema_action", mode="before")
    @classmethod
    def _normalize_action(cls, value: object) -> object:
        # hbm2ddl-style spelling: "create_drop" and "create-drop" both accepted
        if isinstance(value, str):
            return value.strip().lower().replace("_", "-")
        return value

    @property
    def json_logs(self) -> bool:
        return self.log_format.lower() == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, RelmapSettings] = {}


def get_settings(*, env_file: Path | str | None = None, _force_reload: bool = False) -> RelmapSettings:
    """Load, validate, and cache a :class:`RelmapSettings` instance.

    Parameters
    ----------
    env_file:
        Explicit ``.env`` file. Defaults to ``.env`` in the working directory.
    _force_reload:
        Bypass the cache.
    """
    cache_key = str(env_file or "")
    if not _force_reload and cache_key in _settings_cache:
        return _settings_cache[cache_key]

    if env_file is not None:
        settings = RelmapSettings(_env_file=env_file)  # type: ignore[call-arg]
    else:
        settings = RelmapSettings()
    _settings_cache[cache_key] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "SchemaAction",
    "RelmapSettings",
    "get_settings",
    "clear_settings_cache",
]
