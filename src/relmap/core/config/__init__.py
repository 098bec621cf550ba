"""Settings and the fluent configuration builder.

Manifesto:
    One validated settings object (``RelmapSettings``) is the base; a
    ``Configuration`` layers the connection source, dialect, entities and
    per-factory property overrides on top of it.

Quick start::

    from relmap.core.config import Configuration

    factory = (
        Configuration()
        .database("sqlite:///app.db")
        .add_entity(USER)
        .set_property("schema_action", "create")
        .build_session_factory()
    )

Architecture::

    settings.py        RelmapSettings (pydantic-settings) + get_settings() cache
    configuration.py   Configuration builder → SessionFactory

Guardrails:
    ❌ Parsing RELMAP_* env vars ad-hoc
    ✅ ``get_settings()`` or ``Configuration.effective_settings()``
"""

from .configuration import Configuration
from .settings import RelmapSettings, SchemaAction, clear_settings_cache, get_settings

__all__ = [
    "Configuration",
    "RelmapSettings",
    "SchemaAction",
    "clear_settings_cache",
    "get_settings",
]
