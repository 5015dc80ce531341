"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Usage:
    from transactional_events.core.settings.loader import get_event_settings

    settings = get_event_settings()  # First call: loads and validates
    settings = get_event_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    clear_all_caches()

    Or construct directly with overrides:
    settings = EventCoreSettings(async_max_workers=1)
"""

from __future__ import annotations

from functools import lru_cache

from .events import EventCoreSettings
from .logs import LoggingSettings


@lru_cache(maxsize=1)
def get_event_settings() -> EventCoreSettings:
    """Get cached event core settings.

    Returns:
        Validated and frozen EventCoreSettings instance.
    """
    return EventCoreSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear all settings caches.

    Useful for testing or when you need to force reload settings.
    """
    get_event_settings.cache_clear()
    get_logging_settings.cache_clear()
