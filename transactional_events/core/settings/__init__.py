"""Pydantic Settings v2 configuration.

Import settings via cached loaders:
    from transactional_events.core.settings import get_event_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files (optional, local/dev)
    3. Environment variables (production)
    4. .env file (development only)
    5. secrets_dir (Kubernetes/Docker secrets)
"""

from __future__ import annotations

from .events import EventCoreSettings
from .loader import clear_all_caches, get_event_settings, get_logging_settings
from .logs import LoggingSettings

__all__ = [
    "EventCoreSettings",
    "LoggingSettings",
    "clear_all_caches",
    "get_event_settings",
    "get_logging_settings",
]
