"""Event core settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_events_yaml_source


class EventCoreSettings(BaseSettings):
    """Configuration for the event bus, scheduler and ASYNC worker pool.

    Environment variables use EVENTS_ prefix.
    Example: EVENTS_ASYNC_MAX_WORKERS=8, EVENTS_METRICS_ENABLED=false
    """

    # ──────────────────────────────────────────────────────────────
    # ASYNC listener worker pool
    # ──────────────────────────────────────────────────────────────

    async_max_workers: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Thread pool size for ASYNC listeners",
    )

    async_thread_name_prefix: str = Field(
        default="event-listener",
        min_length=1,
        max_length=64,
        description="Thread name prefix for ASYNC listener workers",
    )

    # ──────────────────────────────────────────────────────────────
    # Dispatch behaviour
    # ──────────────────────────────────────────────────────────────

    default_priority: int = Field(
        default=0,
        description="Priority given to registrations that do not set one (lower runs earlier)",
    )

    seal_on_first_publish: bool = Field(
        default=False,
        description="Seal the listener registry the first time an event is published",
    )

    log_listener_errors: bool = Field(
        default=True,
        description="Log every caught listener failure with its traceback",
    )

    # ──────────────────────────────────────────────────────────────
    # Observability
    # ──────────────────────────────────────────────────────────────

    metrics_enabled: bool = Field(
        default=True,
        description="Record Prometheus metrics for publishing and dispatch",
    )

    tracing_enabled: bool = Field(
        default=True,
        description="Wrap phase dispatch in OpenTelemetry spans",
    )

    model_config = SettingsConfigDict(
        env_prefix="EVENTS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_events_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
