"""Event value object.

An Event is an immutable record describing something that happened. It
carries a type tag used for listener matching, an opaque payload, an
identity-only reference to whatever produced it, and the id of the
transaction it was published in (if any).

Example:
    event = Event(
        type_id="user.created",
        payload={"email": "user@example.com"},
        source=SourceRef.of(user),
    )
    bus.publish(event, scope)
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def _generate_uuid7() -> str:
    """Generate a time-sortable UUID v7 string.

    UUID v7 embeds a Unix timestamp in the first 48 bits, so event ids sort
    in publish order.
    """
    timestamp_ms = int(time.time() * 1000)
    random_bytes = os.urandom(10)

    uuid_bytes = bytearray(16)
    uuid_bytes[0:6] = timestamp_ms.to_bytes(6, byteorder="big")
    uuid_bytes[6] = (random_bytes[0] & 0x0F) | 0x70  # Version 7
    uuid_bytes[7] = random_bytes[1]
    uuid_bytes[8] = (random_bytes[2] & 0x3F) | 0x80  # Variant
    uuid_bytes[9:16] = random_bytes[3:10]

    return str(uuid.UUID(bytes=bytes(uuid_bytes)))


def freeze(value: Any) -> Any:
    """Read-only copy of built-in containers, applied recursively.

    Dicts become ``MappingProxyType`` views over a private copy, lists and
    tuples become tuples, sets become frozensets. Any other object is
    returned as-is.
    """
    if isinstance(value, (dict, MappingProxyType)):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if type(value) in (list, tuple):
        return tuple(freeze(item) for item in value)
    if isinstance(value, set):
        return frozenset(value)
    return value


def thaw(value: Any) -> Any:
    """Plain dict/list form of a frozen value, for serialization."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if type(value) is tuple:
        return [thaw(item) for item in value]
    if isinstance(value, frozenset):
        return list(value)
    return value


class TransactionOutcome(StrEnum):
    """Final outcome of a unit of work."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class SourceRef(BaseModel):
    """Identity-only reference to the producer of an event.

    Holds the producer's kind and identity, never the producer object, so an
    event does not keep its source alive or expose it to listeners.
    """

    kind: str
    identity: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def of(cls, obj: Any) -> SourceRef:
        """Build a reference from any object.

        Uses the object's ``id`` attribute when it is set, otherwise the
        interpreter identity of the object.
        """
        identity = getattr(obj, "id", None)
        if identity is None:
            identity = f"0x{id(obj):x}"
        return cls(kind=type(obj).__name__, identity=str(identity))

    def __str__(self) -> str:
        return f"{self.kind}:{self.identity}"


class Event(BaseModel):
    """Immutable event published through the EventBus.

    Attributes:
        type_id: Event type tag used for listener matching (e.g. "user.created")
        payload: Opaque event data; dicts, lists and sets are stored read-only
        source: Identity-only reference to the producer
        occurred_at: When the event happened (UTC)
        transaction_id: Transaction the event was enqueued on, if any
        event_id: Unique identifier for this event instance (UUID v7)
        correlation_id: ID linking related events
        outcome: Final transaction outcome, set on AFTER_COMPLETION deliveries
        metadata: Additional context
    """

    type_id: str = Field(min_length=1, description="Event type tag")
    payload: Any = Field(default=None, description="Opaque event payload")
    source: SourceRef | None = Field(
        default=None,
        description="Identity-only reference to the producer",
    )
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Event timestamp in UTC",
    )
    transaction_id: str | None = Field(
        default=None,
        description="Transaction the event was published in",
    )
    event_id: str = Field(
        default_factory=_generate_uuid7,
        description="Unique event identifier (UUID v7 for time-ordering)",
    )
    correlation_id: str | None = Field(
        default=None,
        description="Correlation ID for tracing related events",
    )
    outcome: TransactionOutcome | None = Field(
        default=None,
        description="Final transaction outcome (AFTER_COMPLETION deliveries only)",
    )
    metadata: Mapping[str, Any] = Field(
        default_factory=lambda: MappingProxyType({}),
        description="Additional event metadata",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @field_validator("payload", "metadata", mode="after")
    @classmethod
    def _freeze_containers(cls, value: Any) -> Any:
        # One instance is shared by every listener of every phase
        return freeze(value)

    @field_serializer("payload", "metadata")
    def _serialize_containers(self, value: Any) -> Any:
        return thaw(value)

    def with_transaction(self, transaction_id: str) -> Event:
        """Create a copy of this event bound to a transaction."""
        return self.model_copy(update={"transaction_id": transaction_id})

    def with_outcome(self, outcome: TransactionOutcome) -> Event:
        """Create a copy of this event carrying the final transaction outcome."""
        return self.model_copy(update={"outcome": outcome})

    def with_correlation(self, correlation_id: str) -> Event:
        """Create a copy of this event with a correlation ID."""
        return self.model_copy(update={"correlation_id": correlation_id})

    def with_metadata(self, **kwargs: Any) -> Event:
        """Create a copy of this event with additional metadata."""
        return self.model_copy(update={"metadata": freeze({**self.metadata, **kwargs})})

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"event_id={self.event_id!r}, "
            f"type_id={self.type_id!r}, "
            f"transaction_id={self.transaction_id!r}"
            f")"
        )


__all__ = ["Event", "SourceRef", "TransactionOutcome", "freeze", "thaw"]
