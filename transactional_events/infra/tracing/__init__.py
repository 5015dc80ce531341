"""OpenTelemetry tracing helpers.

Only the OpenTelemetry API is used here; exporting spans is left to the
host application's SDK configuration. Without an SDK the tracer is a no-op.
"""

from __future__ import annotations

from opentelemetry import trace


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer instance for creating custom spans.

    Args:
        name: Tracer name, typically __name__ of the module.

    Returns:
        Tracer instance for creating spans.

    Example:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span("events.phase.after_commit") as span:
            span.set_attribute("events.count", 3)
    """
    return trace.get_tracer(name)


__all__ = ["get_tracer"]
