"""Infrastructure: logging, metrics and tracing."""
