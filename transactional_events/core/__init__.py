"""Core of the transactional event system: events, lifecycle hooks, persistence glue."""
