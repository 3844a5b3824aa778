"""Order service core: domain model, use cases, SQL storage with an outbox, a relay worker and a Redis cache."""

__version__ = "1.0.0"