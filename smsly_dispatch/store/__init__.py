"""
Persistence
===========
Store interfaces for messages, opt-outs and webhook bookkeeping, with
in-memory and SQLAlchemy implementations.
"""

from .base import (
    MessageStore,
    OptOutStore,
    WebhookEventStore,
    ProcessedEvent,
    DeadLetter,
)
from .memory import (
    InMemoryMessageStore,
    InMemoryOptOutStore,
    InMemoryWebhookEventStore,
)
from .sql import SqlMessageStore, SqlOptOutStore, SqlWebhookEventStore

__all__ = [
    "MessageStore",
    "OptOutStore",
    "WebhookEventStore",
    "ProcessedEvent",
    "DeadLetter",
    "InMemoryMessageStore",
    "InMemoryOptOutStore",
    "InMemoryWebhookEventStore",
    "SqlMessageStore",
    "SqlOptOutStore",
    "SqlWebhookEventStore",
]
