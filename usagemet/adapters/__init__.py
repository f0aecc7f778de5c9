"""Event store adapters for UsageMet."""

from ..config import Settings
from .memory_store import InMemoryEventStore
from .sqlalchemy_store import SQLAlchemyEventStore, create_schema, usage_events

__all__ = [
    "InMemoryEventStore",
    "SQLAlchemyEventStore",
    "build_store",
    "create_schema",
    "usage_events",
]


def build_store(settings: Settings):
    """Return the in-memory store in demo mode, the SQL store otherwise."""
    if settings.demo_mode:
        return InMemoryEventStore(page_size=settings.scan_page_size)
    return SQLAlchemyEventStore.from_url(settings.database_url, page_size=settings.scan_page_size)
