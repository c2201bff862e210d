"""
Shared fixtures for the search engine tests.
"""

import pytest

from dsl_search import SQLiteEventStore

EVENTS = [
    {
        "timestamp": "2025-01-02T10:05:00Z",
        "severity": "error",
        "source": "api",
        "message": "database connection failed",
        "device_id": "dev-1",
        "category": "storage",
    },
    {
        "timestamp": "2025-01-02T10:30:00Z",
        "severity": "error",
        "source": "api",
        "message": "request timeout upstream",
        "device_id": "dev-2",
        "category": "network",
    },
    {
        "timestamp": "2025-01-02T11:15:00Z",
        "severity": "error",
        "source": "db",
        "message": "disk full on volume",
        "device_id": "dev-3",
        "category": "storage",
    },
    {
        "timestamp": "2025-01-02T11:20:00Z",
        "severity": "info",
        "source": "api",
        "message": "user login ok",
        "device_id": "dev-1",
        "category": "security",
    },
    {
        "timestamp": "2025-01-02T11:45:00Z",
        "severity": "info",
        "source": "auth",
        "message": "cpu spike",
        "device_id": "dev-4",
        "category": "perf",
    },
]


@pytest.fixture
def store():
    """An in-memory event store holding 3 error rows and 2 info rows."""
    event_store = SQLiteEventStore()
    event_store.init_schema()
    event_store.insert_events(EVENTS)
    yield event_store
    event_store.close()


@pytest.fixture
def sample_events():
    """A fresh copy of the shared raw events."""
    return [dict(event) for event in EVENTS]
