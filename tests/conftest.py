"""
Shared test fixtures for the JOAP backup engine.
"""

import tempfile
from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    """Clock starting at 2026-01-01T00:00:00Z."""
    return FakeClock(datetime(2026, 1, 1, tzinfo=timezone.utc))


@pytest.fixture
def sample_data():
    """Small supplier-management dataset with one active admin."""
    return {
        "items": [
            {"_id": "i1", "name": "Steel Nails 2in", "quantity": 1200, "price": 0.05},
            {"_id": "i2", "name": "Plywood Sheet", "quantity": 40, "price": 18.5},
        ],
        "orders": [
            {"_id": "o1", "customer": "c1", "items": ["i1"], "status": "PENDING"},
        ],
        "users": [
            {
                "_id": "u1",
                "username": "admin",
                "password": "$2b$10$hash",
                "role": "ADMIN",
                "isActive": True,
            },
            {
                "_id": "u2",
                "username": "clerk",
                "password": "$2b$10$hash2",
                "role": "EMPLOYEE",
                "isActive": True,
            },
        ],
    }
