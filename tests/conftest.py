"""
Pytest configuration and shared fixtures for identity reconciliation tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that spin up threads against a real SQLite file

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not slow"        # Skip slow tests
- pytest                      # All tests
"""
from datetime import datetime, timedelta, timezone

import pytest

from tests.reset_singletons import reset_lightweight_singletons


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (threads, real SQLite locking)")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    """Keep store/resolver singletons from leaking between tests."""
    yield
    reset_lightweight_singletons()


@pytest.fixture
def base_time():
    """Fixed reference point for seeding created_at values."""
    return datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def at(base_time):
    """Build created_at values as offsets (in minutes) from base_time."""
    def _at(minutes: int) -> datetime:
        return base_time + timedelta(minutes=minutes)
    return _at


@pytest.fixture
def sqlite_store(tmp_path):
    """SQLite contact store on a throwaway database file."""
    from api.services.contact_store import SQLiteContactStore
    return SQLiteContactStore(db_path=str(tmp_path / "contacts.db"))


@pytest.fixture
def memory_store():
    """In-memory contact store."""
    from api.services.contact_store import InMemoryContactStore
    return InMemoryContactStore()


@pytest.fixture(params=["sqlite", "memory"])
def store(request):
    """Run the test against every ContactStore implementation."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def resolver(store):
    """IdentityResolver over the parametrized store."""
    from api.services.identity_resolver import IdentityResolver
    return IdentityResolver(store)


@pytest.fixture(scope="function")
def mock_settings(tmp_path, monkeypatch):
    """
    Mock settings for testing.

    Uses the in-memory store and a temporary data path to avoid touching
    real data.
    """
    from config.settings import Settings

    mock = Settings(data_path=tmp_path, store_backend="memory")

    # Patch the global settings where they were imported
    monkeypatch.setattr("config.settings.settings", mock)
    monkeypatch.setattr("api.services.contact_store.settings", mock)
    monkeypatch.setattr("api.utils.db_paths.settings", mock)
    reset_lightweight_singletons()
    return mock
