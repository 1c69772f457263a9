"""
Pytest configuration and shared fixtures for identity service tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- integration: Tests exercising the HTTP app end to end

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
from datetime import datetime, timedelta, timezone

import pytest

from tests.reset_singletons import reset_all_singletons


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (HTTP app)")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    """Keep store/reconciler singletons from leaking between tests."""
    yield
    reset_all_singletons()


class FakeClock:
    """
    Deterministic clock for contact timestamps.

    Each call returns the current time and then advances one second, so
    contacts created in sequence get strictly increasing created_at values.
    Set ``now`` to backdate a record.
    """

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def clock():
    """Clock starting at a fixed UTC instant."""
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def contact_store(tmp_path, clock):
    """Fresh SQLite contact store per test."""
    from api.services.contact_store import ContactStore
    return ContactStore(str(tmp_path / "contacts.db"), clock=clock)


@pytest.fixture
def reconciler(contact_store):
    """Reconciler bound to the per-test store."""
    from api.services.identity_reconciler import IdentityReconciler
    return IdentityReconciler(contact_store)
