"""
Centralized singleton reset utilities for testing.

The contact store and reconciler are process-wide singletons. Resetting
them after each test prevents a store bound to one test's temporary
database from leaking into the next.

Usage in conftest.py:
    @pytest.fixture(autouse=True)
    def reset_singletons_after_test():
        yield
        reset_all_singletons()
"""


def reset_all_singletons() -> None:
    """Reset the contact store and reconciler singletons."""
    from api.services.contact_store import reset_contact_store
    from api.services.identity_reconciler import reset_identity_reconciler

    reset_identity_reconciler()
    reset_contact_store()
