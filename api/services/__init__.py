"""
Identity Services Package.

This package contains the business logic and data access services.

Example:
    from api.services import get_identity_reconciler

    result = get_identity_reconciler().identify(email="doc@example.com")

Key service modules:
- contact_normalizer: Email/phone validation and canonical forms
- contact_store: Contact model and SQLite store
- identity_reconciler: Cluster discovery, primary election, merge
- cluster_audit: Link integrity checks and repair
- errors: Error taxonomy mapped to HTTP statuses
"""

from api.services.errors import (
    ReconciliationError,
    ValidationError,
    StoreError,
    InvariantViolation,
)

from api.services.contact_normalizer import (
    NormalizedContact,
    normalize_contact_info,
)

from api.services.contact_store import (
    Contact,
    ContactStore,
    LinkPrecedence,
    get_contact_store,
)

from api.services.identity_reconciler import (
    IdentifyOutcome,
    IdentifyResult,
    IdentityReconciler,
    build_contact_summary,
    get_identity_reconciler,
)


__all__ = [
    # Errors
    "ReconciliationError",
    "ValidationError",
    "StoreError",
    "InvariantViolation",
    # Contacts
    "NormalizedContact",
    "normalize_contact_info",
    "Contact",
    "ContactStore",
    "LinkPrecedence",
    "get_contact_store",
    # Reconciliation
    "IdentifyOutcome",
    "IdentifyResult",
    "IdentityReconciler",
    "build_contact_summary",
    "get_identity_reconciler",
]
