"""
Identity Reconciliation Services Package.

This package contains the business logic and data access services.
Use this module to import commonly-used services.

Example:
    from api.services import (
        get_contact_store,
        get_identity_resolver,
    )

Key service modules:
- contact_store: Contact model and SQLite / in-memory stores
- identity_resolver: consolidation algorithm and consolidated view
- contact_normalize: email / phone normalization and validation
- errors: error kinds surfaced to the transport layer
"""

# ============================================================================
# Storage
# ============================================================================

from api.services.contact_store import (
    Contact,
    ContactStore,
    InMemoryContactStore,
    LinkPrecedence,
    SQLiteContactStore,
    get_contact_store,
)

# ============================================================================
# Resolution
# ============================================================================

from api.services.identity_resolver import (
    ConsolidatedView,
    IdentityResolver,
    consolidate,
    get_identity_resolver,
)

# ============================================================================
# Errors
# ============================================================================

from api.services.errors import (
    EmptyClusterError,
    IdentityError,
    InvalidInputError,
    LinkChainError,
    MissingPrimaryError,
    NotFoundError,
    StorageError,
)


__all__ = [
    # Storage
    "Contact",
    "ContactStore",
    "InMemoryContactStore",
    "LinkPrecedence",
    "SQLiteContactStore",
    "get_contact_store",
    # Resolution
    "ConsolidatedView",
    "IdentityResolver",
    "consolidate",
    "get_identity_resolver",
    # Errors
    "EmptyClusterError",
    "IdentityError",
    "InvalidInputError",
    "LinkChainError",
    "MissingPrimaryError",
    "NotFoundError",
    "StorageError",
]
