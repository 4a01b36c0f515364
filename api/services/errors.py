"""
Error kinds for identity reconciliation.

Every error carries the HTTP-like status the transport layer answers with,
so routes never need to know which failure happened where.
"""
from typing import Optional


class IdentityError(Exception):
    """Base class for identity reconciliation failures."""

    status_code: int = 500
    kind: str = "identity_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInputError(IdentityError):
    """Both identifying fields absent, or a malformed value."""

    status_code = 400
    kind = "invalid_input"


class NotFoundError(IdentityError):
    """A referenced contact id does not exist."""

    status_code = 404
    kind = "not_found"

    def __init__(self, contact_id: int, message: Optional[str] = None):
        self.contact_id = contact_id
        super().__init__(message or f"Contact {contact_id} not found")


class EmptyClusterError(IdentityError):
    """Consolidation was requested with zero records."""

    kind = "empty_cluster"

    def __init__(self, message: str = "No contacts found"):
        super().__init__(message)


class MissingPrimaryError(IdentityError):
    """A cluster contains no primary record."""

    kind = "missing_primary"

    def __init__(self, message: str = "No primary contact found"):
        super().__init__(message)


class LinkChainError(IdentityError):
    """A secondary's link does not lead to an active primary."""

    kind = "link_chain"

    def __init__(self, contact_id: int, message: str):
        self.contact_id = contact_id
        super().__init__(message)


class StorageError(IdentityError):
    """Any failure raised by the storage backend."""

    status_code = 503
    kind = "storage_error"
