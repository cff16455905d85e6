from __future__ import annotations


class IdentityError(Exception):
    """Base class for identity resolution failures."""


class ObservationValidationError(IdentityError):
    """The caller supplied neither an email nor a phone number."""


class InternalInconsistencyError(IdentityError):
    """Stored linkage violates the one-primary-per-cluster invariant."""

    def __init__(self, message: str, *, contact_ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.contact_ids = list(contact_ids or [])


class StorageError(IdentityError):
    """The contact store is unreachable or rejected a query."""


class TransientStorageError(StorageError):
    """The database aborted the transaction (deadlock or serialization failure); rerunning it may succeed."""


__all__ = [
    "IdentityError",
    "InternalInconsistencyError",
    "ObservationValidationError",
    "StorageError",
    "TransientStorageError",
]
