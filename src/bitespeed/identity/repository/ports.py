from __future__ import annotations

from typing import ContextManager, Iterable, List, Protocol

from ..types import Contact, LinkPrecedence, NewContact


class ContactStore(Protocol):
    """Persistence operations the resolver depends on.

    Every finder returns contacts ordered by ``(created_at, id)`` ascending.
    Implementations raise ``StorageError`` when the backend fails.
    """

    def transaction(self) -> ContextManager[None]:
        """Scope a unit of work; mutations inside it commit or roll back together."""
        ...

    def lock_identifiers(self, email: str | None, phone_number: str | None) -> None:
        """Serialize concurrent calls observing the same identifier values."""
        ...

    def find_by_email_or_phone(self, email: str | None, phone_number: str | None) -> List[Contact]:
        ...

    def find_by_ids(self, ids: Iterable[int]) -> List[Contact]:
        ...

    def find_by_linked_id(self, primary_id: int) -> List[Contact]:
        ...

    def insert(self, contact: NewContact) -> int:
        ...

    def update_link(self, contact_id: int, linked_id: int | None, link_precedence: LinkPrecedence) -> None:
        ...

    def list_all(self) -> List[Contact]:
        ...


__all__ = ["ContactStore"]
