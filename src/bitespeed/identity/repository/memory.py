from __future__ import annotations

import contextlib
import copy
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Iterator, List

from ..errors import StorageError
from ..types import Contact, LinkPrecedence, NewContact


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryContactStore:
    """Process-local contact store used by tests and ``STORE_BACKEND=memory``."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utcnow
        self._contacts: Dict[int, Contact] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            saved_contacts = copy.deepcopy(self._contacts)
            saved_next_id = self._next_id
            try:
                yield
            except BaseException:
                self._contacts = saved_contacts
                self._next_id = saved_next_id
                raise

    def lock_identifiers(self, email: str | None, phone_number: str | None) -> None:
        # transaction() already holds the store-wide lock
        return None

    def _ordered(self, contacts: Iterable[Contact]) -> List[Contact]:
        return [copy.copy(contact) for contact in sorted(contacts, key=Contact.sort_key)]

    def find_by_email_or_phone(self, email: str | None, phone_number: str | None) -> List[Contact]:
        if email is None and phone_number is None:
            return []
        with self._lock:
            return self._ordered(
                contact
                for contact in self._contacts.values()
                if (email is not None and contact.email == email)
                or (phone_number is not None and contact.phone_number == phone_number)
            )

    def find_by_ids(self, ids: Iterable[int]) -> List[Contact]:
        wanted = set(ids)
        with self._lock:
            return self._ordered(c for c in self._contacts.values() if c.id in wanted)

    def find_by_linked_id(self, primary_id: int) -> List[Contact]:
        with self._lock:
            return self._ordered(c for c in self._contacts.values() if c.linked_id == primary_id)

    def insert(self, contact: NewContact) -> int:
        with self._lock:
            now = self._clock()
            contact_id = self._next_id
            self._next_id += 1
            self._contacts[contact_id] = Contact(
                id=contact_id,
                email=contact.email,
                phone_number=contact.phone_number,
                linked_id=contact.linked_id,
                link_precedence=contact.link_precedence,
                created_at=now,
                updated_at=now,
            )
            return contact_id

    def update_link(self, contact_id: int, linked_id: int | None, link_precedence: LinkPrecedence) -> None:
        with self._lock:
            existing = self._contacts.get(contact_id)
            if existing is None:
                raise StorageError(f"contact {contact_id} does not exist")
            existing.linked_id = linked_id
            existing.link_precedence = link_precedence
            existing.updated_at = self._clock()

    def list_all(self) -> List[Contact]:
        with self._lock:
            return self._ordered(self._contacts.values())

    def seed(self, contact: Contact) -> None:
        """Load a fully-formed contact, keeping its id and timestamps."""
        with self._lock:
            self._contacts[contact.id] = copy.copy(contact)
            self._next_id = max(self._next_id, contact.id + 1)


__all__ = ["InMemoryContactStore"]
