from __future__ import annotations

import contextlib
from typing import Any, Dict, Iterable, Iterator, List

import psycopg
from psycopg import Connection
from psycopg import errors as pg_errors
from psycopg.rows import dict_row

from shared.logging import get_logger

from ..errors import StorageError, TransientStorageError
from ..types import Contact, LinkPrecedence, NewContact

logger = get_logger("identity.repository")

CONTACT_COLUMNS = "id, email, phone_number, linked_id, link_precedence, created_at, updated_at, deleted_at"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS contacts (
        id SERIAL PRIMARY KEY,
        phone_number VARCHAR(20),
        email VARCHAR(255),
        linked_id INTEGER REFERENCES contacts (id),
        link_precedence VARCHAR(10) NOT NULL
            CHECK (link_precedence IN ('primary', 'secondary')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        deleted_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS email_idx ON contacts (email)",
    "CREATE INDEX IF NOT EXISTS phone_idx ON contacts (phone_number)",
    "CREATE INDEX IF NOT EXISTS linked_id_idx ON contacts (linked_id)",
)


def _contact_from_row(row: Dict[str, Any]) -> Contact:
    return Contact(
        id=row["id"],
        email=row["email"],
        phone_number=row["phone_number"],
        linked_id=row["linked_id"],
        link_precedence=LinkPrecedence(row["link_precedence"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row.get("deleted_at"),
    )


@contextlib.contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (pg_errors.DeadlockDetected, pg_errors.SerializationFailure) as exc:
        logger.warning("storage_conflict", operation=operation, error=str(exc))
        raise TransientStorageError(f"{operation} aborted: {exc}") from exc
    except psycopg.Error as exc:
        logger.error("storage_error", operation=operation, error=str(exc))
        raise StorageError(f"{operation} failed: {exc}") from exc


def ensure_schema(conn: Connection) -> None:
    """Create the contacts table and its indexes if they are missing."""
    with _storage_errors("ensure_schema"):
        with conn.transaction():
            with conn.cursor() as cur:
                for statement in SCHEMA_STATEMENTS:
                    cur.execute(statement)
    logger.info("schema_ready", table="contacts")


class PostgresContactStore:
    """Contact store backed by a psycopg connection in autocommit mode.

    Reads issued by the resolver take ``FOR UPDATE`` row locks so that inside
    ``transaction()`` the clusters being merged stay locked until commit.
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        with _storage_errors("transaction"):
            with self.conn.transaction():
                yield

    def lock_identifiers(self, email: str | None, phone_number: str | None) -> None:
        keys = []
        if email is not None:
            keys.append(f"email:{email}")
        if phone_number is not None:
            keys.append(f"phone:{phone_number}")
        # fixed order so two callers never wait on each other's second key
        with _storage_errors("lock_identifiers"):
            with self.conn.cursor() as cur:
                for key in sorted(keys):
                    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (key,))

    def _fetch(self, operation: str, query: str, params: Any) -> List[Contact]:
        with _storage_errors(operation):
            with self.conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                return [_contact_from_row(row) for row in cur.fetchall()]

    def find_by_email_or_phone(self, email: str | None, phone_number: str | None) -> List[Contact]:
        clauses: List[str] = []
        params: List[Any] = []
        if email is not None:
            clauses.append("email = %s")
            params.append(email)
        if phone_number is not None:
            clauses.append("phone_number = %s")
            params.append(phone_number)
        if not clauses:
            return []
        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE {" OR ".join(clauses)}
            ORDER BY created_at, id
            FOR UPDATE
        """
        return self._fetch("find_by_email_or_phone", query, params)

    def find_by_ids(self, ids: Iterable[int]) -> List[Contact]:
        id_list = sorted(set(ids))
        if not id_list:
            return []
        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE id = ANY(%s)
            ORDER BY created_at, id
            FOR UPDATE
        """
        return self._fetch("find_by_ids", query, (id_list,))

    def find_by_linked_id(self, primary_id: int) -> List[Contact]:
        query = f"""
            SELECT {CONTACT_COLUMNS}
            FROM contacts
            WHERE linked_id = %s
            ORDER BY created_at, id
            FOR UPDATE
        """
        return self._fetch("find_by_linked_id", query, (primary_id,))

    def insert(self, contact: NewContact) -> int:
        with _storage_errors("insert"):
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO contacts (email, phone_number, linked_id, link_precedence)
                    VALUES (%s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        contact.email,
                        contact.phone_number,
                        contact.linked_id,
                        contact.link_precedence.value,
                    ),
                )
                row = cur.fetchone()
        if not row:
            raise StorageError("insert returned no id")
        return row[0]

    def update_link(self, contact_id: int, linked_id: int | None, link_precedence: LinkPrecedence) -> None:
        with _storage_errors("update_link"):
            with self.conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE contacts
                    SET linked_id = %s, link_precedence = %s, updated_at = NOW()
                    WHERE id = %s
                    """,
                    (linked_id, link_precedence.value, contact_id),
                )
                updated = cur.rowcount
        if updated == 0:
            raise StorageError(f"contact {contact_id} does not exist")

    def list_all(self) -> List[Contact]:
        query = f"SELECT {CONTACT_COLUMNS} FROM contacts ORDER BY created_at, id"
        return self._fetch("list_all", query, ())


__all__ = ["PostgresContactStore", "ensure_schema", "SCHEMA_STATEMENTS"]
