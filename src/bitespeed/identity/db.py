from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Iterator

import psycopg

from .config import get_settings
from .errors import StorageError
from .repository import ContactStore, InMemoryContactStore, PostgresContactStore


@contextmanager
def get_connection(autocommit: bool = True) -> Iterator[psycopg.Connection[Any]]:
    settings = get_settings()
    try:
        conn = psycopg.connect(settings.database_url)
    except psycopg.Error as exc:
        raise StorageError(f"could not connect to contact database: {exc}") from exc
    conn.autocommit = autocommit
    try:
        yield conn
    finally:
        conn.close()


@lru_cache(maxsize=1)
def get_memory_store() -> InMemoryContactStore:
    return InMemoryContactStore()


def get_store() -> Iterator[ContactStore]:
    """Request-scoped store; the connection is closed once the response is sent."""
    if get_settings().store_backend == "memory":
        yield get_memory_store()
        return
    with get_connection() as conn:
        yield PostgresContactStore(conn)


__all__ = ["get_connection", "get_memory_store", "get_store"]
