from .memory import InMemoryContactStore
from .ports import ContactStore
from .postgres import PostgresContactStore, ensure_schema

__all__ = ["ContactStore", "InMemoryContactStore", "PostgresContactStore", "ensure_schema"]
