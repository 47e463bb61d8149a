"""Document repository adapters"""

from .interface import (
    Document,
    DocumentRepository,
    DocumentStore,
    Filter,
    Projection,
)
from .errors import (
    StorageError,
    ConnectionError,
    QueryError,
    NotFoundError,
    ConflictError,
)
from .memory import MemoryRepository, MemoryStore
from .postgres import PostgresRepository, PostgresStore

__all__ = [
    # Interface
    "Document",
    "DocumentRepository",
    "DocumentStore",
    "Filter",
    "Projection",
    # Errors
    "StorageError",
    "ConnectionError",
    "QueryError",
    "NotFoundError",
    "ConflictError",
    # Adapters
    "MemoryRepository",
    "MemoryStore",
    "PostgresRepository",
    "PostgresStore",
]
