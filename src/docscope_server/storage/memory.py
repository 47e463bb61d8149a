"""In-memory document store

Backs memory-only mode (no DATABASE_URL) and the test suite. Documents are
deep-copied on the way in and out so callers never share state with the
store, which mirrors what a real database round-trip does.
"""

import copy
import uuid
from collections.abc import Mapping
from typing import Any, Optional

from .errors import ConflictError, QueryError
from .interface import (
    SUPPORTED_OPERATORS,
    Document,
    DocumentRepository,
    DocumentStore,
    Filter,
    Projection,
    project,
)


def _is_operator_condition(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and bool(condition)
        and all(str(key).startswith("$") for key in condition)
    )


def matches(document: Mapping[str, Any], filter: Filter, collection: str | None = None) -> bool:
    """Evaluate a repository filter against one document"""
    for field, condition in filter.items():
        value = document.get(field)
        if not _is_operator_condition(condition):
            if value != condition:
                return False
            continue

        for operator, operand in condition.items():
            if operator not in SUPPORTED_OPERATORS:
                raise QueryError(f"Unsupported filter operator: {operator}", collection=collection)
            if operator == "$in" and value not in list(operand):
                return False
            if operator == "$ne" and value == operand:
                return False
    return True


class MemoryRepository(DocumentRepository):
    """Repository over one dict of documents keyed by id"""

    def __init__(self, name: str):
        self.name = name
        self._documents: dict[str, Document] = {}

    async def find(self, filter: Filter, projection: Projection = None) -> list[Document]:
        return [
            project(copy.deepcopy(document), projection)
            for document in self._documents.values()
            if matches(document, filter, self.name)
        ]

    async def find_one(self, filter: Filter, projection: Projection = None) -> Optional[Document]:
        for document in self._documents.values():
            if matches(document, filter, self.name):
                return project(copy.deepcopy(document), projection)
        return None

    async def create(self, payload: Mapping[str, Any]) -> Document:
        document = copy.deepcopy(dict(payload))
        document_id = str(document.get("_id") or uuid.uuid4().hex)
        if document_id in self._documents:
            raise ConflictError(self.name, document_id)
        document["_id"] = document_id
        self._documents[document_id] = document
        return copy.deepcopy(document)

    async def update(self, id: str, payload: Mapping[str, Any]) -> Optional[Document]:
        document = self._documents.get(str(id))
        if document is None:
            return None
        changes = copy.deepcopy(dict(payload))
        changes.pop("_id", None)
        document.update(changes)
        return copy.deepcopy(document)

    async def remove(self, id: str) -> Optional[Document]:
        document = self._documents.pop(str(id), None)
        return copy.deepcopy(document) if document is not None else None

    def __len__(self) -> int:
        return len(self._documents)


class MemoryStore(DocumentStore):
    """Process-local store; every collection lives in a MemoryRepository"""

    def __init__(self):
        self._repositories: dict[str, MemoryRepository] = {}
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def health_check(self) -> bool:
        return True

    def repository(self, name: str) -> MemoryRepository:
        if name not in self._repositories:
            self._repositories[name] = MemoryRepository(name)
        return self._repositories[name]
