"""Document repository contract consumed by the engine

Filters use a small operator subset every adapter understands:

    {"field": value}                   equality
    {"field": {"$in": [v1, v2]}}       membership
    {"field": {"$ne": value}}          inequality (missing fields match)

Projections are sequences of top-level field names; ``_id`` is always
returned.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, Optional

Document = dict[str, Any]
Filter = Mapping[str, Any]
Projection = Optional[Sequence[str]]

SUPPORTED_OPERATORS = ("$in", "$ne")


class DocumentRepository(ABC):
    """CRUD and filtered-find contract over a single collection"""

    name: str

    @abstractmethod
    async def find(self, filter: Filter, projection: Projection = None) -> list[Document]:
        pass

    @abstractmethod
    async def find_one(self, filter: Filter, projection: Projection = None) -> Optional[Document]:
        pass

    @abstractmethod
    async def create(self, payload: Mapping[str, Any]) -> Document:
        pass

    @abstractmethod
    async def update(self, id: str, payload: Mapping[str, Any]) -> Optional[Document]:
        """Merge top-level fields into the document; None when it does not exist"""

    @abstractmethod
    async def remove(self, id: str) -> Optional[Document]:
        """Delete the document and return it; None when it does not exist"""


class DocumentStore(ABC):
    """Connection owner handing out one repository per collection"""

    # Connection lifecycle
    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    # Collections
    @abstractmethod
    def repository(self, name: str) -> DocumentRepository:
        pass


def project(document: Mapping[str, Any], projection: Projection) -> Document:
    """Apply a projection to a stored document (shared by the adapters)"""
    if not projection:
        return dict(document)
    fields = set(projection) | {"_id"}
    return {key: value for key, value in document.items() if key in fields}
