"""Generic CRUD and association engine"""

from .crud import (
    list_documents,
    find_document,
    create_document,
    update_document,
    delete_document,
    delete_many,
)
from .associations import (
    LinkTable,
    add_one,
    remove_one,
    add_many,
    get_all,
)

__all__ = [
    "list_documents",
    "find_document",
    "create_document",
    "update_document",
    "delete_document",
    "delete_many",
    "LinkTable",
    "add_one",
    "remove_one",
    "add_many",
    "get_all",
]
