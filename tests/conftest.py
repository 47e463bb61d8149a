"""
Pytest fixtures for Docscope server tests
"""

import pytest

from docscope_server.config import EngineOptions
from docscope_server.registry import CollectionRegistry
from docscope_server.storage import MemoryStore


@pytest.fixture
def store():
    """Create an empty in-memory store"""
    return MemoryStore()


@pytest.fixture
def registry(store):
    """
    Registry with user, role and permission collections.

    permission.users <-> user.permissions (MANY_MANY, linking model)
    permission.roles <-> role.permissions (MANY_MANY)
    role.users -> user.role (ONE_MANY)
    """
    registry = CollectionRegistry(store)
    registry.register(
        "user",
        {"permissions": {"type": "MANY_MANY", "model": "permission"}},
    )
    registry.register(
        "role",
        {
            "users": {"type": "ONE_MANY", "model": "user", "foreignField": "role"},
            "permissions": {"type": "MANY_MANY", "model": "permission"},
        },
    )
    registry.register(
        "permission",
        {
            "users": {"type": "MANY_MANY", "model": "user", "linkingModel": "user_permission"},
            "roles": {"type": "MANY_MANY", "model": "role"},
        },
    )
    registry.resolve()
    return registry


@pytest.fixture
def users(registry):
    return registry["user"]


@pytest.fixture
def roles(registry):
    return registry["role"]


@pytest.fixture
def permissions(registry):
    return registry["permission"]


@pytest.fixture
def options():
    """Default (lenient) engine options"""
    return EngineOptions()


@pytest.fixture
def strict_options():
    """Engine options rejecting any scope violation"""
    return EngineOptions(enable_document_scope_fail=True)


@pytest.fixture
def seed():
    """Helper inserting documents into a collection"""

    async def insert(collection, *documents):
        for document in documents:
            await collection.repository.create(document)

    return insert
