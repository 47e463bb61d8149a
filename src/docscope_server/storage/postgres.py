"""PostgreSQL document store

Every collection shares one ``documents`` table keyed by (collection, id)
with the document body stored as JSONB. Filters are translated to SQL with
all field names and values passed as query parameters.
"""

import json
import uuid
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Optional

import asyncpg

from .errors import ConflictError, ConnectionError, QueryError
from .interface import (
    SUPPORTED_OPERATORS,
    Document,
    DocumentRepository,
    DocumentStore,
    Filter,
    Projection,
    project,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    seq BIGSERIAL,
    data JSONB NOT NULL DEFAULT '{}'::jsonb,
    PRIMARY KEY (collection, id)
);
CREATE INDEX IF NOT EXISTS documents_collection_seq_idx ON documents (collection, seq);
"""


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def _row_to_document(row: asyncpg.Record) -> Document:
    data = row["data"]
    document = json.loads(data) if isinstance(data, str) else dict(data)
    document["_id"] = row["id"]
    return document


def build_where(filter: Filter, params: list[Any]) -> str:
    """
    Translate a repository filter into a SQL boolean expression.

    Args:
        filter: Repository filter (equality, $in, $ne)
        params: Parameter list to append to; placeholders continue its numbering

    Returns:
        SQL expression (``TRUE`` for an empty filter)
    """
    clauses: list[str] = []

    def placeholder(value: Any) -> str:
        params.append(value)
        return f"${len(params)}"

    for field, condition in filter.items():
        is_operator = (
            isinstance(condition, Mapping)
            and bool(condition)
            and all(str(key).startswith("$") for key in condition)
        )
        conditions = condition.items() if is_operator else [("$eq", condition)]

        for operator, operand in conditions:
            if operator not in SUPPORTED_OPERATORS and operator != "$eq":
                raise QueryError(f"Unsupported filter operator: {operator}")

            if field == "_id":
                if operator == "$in":
                    clauses.append(f"id = ANY({placeholder([str(v) for v in operand])}::text[])")
                elif operator == "$ne":
                    clauses.append(f"id <> {placeholder(str(operand))}")
                else:
                    clauses.append(f"id = {placeholder(str(operand))}")
                continue

            path = f"(data -> {placeholder(field)})"
            if operator == "$in":
                clauses.append(
                    f"{path} IN (SELECT jsonb_array_elements({placeholder(_dumps(list(operand)))}::jsonb))"
                )
            elif operator == "$ne":
                if operand is None:
                    clauses.append(f"({path} IS NOT NULL AND {path} <> 'null'::jsonb)")
                else:
                    clauses.append(f"{path} IS DISTINCT FROM {placeholder(_dumps(operand))}::jsonb")
            elif operand is None:
                clauses.append(f"({path} IS NULL OR {path} = 'null'::jsonb)")
            else:
                clauses.append(f"{path} = {placeholder(_dumps(operand))}::jsonb")

    return " AND ".join(clauses) if clauses else "TRUE"


class PostgresRepository(DocumentRepository):
    """Repository over the rows of one collection"""

    def __init__(self, store: "PostgresStore", name: str):
        self.store = store
        self.name = name

    def _pool(self) -> asyncpg.Pool:
        if not self.store.pool:
            raise ConnectionError("Not connected to database")
        return self.store.pool

    async def find(self, filter: Filter, projection: Projection = None) -> list[Document]:
        pool = self._pool()
        params: list[Any] = [self.name]
        where = build_where(filter, params)

        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""SELECT id, data FROM documents
                        WHERE collection = $1 AND {where}
                        ORDER BY seq""",
                    *params,
                )
                return [project(_row_to_document(row), projection) for row in rows]
        except Exception as e:
            raise QueryError(f"Failed to query {self.name}", e, self.name)

    async def find_one(self, filter: Filter, projection: Projection = None) -> Optional[Document]:
        pool = self._pool()
        params: list[Any] = [self.name]
        where = build_where(filter, params)

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""SELECT id, data FROM documents
                        WHERE collection = $1 AND {where}
                        ORDER BY seq LIMIT 1""",
                    *params,
                )
                if not row:
                    return None
                return project(_row_to_document(row), projection)
        except Exception as e:
            raise QueryError(f"Failed to query {self.name}", e, self.name)

    async def create(self, payload: Mapping[str, Any]) -> Document:
        pool = self._pool()
        data = dict(payload)
        document_id = str(data.pop("_id", None) or uuid.uuid4().hex)

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """INSERT INTO documents (collection, id, data)
                       VALUES ($1, $2, $3::jsonb)
                       RETURNING id, data""",
                    self.name,
                    document_id,
                    _dumps(data),
                )
                return _row_to_document(row)
        except asyncpg.UniqueViolationError:
            raise ConflictError(self.name, document_id)
        except Exception as e:
            raise QueryError(f"Failed to create {self.name} document", e, self.name)

    async def update(self, id: str, payload: Mapping[str, Any]) -> Optional[Document]:
        pool = self._pool()
        changes = dict(payload)
        changes.pop("_id", None)

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """UPDATE documents
                       SET data = data || $3::jsonb
                       WHERE collection = $1 AND id = $2
                       RETURNING id, data""",
                    self.name,
                    str(id),
                    _dumps(changes),
                )
                return _row_to_document(row) if row else None
        except Exception as e:
            raise QueryError(f"Failed to update {self.name} document {id}", e, self.name)

    async def remove(self, id: str) -> Optional[Document]:
        pool = self._pool()

        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    """DELETE FROM documents
                       WHERE collection = $1 AND id = $2
                       RETURNING id, data""",
                    self.name,
                    str(id),
                )
                return _row_to_document(row) if row else None
        except Exception as e:
            raise QueryError(f"Failed to delete {self.name} document {id}", e, self.name)


class PostgresStore(DocumentStore):
    """PostgreSQL document store with connection pooling"""

    def __init__(
        self,
        connection_string: str,
        pool_min: int = 2,
        pool_max: int = 10,
        connection_timeout: int = 5,
    ):
        self.connection_string = connection_string
        self.pool_min = pool_min
        self.pool_max = pool_max
        self.connection_timeout = connection_timeout
        self.pool: Optional[asyncpg.Pool] = None
        self._connected = False
        self._repositories: dict[str, PostgresRepository] = {}

    async def connect(self) -> None:
        """Connect to PostgreSQL"""
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.pool_min,
                max_size=self.pool_max,
                command_timeout=60,
                timeout=self.connection_timeout,
            )
            self._connected = True
        except Exception as e:
            self._connected = False
            raise ConnectionError("Failed to connect to PostgreSQL", e)

    async def ensure_schema(self) -> None:
        """Create the documents table if needed (safe to call repeatedly)"""
        if not self.pool:
            raise ConnectionError("Not connected to database")

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA)
        except Exception as e:
            raise QueryError("Failed to ensure database schema", e)

    async def disconnect(self) -> None:
        """Close the connection pool"""
        if self.pool:
            await self.pool.close()
            self.pool = None
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    async def health_check(self) -> bool:
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    def repository(self, name: str) -> PostgresRepository:
        if name not in self._repositories:
            self._repositories[name] = PostgresRepository(self, name)
        return self._repositories[name]
