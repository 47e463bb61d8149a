"""
Generic CRUD operations shared by every collection

Each operation runs the collection's pre-hook, the repository call and the
post-hook, converting failures at each phase into one EngineError:
hook failures are BAD_REQUEST, repository failures SERVER_TIMEOUT and
missing documents NOT_FOUND.
"""

import inspect
import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import EngineOptions
from ..errors import ErrorKind, raise_error
from ..query import build_query
from ..registry import Collection, OneManyAssociation
from ..storage.interface import Document

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "No resource was found with that id."


async def run_hook(hook, *args, default: Any = None) -> Any:
    """Call an optional sync or async hook; ``default`` when it is unset"""
    if hook is None:
        return default
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_id(document: Any) -> Any:
    """Copy of a document with its ``_id`` as a string"""
    if not isinstance(document, Mapping):
        return document
    result = dict(document)
    if result.get("_id") is not None:
        result["_id"] = str(result["_id"])
    return result


def serialize(collection: Collection, record: Mapping[str, Any]) -> Document:
    """
    Output form of a loaded record.

    ONE_MANY associations are virtual: they are never part of the stored
    document, so they are copied over from the loaded record separately.
    """
    virtual = collection.virtual_associations
    result = normalize_id({key: value for key, value in record.items() if key not in virtual})

    for name in virtual:
        if name in record:
            result[name] = [normalize_id(child) for child in record[name] or []]

    return result


def check_embed(collection: Collection, names: Sequence[str]) -> None:
    for name in names:
        if name not in collection.associations:
            raise ValueError(f"Unknown association: {name}")


async def embed_associations(
    collection: Collection,
    records: list[Document],
    names: Sequence[str],
) -> None:
    """
    Populate associations on loaded records in place.

    ONE_MANY children are found by foreign key; MANY_MANY linking entries
    get the child document under the child collection key.
    """
    if not records:
        return

    for name in names:
        association = collection.association(name)
        target = collection.target(name)

        if isinstance(association, OneManyAssociation):
            owner_ids = [str(record["_id"]) for record in records]
            children = await target.repository.find(
                {association.foreign_field: {"$in": owner_ids}}
            )
            grouped: dict[str, list[Document]] = defaultdict(list)
            for child in children:
                grouped[str(child.get(association.foreign_field))].append(child)
            for record in records:
                record[name] = grouped.get(str(record["_id"]), [])
            continue

        child_ids = {
            str(entry.get(target.name))
            for record in records
            for entry in record.get(name) or []
        }
        children = {
            str(child["_id"]): child
            for child in await target.repository.find({"_id": {"$in": sorted(child_ids)}})
        }
        for record in records:
            record[name] = [
                {**entry, target.name: children.get(str(entry.get(target.name)), entry.get(target.name))}
                for entry in record.get(name) or []
            ]


async def list_documents(
    collection: Collection,
    query: Optional[Mapping[str, Any]],
    options: EngineOptions,
) -> list[Document]:
    """
    Find a list of documents.

    Args:
        collection: Collection descriptor
        query: Query parameters (see docscope_server.query)
        options: Engine options

    Returns:
        Serialized documents
    """
    try:
        repository_query = build_query(query, exclude_deleted=options.enable_soft_delete)
        check_embed(collection, repository_query.embed)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was an error processing the request.", error)

    try:
        records = await collection.repository.find(
            repository_query.filter, repository_query.projection
        )
        await embed_associations(collection, records, repository_query.embed)
    except Exception as error:
        raise_error(ErrorKind.SERVER_TIMEOUT, "There was an error accessing the database.", error)

    try:
        records = await run_hook(collection.hooks.list_post, query, records, default=records)
        result = [serialize(collection, record) for record in records]
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a postprocessing error.", error)

    logger.debug("Listed %d %s documents", len(result), collection.name)
    return result


async def find_document(
    collection: Collection,
    document_id: str,
    query: Optional[Mapping[str, Any]],
    options: EngineOptions,
) -> Document:
    """
    Find one document by id.

    Raises:
        EngineError: (NOT_FOUND) no such document
    """
    try:
        repository_query = build_query(
            query,
            exclude_deleted=options.enable_soft_delete,
            base_filter={"_id": str(document_id)},
        )
        check_embed(collection, repository_query.embed)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was an error processing the request.", error)

    try:
        record = await collection.repository.find_one(
            repository_query.filter, repository_query.projection
        )
        if record is not None:
            await embed_associations(collection, [record], repository_query.embed)
    except Exception as error:
        raise_error(ErrorKind.SERVER_TIMEOUT, "There was an error accessing the database.", error)

    if record is None:
        raise_error(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

    try:
        record = await run_hook(collection.hooks.find_post, query, record, default=record)
        return serialize(collection, record)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a postprocessing error.", error)


async def create_document(
    collection: Collection,
    payload: Mapping[str, Any],
    options: EngineOptions,
) -> Document:
    """Create a document and return it as re-read from the repository"""
    if not isinstance(payload, Mapping):
        raise_error(ErrorKind.BAD_REQUEST, "There was an error processing the request.")

    try:
        payload = dict(payload)
        payload = await run_hook(collection.hooks.create_pre, payload, default=payload)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a preprocessing error creating the resource.", error)

    if options.enable_created_at:
        now = _now()
        payload["createdAt"] = now
        payload["updatedAt"] = now

    try:
        created = await collection.repository.create(payload)
        record = await collection.repository.find_one({"_id": created["_id"]})
        if record is None:
            raise LookupError(f"Created {collection.name} document {created['_id']} could not be read back")
    except Exception as error:
        raise_error(ErrorKind.SERVER_TIMEOUT, "There was an error creating the resource.", error)

    try:
        record = await run_hook(collection.hooks.create_post, payload, record, default=record)
        return serialize(collection, record)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a postprocessing error creating the resource.", error)


async def update_document(
    collection: Collection,
    document_id: str,
    payload: Mapping[str, Any],
    options: EngineOptions,
) -> Document:
    """
    Merge payload fields into a document.

    Raises:
        EngineError: (NOT_FOUND) no such document
    """
    if not isinstance(payload, Mapping):
        raise_error(ErrorKind.BAD_REQUEST, "There was an error processing the request.")

    try:
        payload = dict(payload)
        payload = await run_hook(collection.hooks.update_pre, str(document_id), payload, default=payload)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a preprocessing error updating the resource.", error)

    if options.enable_updated_at:
        payload["updatedAt"] = _now()

    try:
        updated = await collection.repository.update(str(document_id), payload)
        record = None
        if updated is not None:
            record = await collection.repository.find_one({"_id": updated["_id"]})
    except Exception as error:
        raise_error(ErrorKind.SERVER_TIMEOUT, "There was an error updating the resource.", error)

    if record is None:
        raise_error(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

    try:
        record = await run_hook(collection.hooks.update_post, payload, record, default=record)
        return serialize(collection, record)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a postprocessing error updating the resource.", error)


async def delete_document(
    collection: Collection,
    document_id: str,
    payload: Optional[Mapping[str, Any]],
    options: EngineOptions,
) -> bool:
    """
    Delete a document.

    Soft-deletes (``isDeleted``/``deletedAt``) when enabled unless the
    payload sets ``hardDelete``. Association cleanup is left to the
    collection's delete hooks.

    Raises:
        EngineError: (NOT_FOUND) no such document
    """
    payload = dict(payload or {})

    try:
        await run_hook(collection.hooks.delete_pre, str(document_id), payload)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a preprocessing error deleting the resource.", error)

    try:
        if options.enable_soft_delete and not payload.get("hardDelete"):
            deleted = await collection.repository.update(
                str(document_id), {"isDeleted": True, "deletedAt": _now()}
            )
        else:
            deleted = await collection.repository.remove(str(document_id))
    except Exception as error:
        raise_error(ErrorKind.SERVER_TIMEOUT, "There was an error deleting the resource.", error)

    if deleted is None:
        raise_error(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE)

    try:
        await run_hook(collection.hooks.delete_post, payload, deleted)
    except Exception as error:
        raise_error(ErrorKind.BAD_REQUEST, "There was a postprocessing error deleting the resource.", error)

    return True


async def delete_many(
    collection: Collection,
    payload: Sequence[Any],
    options: EngineOptions,
) -> bool:
    """
    Delete several documents in order.

    Items are ids or ``{"_id": ..., "hardDelete": ...}`` records. Stops at
    the first failure; earlier deletes stay applied.
    """
    for item in payload:
        if isinstance(item, Mapping):
            await delete_document(collection, str(item["_id"]), item, options)
        else:
            await delete_document(collection, str(item), None, options)
    return True
