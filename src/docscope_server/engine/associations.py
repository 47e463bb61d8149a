"""
Association maintenance between collections

ONE_MANY associations are virtual: linking sets the foreign key on the
child and nothing is stored on the owner. MANY_MANY associations keep a
linking entry on both documents:

    owner[association] = [{"_id": entry_id, <child collection>: child_id, **extra}]
    child[reciprocal]  = [{"_id": entry_id, <owner collection>: owner_id, **extra}]

Owner and child are saved with separate writes. There is no cross-document
transaction: if one save fails after the other succeeded, the operation
reports GATEWAY_TIMEOUT and the pair stays inconsistent until relinked.
"""

import asyncio
import logging
import uuid
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any, Optional

from ..config import EngineOptions
from ..errors import ErrorKind, raise_error
from ..registry import Collection, ManyManyAssociation, OneManyAssociation
from ..storage.errors import NotFoundError
from ..storage.interface import Document
from .crud import list_documents

logger = logging.getLogger(__name__)

OWNER_NOT_FOUND = "No owner resource was found with that id."
CHILD_NOT_FOUND = "No child resource was found with that id."
SET_ERROR = "There was a database error while setting the association."
REMOVE_ERROR = "There was a database error while removing the association."

# Keys that never count as linking extra fields
CHILD_ID_KEY = "childId"


def new_entry_id() -> str:
    return uuid.uuid4().hex


class LinkTable:
    """
    Linking entries of one document keyed by the referenced document id.

    Iteration follows insertion order; replacing an entry keeps both its
    position and its ``_id``.
    """

    def __init__(self, ref_field: str, entries: Optional[Iterable[Mapping[str, Any]]] = None):
        self.ref_field = ref_field
        self._entries: dict[str, dict[str, Any]] = {}
        for entry in entries or []:
            ref = entry.get(ref_field)
            if isinstance(ref, Mapping):  # populated by $embed
                ref = ref.get("_id")
            if ref is not None:
                self._entries[str(ref)] = dict(entry)

    def get(self, ref_id: Any) -> Optional[dict[str, Any]]:
        return self._entries.get(str(ref_id))

    def upsert(self, ref_id: Any, extra_fields: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """
        Create or update the entry for ``ref_id``.

        Without extra fields an existing entry is left untouched; with extra
        fields they replace the previous ones.
        """
        key = str(ref_id)
        existing = self._entries.get(key)
        if existing is not None and extra_fields is None:
            return existing

        entry: dict[str, Any] = {
            "_id": existing["_id"] if existing and existing.get("_id") else new_entry_id()
        }
        for field, value in (extra_fields or {}).items():
            if field not in ("_id", CHILD_ID_KEY, self.ref_field):
                entry[field] = value
        entry[self.ref_field] = key

        self._entries[key] = entry
        return entry

    def remove(self, ref_id: Any) -> bool:
        return self._entries.pop(str(ref_id), None) is not None

    def ids(self) -> list[str]:
        return list(self._entries)

    def to_list(self) -> list[dict[str, Any]]:
        return [dict(entry) for entry in self._entries.values()]

    def __contains__(self, ref_id: object) -> bool:
        return str(ref_id) in self._entries

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


async def _load(collection: Collection, document_id: Any, missing_message: str) -> Document:
    try:
        document = await collection.repository.find_one({"_id": str(document_id)})
    except Exception as error:
        raise_error(ErrorKind.SERVER_TIMEOUT, "There was an error accessing the database.", error)

    if document is None:
        raise_error(ErrorKind.NOT_FOUND, missing_message)
    return document


async def _load_pair(
    owner: Collection,
    owner_id: Any,
    child: Collection,
    child_id: Any,
) -> tuple[Document, Document]:
    """Load owner and child concurrently; an owner failure is reported first"""
    owner_result, child_result = await asyncio.gather(
        _load(owner, owner_id, OWNER_NOT_FOUND),
        _load(child, child_id, CHILD_NOT_FOUND),
        return_exceptions=True,
    )
    for result in (owner_result, child_result):
        if isinstance(result, BaseException):
            raise result
    return owner_result, child_result


async def _save_all(saves: Sequence[tuple[Collection, str, dict[str, Any]]], message: str) -> None:
    """
    Persist several documents concurrently and wait for every write.

    Raises:
        EngineError: (GATEWAY_TIMEOUT) any write failed
    """
    results = await asyncio.gather(
        *(collection.repository.update(document_id, changes) for collection, document_id, changes in saves),
        return_exceptions=True,
    )

    failure: Optional[BaseException] = None
    persisted: list[str] = []
    for (collection, document_id, _), result in zip(saves, results):
        if isinstance(result, BaseException):
            failure = failure or result
        elif result is None:
            failure = failure or NotFoundError(collection.name, document_id)
        else:
            persisted.append(f"{collection.name}/{document_id}")

    if failure is None:
        return

    if persisted:
        logger.error("Association left one-sided, persisted only: %s", ", ".join(persisted))
    raise_error(ErrorKind.GATEWAY_TIMEOUT, message, failure)


def _normalize_extra(extra_fields: Any) -> Optional[dict[str, Any]]:
    if extra_fields is None:
        return None
    if not isinstance(extra_fields, Mapping):
        raise_error(ErrorKind.BAD_REQUEST, "Association extra fields must be an object.")
    return {key: value for key, value in extra_fields.items() if key != CHILD_ID_KEY}


def _normalize_many(payload: Any) -> list[tuple[str, Optional[dict[str, Any]]]]:
    """Turn an add_many payload into (child id, extra fields) pairs"""
    message = "Association payload must be a list of ids or a list of records with a childId."
    if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
        raise_error(ErrorKind.BAD_REQUEST, message)

    if all(isinstance(item, str) for item in payload):
        return [(item, None) for item in payload]

    if all(isinstance(item, Mapping) and item.get(CHILD_ID_KEY) for item in payload):
        return [(str(item[CHILD_ID_KEY]), _normalize_extra(item)) for item in payload]

    raise_error(ErrorKind.BAD_REQUEST, message)


async def _link(
    owner: Collection,
    owner_doc: Document,
    association_name: str,
    child_doc: Document,
    extra_fields: Optional[dict[str, Any]],
) -> None:
    """
    Link one child to an already loaded owner.

    ``owner_doc`` is updated in memory so that consecutive links against the
    same owner see each other's entries.
    """
    association = owner.association(association_name)
    child = owner.target(association_name)
    owner_id = str(owner_doc["_id"])
    child_id = str(child_doc["_id"])

    if isinstance(association, OneManyAssociation):
        child_doc[association.foreign_field] = owner_id
        await _save_all([(child, child_id, {association.foreign_field: owner_id})], SET_ERROR)
        return

    reciprocal = owner.reciprocal(association_name)

    owner_links = LinkTable(child.name, owner_doc.get(association_name))
    owner_links.upsert(child_id, extra_fields)
    child_links = LinkTable(owner.name, child_doc.get(reciprocal))
    child_links.upsert(owner_id, extra_fields)

    owner_doc[association_name] = owner_links.to_list()
    child_doc[reciprocal] = child_links.to_list()

    await _save_all(
        [
            (owner, owner_id, {association_name: owner_doc[association_name]}),
            (child, child_id, {reciprocal: child_doc[reciprocal]}),
        ],
        SET_ERROR,
    )


async def add_one(
    owner: Collection,
    owner_id: str,
    child_id: str,
    association_name: str,
    extra_fields: Optional[Mapping[str, Any]] = None,
) -> bool:
    """
    Associate one child document with an owner document.

    Linking an already linked pair keeps the entry ids on both sides and
    replaces the extra fields when new ones are given.

    Args:
        owner: Owner collection descriptor
        owner_id: Owner document id
        child_id: Child document id
        association_name: Association name from the owner's perspective
        extra_fields: Linking fields stored with a MANY_MANY entry

    Returns:
        True once both sides are persisted

    Raises:
        EngineError: NOT_FOUND (owner/child), INTERNAL (association
            misconfigured), GATEWAY_TIMEOUT (a save failed)
    """
    owner.association(association_name)
    child = owner.target(association_name)
    extra = _normalize_extra(extra_fields)

    owner_doc, child_doc = await _load_pair(owner, owner_id, child, child_id)
    await _link(owner, owner_doc, association_name, child_doc, extra)

    logger.debug("Linked %s/%s -> %s/%s", owner.name, owner_id, child.name, child_id)
    return True


async def remove_one(
    owner: Collection,
    owner_id: str,
    child_id: str,
    association_name: str,
) -> bool:
    """
    Remove the association between an owner and one child.

    Removing a link that does not exist is a no-op.
    """
    association = owner.association(association_name)
    child = owner.target(association_name)

    owner_doc, child_doc = await _load_pair(owner, owner_id, child, child_id)
    owner_id = str(owner_doc["_id"])
    child_id = str(child_doc["_id"])

    if isinstance(association, OneManyAssociation):
        current = child_doc.get(association.foreign_field)
        if current is None or str(current) != owner_id:
            return True
        await _save_all([(child, child_id, {association.foreign_field: None})], REMOVE_ERROR)
        return True

    reciprocal = owner.reciprocal(association_name)

    owner_links = LinkTable(child.name, owner_doc.get(association_name))
    child_links = LinkTable(owner.name, child_doc.get(reciprocal))
    removed_from_owner = owner_links.remove(child_id)
    removed_from_child = child_links.remove(owner_id)

    if not (removed_from_owner or removed_from_child):
        return True

    await _save_all(
        [
            (owner, owner_id, {association_name: owner_links.to_list()}),
            (child, child_id, {reciprocal: child_links.to_list()}),
        ],
        REMOVE_ERROR,
    )

    logger.debug("Unlinked %s/%s -> %s/%s", owner.name, owner_id, child.name, child_id)
    return True


async def add_many(
    owner: Collection,
    owner_id: str,
    payload: Sequence[Any],
    association_name: str,
) -> bool:
    """
    Associate several children with an owner, one after another.

    Args:
        payload: Child ids, or records ``{"childId": ..., **extra_fields}``

    Links are applied sequentially in input order against one in-memory
    owner document. A failure stops the sequence; links made before it
    stay persisted.
    """
    owner.association(association_name)
    child = owner.target(association_name)
    links = _normalize_many(payload)

    owner_doc = await _load(owner, owner_id, OWNER_NOT_FOUND)

    for position, (child_id, extra) in enumerate(links):
        try:
            child_doc = await _load(child, child_id, CHILD_NOT_FOUND)
            await _link(owner, owner_doc, association_name, child_doc, extra)
        except Exception:
            logger.warning(
                "add_many on %s/%s stopped after %d of %d links",
                owner.name, owner_id, position, len(links),
            )
            raise

    return True


async def get_all(
    owner: Collection,
    owner_id: str,
    association_name: str,
    query: Optional[Mapping[str, Any]],
    options: EngineOptions,
) -> list[Document]:
    """
    List the children associated with an owner.

    The child id set is resolved first, then the regular list operation
    runs on the child collection restricted to those ids. For MANY_MANY
    associations with a linking model, each child gets its linking extra
    fields under the linking model name.
    """
    association = owner.association(association_name)
    child = owner.target(association_name)
    owner_doc = await _load(owner, owner_id, OWNER_NOT_FOUND)

    links: Optional[LinkTable] = None
    if isinstance(association, ManyManyAssociation):
        links = LinkTable(child.name, owner_doc.get(association_name))
        child_ids = links.ids()
    else:
        try:
            rows = await child.repository.find(
                {association.foreign_field: str(owner_doc["_id"])}, ["_id"]
            )
        except Exception as error:
            raise_error(ErrorKind.SERVER_TIMEOUT, "There was an error accessing the database.", error)
        child_ids = [str(row["_id"]) for row in rows]

    query = dict(query or {})
    where = query.get("$where") or {}
    if not isinstance(where, Mapping):
        raise_error(ErrorKind.BAD_REQUEST, "There was an error processing the request.")
    # The id restriction always wins over caller conditions on _id
    query["$where"] = {**where, "_id": {"$in": child_ids}}

    result = await list_documents(child, query, options)

    if links is not None and association.linking_model:
        for document in result:
            entry = links.get(document.get("_id"))
            if entry is None:
                continue
            document[association.linking_model] = {
                key: value for key, value in entry.items() if key not in ("_id", child.name)
            }

    return result
