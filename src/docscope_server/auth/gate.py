"""
Document scope enforcement

Pre-checks run before update, associate and delete operations and load the
scope metadata of the targeted documents in one filtered read. Post-checks
run on read results. ``EngineOptions.enable_document_scope_fail`` selects
strict mode (reject the whole request) over lenient mode (drop unauthorized
ids from deletes, redact unauthorized documents from lists).
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import EngineOptions
from ..errors import ErrorKind, raise_error
from ..registry import Collection
from ..storage.interface import Document
from .scope import Action, is_authorized

logger = logging.getLogger(__name__)

INSUFFICIENT_SCOPE = "Insufficient document scope."


@dataclass
class ScopeVerification:
    """Outcome of checking a batch of documents"""

    authorized: bool
    unauthorized_documents: list[Document] = field(default_factory=list)


@dataclass
class PreAuthorization:
    authorized: bool
    unauthorized_ids: list[str] = field(default_factory=list)


@dataclass
class PostAuthorization:
    authorized: bool
    redacted_documents: list[Any] = field(default_factory=list)


def resolve_action(
    method: str,
    *,
    document_id: Optional[str] = None,
    owner_id: Optional[str] = None,
) -> Optional[Action]:
    """
    Decide which scope action an inbound request needs checked.

    Args:
        method: HTTP verb
        document_id: Target document id, if the route has one
        owner_id: Owner document id for association routes

    Returns:
        The action to pre-check, or None when no pre-check applies
    """
    method = method.lower()
    if document_id and method == "put":
        return Action.UPDATE
    if owner_id:
        return Action.READ if method == "get" else Action.ASSOCIATE
    if method == "delete":
        return Action.DELETE
    return None


def verify_scope(
    documents: Iterable[Document],
    action: Action | str,
    caller_scope: Iterable[str],
    options: EngineOptions,
) -> ScopeVerification:
    """
    Check documents against the caller's scope for one action.

    In strict mode the check stops at the first unauthorized document.

    Raises:
        EngineError: (INTERNAL) invalid action or malformed scope policy
    """
    try:
        action = Action(action)
        caller_scope = set(caller_scope)
        unauthorized: list[Document] = []

        for document in documents:
            if is_authorized(document, action, caller_scope):
                continue
            unauthorized.append(document)
            if options.enable_document_scope_fail:
                break
    except Exception as error:
        raise_error(ErrorKind.INTERNAL, "There was an error verifying document scope.", error)

    return ScopeVerification(authorized=not unauthorized, unauthorized_documents=unauthorized)


async def verify_scope_by_id(
    collection: Collection,
    document_ids: Sequence[str],
    action: Action | str,
    caller_scope: Iterable[str],
    options: EngineOptions,
) -> ScopeVerification:
    """Load the scope metadata of the given documents and verify it"""
    try:
        documents = await collection.repository.find(
            {"_id": {"$in": [str(document_id) for document_id in document_ids]}},
            ["scope"],
        )
    except Exception as error:
        raise_error(ErrorKind.INTERNAL, "There was an error loading document scope.", error)

    return verify_scope(documents, action, caller_scope, options)


async def pre_authorize(
    collection: Collection,
    action: Action | str,
    document_ids: Sequence[str],
    caller_scope: Iterable[str],
    options: EngineOptions,
) -> PreAuthorization:
    """Report which target documents the caller may act on"""
    result = await verify_scope_by_id(collection, document_ids, action, caller_scope, options)
    return PreAuthorization(
        authorized=result.authorized,
        unauthorized_ids=[str(document["_id"]) for document in result.unauthorized_documents],
    )


async def enforce_pre(
    collection: Collection,
    action: Action | str,
    document_ids: Sequence[str],
    caller_scope: Iterable[str],
    options: EngineOptions,
) -> list[str]:
    """
    Gate a mutation before any write happens.

    Returns:
        The ids the operation may proceed with. A lenient delete drops the
        unauthorized ids; every other failure is rejected.

    Raises:
        EngineError: (FORBIDDEN) scope check failed
    """
    result = await pre_authorize(collection, action, document_ids, caller_scope, options)
    if result.authorized:
        return [str(document_id) for document_id in document_ids]

    if Action(action) is Action.DELETE and not options.enable_document_scope_fail:
        unauthorized = set(result.unauthorized_ids)
        logger.info(
            "Dropping %d unauthorized %s ids from delete", len(unauthorized), collection.name
        )
        return [str(document_id) for document_id in document_ids if str(document_id) not in unauthorized]

    raise_error(ErrorKind.FORBIDDEN, INSUFFICIENT_SCOPE)


def post_authorize(
    documents: Sequence[Document],
    caller_scope: Iterable[str],
    options: EngineOptions,
    action: Action | str = Action.READ,
) -> PostAuthorization:
    """Replace unauthorized documents with an error placeholder, in place order"""
    result = verify_scope(documents, action, caller_scope, options)
    if result.authorized:
        return PostAuthorization(authorized=True, redacted_documents=list(documents))

    unauthorized = {id(document) for document in result.unauthorized_documents}
    redacted = [
        {"error": INSUFFICIENT_SCOPE} if id(document) in unauthorized else document
        for document in documents
    ]
    return PostAuthorization(authorized=False, redacted_documents=redacted)


def enforce_post_one(
    document: Document,
    caller_scope: Iterable[str],
    options: EngineOptions,
) -> Document:
    """Gate a single-document read; any failure is forbidden"""
    result = verify_scope([document], Action.READ, caller_scope, options)
    if not result.authorized:
        raise_error(ErrorKind.FORBIDDEN, INSUFFICIENT_SCOPE)
    return document


def enforce_post(
    documents: Sequence[Document],
    caller_scope: Iterable[str],
    options: EngineOptions,
) -> list[Any]:
    """
    Gate a list read.

    Raises:
        EngineError: (FORBIDDEN) strict mode and any document failed
    """
    result = post_authorize(documents, caller_scope, options)
    if result.authorized:
        return result.redacted_documents

    if options.enable_document_scope_fail:
        raise_error(ErrorKind.FORBIDDEN, INSUFFICIENT_SCOPE)

    logger.info("Redacted unauthorized documents from list result")
    return result.redacted_documents
