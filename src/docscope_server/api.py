"""
HTTP routes for registered collections

Each collection gets list/find/create/update/delete routes plus, per
association, get-all/add-one/remove-one/add-many routes. Routes resolve the
scope action once, run the document scope checks around the engine call
and read the caller's scope from a bearer token.
"""

import json
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from .auth import (
    INSUFFICIENT_SCOPE,
    REFRESH_TOKEN,
    enforce_post,
    enforce_post_one,
    enforce_pre,
    resolve_action,
    verify_token,
)
from .config import EngineOptions
from .engine import (
    add_many,
    add_one,
    create_document,
    delete_document,
    delete_many,
    find_document,
    get_all,
    list_documents,
    remove_one,
    update_document,
)
from .errors import EngineError, ErrorKind, raise_error
from .query import SCOPE_FIELD, selected_fields
from .registry import Collection
from .security import validate_association_payload, validate_bulk_delete, validate_document_id


def get_caller_scope(authorization: Optional[str] = Header(default=None)) -> list[str]:
    """Scope tokens of the authenticated caller"""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    payload = verify_token(authorization.split(" ", 1)[1].strip())
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if payload.token_type == REFRESH_TOKEN:
        raise HTTPException(status_code=401, detail="Refresh tokens cannot authorize requests")

    return payload.scope


def _check_id(document_id: str) -> None:
    valid, error = validate_document_id(document_id)
    if not valid:
        raise_error(ErrorKind.BAD_REQUEST, error)


def _query_params(request: Request) -> dict[str, Any]:
    params: dict[str, Any] = dict(request.query_params)
    if "$where" in params:
        try:
            params["$where"] = json.loads(params["$where"])
        except ValueError as error:
            raise_error(ErrorKind.BAD_REQUEST, "$where must be a JSON object.", error)
    if "$includeDeleted" in params:
        params["$includeDeleted"] = params["$includeDeleted"].lower() in ("1", "true", "yes")
    return params


def _hide_unselected_scope(documents: list, params: dict[str, Any]) -> list:
    """Drop the scope policy loaded only for the read post-check"""
    select = selected_fields(params)
    if select and SCOPE_FIELD not in select:
        for document in documents:
            document.pop(SCOPE_FIELD, None)
    return documents


def build_router(collection: Collection, options: EngineOptions) -> APIRouter:
    """Create the router for one collection"""
    router = APIRouter(prefix=f"/{collection.name}", tags=[collection.name])

    @router.get("")
    async def list_handler(request: Request, scope: list[str] = Depends(get_caller_scope)):
        params = _query_params(request)
        documents = await list_documents(collection, params, options)
        return {"docs": _hide_unselected_scope(enforce_post(documents, scope, options), params)}

    @router.get("/{document_id}")
    async def find_handler(
        document_id: str,
        request: Request,
        scope: list[str] = Depends(get_caller_scope),
    ):
        _check_id(document_id)
        params = _query_params(request)
        document = await find_document(collection, document_id, params, options)
        return _hide_unselected_scope([enforce_post_one(document, scope, options)], params)[0]

    @router.post("", status_code=201)
    async def create_handler(
        payload: dict = Body(...),
        scope: list[str] = Depends(get_caller_scope),
    ):
        return await create_document(collection, payload, options)

    @router.put("/{document_id}")
    async def update_handler(
        document_id: str,
        payload: dict = Body(...),
        scope: list[str] = Depends(get_caller_scope),
    ):
        _check_id(document_id)
        action = resolve_action("put", document_id=document_id)
        await enforce_pre(collection, action, [document_id], scope, options)
        return await update_document(collection, document_id, payload, options)

    @router.delete("/{document_id}", status_code=204)
    async def delete_handler(
        document_id: str,
        payload: Optional[dict] = Body(default=None),
        scope: list[str] = Depends(get_caller_scope),
    ):
        _check_id(document_id)
        action = resolve_action("delete", document_id=document_id)
        allowed = await enforce_pre(collection, action, [document_id], scope, options)
        if not allowed:
            # Nothing left to delete: the only target was dropped
            raise_error(ErrorKind.FORBIDDEN, INSUFFICIENT_SCOPE)
        await delete_document(collection, document_id, payload, options)
        return Response(status_code=204)

    @router.delete("", status_code=204)
    async def delete_many_handler(
        payload: list = Body(...),
        scope: list[str] = Depends(get_caller_scope),
    ):
        valid, error = validate_bulk_delete(payload)
        if not valid:
            raise_error(ErrorKind.BAD_REQUEST, error)

        action = resolve_action("delete")
        allowed = set(
            await enforce_pre(collection, action, [item["_id"] for item in payload], scope, options)
        )
        await delete_many(collection, [item for item in payload if item["_id"] in allowed], options)
        return Response(status_code=204)

    for association_name in collection.associations:
        _add_association_routes(router, collection, association_name, options)

    return router


def _add_association_routes(
    router: APIRouter,
    collection: Collection,
    association_name: str,
    options: EngineOptions,
) -> None:
    path = f"/{{owner_id}}/{association_name}"

    @router.get(path)
    async def get_all_handler(
        owner_id: str,
        request: Request,
        scope: list[str] = Depends(get_caller_scope),
    ):
        _check_id(owner_id)
        action = resolve_action("get", owner_id=owner_id)
        await enforce_pre(collection, action, [owner_id], scope, options)
        params = _query_params(request)
        documents = await get_all(collection, owner_id, association_name, params, options)
        return {"docs": _hide_unselected_scope(enforce_post(documents, scope, options), params)}

    @router.put(path + "/{child_id}", status_code=204)
    async def add_one_handler(
        owner_id: str,
        child_id: str,
        payload: Optional[dict] = Body(default=None),
        scope: list[str] = Depends(get_caller_scope),
    ):
        _check_id(owner_id)
        _check_id(child_id)
        action = resolve_action("put", owner_id=owner_id)
        await enforce_pre(collection, action, [owner_id], scope, options)
        await add_one(collection, owner_id, child_id, association_name, payload)
        return Response(status_code=204)

    @router.delete(path + "/{child_id}", status_code=204)
    async def remove_one_handler(
        owner_id: str,
        child_id: str,
        scope: list[str] = Depends(get_caller_scope),
    ):
        _check_id(owner_id)
        _check_id(child_id)
        action = resolve_action("delete", owner_id=owner_id)
        await enforce_pre(collection, action, [owner_id], scope, options)
        await remove_one(collection, owner_id, child_id, association_name)
        return Response(status_code=204)

    @router.post(path, status_code=204)
    async def add_many_handler(
        owner_id: str,
        payload: list = Body(...),
        scope: list[str] = Depends(get_caller_scope),
    ):
        _check_id(owner_id)
        valid, error = validate_association_payload(payload)
        if not valid:
            raise_error(ErrorKind.BAD_REQUEST, error)
        action = resolve_action("post", owner_id=owner_id)
        await enforce_pre(collection, action, [owner_id], scope, options)
        await add_many(collection, owner_id, payload, association_name)
        return Response(status_code=204)


async def engine_error_handler(request: Request, error: EngineError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineError, engine_error_handler)
