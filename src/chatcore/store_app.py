"""aiohttp service exposing a record store and an upload area over HTTP.

This is the development stand-in for the external document store and blob
service the engine talks to through ``HttpRecordStore`` and ``HttpUploader``.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote

from aiohttp import web

from .errors import ChatError, NotFoundError, ValidationError
from .sqlite_backend import SQLiteBackend
from .sqlite_store import SQLiteRecordStore
from .store import InMemoryRecordStore
from .uploads import InMemoryUploader


class StoreRuntime:
    def __init__(self, *, store, uploader: InMemoryUploader, backend: SQLiteBackend | None = None) -> None:
        self.store = store
        self.uploader = uploader
        self.backend = backend


RUNTIME_KEY = web.AppKey("runtime", StoreRuntime)

_STATUS_BY_CODE = {
    "invalid_request": 400,
    "forbidden": 403,
    "not_found": 404,
}


def _error_response(code: str, message: str, status: int) -> web.Response:
    return web.json_response({"code": code, "message": message}, status=status)


def _invalid_request(message: str) -> web.Response:
    return _error_response("invalid_request", message, 400)


def _chat_error(exc: ChatError) -> web.Response:
    return _error_response(exc.code, str(exc), _STATUS_BY_CODE.get(exc.code, 500))


async def _read_json(request: web.Request) -> Any:
    raw = await request.text()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError("request body must be JSON") from exc


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


async def handle_list(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    collection = request.match_info["collection"]
    try:
        body = await _read_json(request)
        if not isinstance(body, dict):
            return _invalid_request("body must be an object")
        where = body.get("where") or None
        order_by = body.get("order_by")
        limit = body.get("limit")
        if where is not None and not isinstance(where, dict):
            return _invalid_request("where must be an object")
        if order_by is not None:
            if not isinstance(order_by, list) or len(order_by) != 2:
                return _invalid_request("order_by must be [field, direction]")
            order_by = (str(order_by[0]), str(order_by[1]))
        if limit is not None and not isinstance(limit, int):
            return _invalid_request("limit must be an integer")
        records = await runtime.store.list(collection, where, order_by=order_by, limit=limit)
    except ChatError as exc:
        return _chat_error(exc)
    return web.json_response({"records": records})


async def handle_create(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    collection = request.match_info["collection"]
    try:
        record = await _read_json(request)
        if not isinstance(record, dict):
            return _invalid_request("record must be an object")
        created = await runtime.store.create(collection, record)
    except ChatError as exc:
        return _chat_error(exc)
    return web.json_response({"record": created})


async def handle_create_if_absent(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    collection = request.match_info["collection"]
    try:
        body = await _read_json(request)
        record = body.get("record") if isinstance(body, dict) else None
        key = body.get("key") if isinstance(body, dict) else None
        if not isinstance(record, dict) or not isinstance(key, dict) or not key:
            return _invalid_request("record and key objects required")
        stored, created = await runtime.store.create_if_absent(collection, record, key)
    except ChatError as exc:
        return _chat_error(exc)
    return web.json_response({"record": stored, "created": created})


async def handle_update(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    collection = request.match_info["collection"]
    record_id = request.match_info["record_id"]
    try:
        patch = await _read_json(request)
        if not isinstance(patch, dict):
            return _invalid_request("patch must be an object")
        updated = await runtime.store.update(collection, record_id, patch)
    except ChatError as exc:
        return _chat_error(exc)
    return web.json_response({"record": updated})


async def handle_delete(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    collection = request.match_info["collection"]
    record_id = request.match_info["record_id"]
    try:
        await runtime.store.delete(collection, record_id)
    except ChatError as exc:
        return _chat_error(exc)
    return web.json_response({"status": "ok"})


async def handle_upload_put(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    key = request.match_info["key"]
    data = await request.read()
    try:
        await runtime.uploader.upload(data, key, content_type=request.content_type)
    except ChatError as exc:
        return _chat_error(exc)
    public_url = f"{request.url.origin()}/v1/uploads/{quote(key)}"
    return web.json_response({"public_url": public_url})


async def handle_upload_get(request: web.Request) -> web.Response:
    runtime = request.app[RUNTIME_KEY]
    key = request.match_info["key"]
    blob = runtime.uploader.get(key)
    if blob is None:
        return _chat_error(NotFoundError(f"upload {key} not found"))
    content_type, data = blob
    return web.Response(body=data, content_type=content_type)


def create_app(
    *,
    db_path: str | None = None,
    store=None,
    uploader: InMemoryUploader | None = None,
) -> web.Application:
    backend: SQLiteBackend | None = None
    if store is None:
        if db_path is not None:
            backend = SQLiteBackend(db_path)
            store = SQLiteRecordStore(backend)
        else:
            store = InMemoryRecordStore()
    runtime = StoreRuntime(store=store, uploader=uploader or InMemoryUploader(), backend=backend)

    app = web.Application(client_max_size=32 * 1024 * 1024)
    app[RUNTIME_KEY] = runtime
    app.router.add_get("/healthz", handle_health)
    app.router.add_post("/v1/records/{collection}/list", handle_list)
    app.router.add_post("/v1/records/{collection}/create_if_absent", handle_create_if_absent)
    app.router.add_post("/v1/records/{collection}", handle_create)
    app.router.add_patch("/v1/records/{collection}/{record_id}", handle_update)
    app.router.add_delete("/v1/records/{collection}/{record_id}", handle_delete)
    app.router.add_put("/v1/uploads/{key:.+}", handle_upload_put)
    app.router.add_get("/v1/uploads/{key:.+}", handle_upload_get)
    if backend is not None:
        async def close_db(_: web.Application) -> None:
            backend.close()

        app.on_cleanup.append(close_db)
    return app
