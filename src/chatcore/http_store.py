from __future__ import annotations

import asyncio
from typing import Any, List, Mapping
from urllib.parse import quote

import aiohttp

from .errors import ChatError, NotFoundError, StoreError, ValidationError
from .filters import OrderBy


def _error_for(status: int, payload: Any) -> ChatError:
    message = None
    if isinstance(payload, dict):
        message = payload.get("message")
    message = message or f"store request failed with status {status}"
    if status == 400:
        return ValidationError(message)
    if status == 404:
        return NotFoundError(message)
    return StoreError(message)


class HttpRecordStore:
    """Client for a document store exposed over the ``/v1/records`` REST shape."""

    def __init__(
        self,
        base_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    def _url(self, collection: str, *parts: str) -> str:
        path = "/".join(quote(part, safe="") for part in (collection, *parts))
        return f"{self._base_url}/v1/records/{path}"

    async def _request(self, method: str, url: str, payload: Any = None) -> Any:
        try:
            async with self._client().request(method, url, json=payload) as response:
                body = await response.json(content_type=None)
                if response.status != 200:
                    raise _error_for(response.status, body)
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise StoreError(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            if isinstance(exc, ChatError):
                raise
            raise StoreError(f"{method} {url} returned invalid JSON") from exc

    async def list(
        self,
        collection: str,
        where: Mapping[str, Any] | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> List[dict]:
        payload = {
            "where": dict(where or {}),
            "order_by": list(order_by) if order_by else None,
            "limit": limit,
        }
        body = await self._request("POST", self._url(collection, "list"), payload)
        return list(body.get("records", []))

    async def create(self, collection: str, record: Mapping[str, Any]) -> dict:
        body = await self._request("POST", self._url(collection), dict(record))
        return body["record"]

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> dict:
        body = await self._request("PATCH", self._url(collection, record_id), dict(patch))
        return body["record"]

    async def delete(self, collection: str, record_id: str) -> None:
        await self._request("DELETE", self._url(collection, record_id))

    async def create_if_absent(
        self, collection: str, record: Mapping[str, Any], key: Mapping[str, Any]
    ) -> tuple[dict, bool]:
        body = await self._request(
            "POST",
            self._url(collection, "create_if_absent"),
            {"record": dict(record), "key": dict(key)},
        )
        return body["record"], bool(body["created"])

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
