from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Tuple
from urllib.parse import quote

import aiohttp

from .errors import UploadError


@dataclass(frozen=True)
class UploadResult:
    public_url: str


class InMemoryUploader:
    """Keeps uploaded blobs in memory and hands out stable URLs for them."""

    def __init__(self, base_url: str = "memory://uploads") -> None:
        self._base_url = base_url.rstrip("/")
        self._blobs: Dict[str, Tuple[str, bytes]] = {}

    async def upload(self, data: bytes, destination_key: str, *, content_type: str | None = None) -> UploadResult:
        if not destination_key:
            raise UploadError("destination key must not be empty")
        self._blobs[destination_key] = (content_type or "application/octet-stream", bytes(data))
        return UploadResult(public_url=f"{self._base_url}/{quote(destination_key)}")

    def get(self, destination_key: str) -> Tuple[str, bytes] | None:
        return self._blobs.get(destination_key)

    def __len__(self) -> int:
        return len(self._blobs)


class HttpUploader:
    """Uploads blobs to the ``PUT /v1/uploads/{key}`` endpoint of a store service."""

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

    async def upload(self, data: bytes, destination_key: str, *, content_type: str | None = None) -> UploadResult:
        url = f"{self._base_url}/v1/uploads/{quote(destination_key)}"
        headers = {"Content-Type": content_type or "application/octet-stream"}
        try:
            async with self._client().put(url, data=data, headers=headers) as response:
                payload = await response.json(content_type=None)
                if response.status != 200:
                    message = payload.get("message") if isinstance(payload, dict) else None
                    raise UploadError(message or f"upload failed with status {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise UploadError(f"upload of {destination_key} failed: {exc}") from exc
        public_url = payload.get("public_url") if isinstance(payload, dict) else None
        if not isinstance(public_url, str) or not public_url:
            raise UploadError("upload response is missing public_url")
        return UploadResult(public_url=public_url)

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
