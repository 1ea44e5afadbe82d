"""Remote document-store adapter over HTTP.

Expects a JSON document service:
    GET    {base}/bibles            -> ["project-id", ...]
    GET    {base}/bibles/{key}      -> record, or 404
    PUT    {base}/bibles/{key}      <- record
    DELETE {base}/bibles/{key}

Requires: pip install 'storybible[remote]'
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from storybible.storage.base import Record

logger = logging.getLogger(__name__)


class RemoteStorage:
    """aiohttp client for a remote bible document store."""

    def __init__(self, base_url: str, timeout: float = 30, token: str = "") -> None:
        try:
            import aiohttp

            self._aiohttp = aiohttp
        except ImportError:
            raise ImportError(
                "aiohttp package required. Install with: pip install 'storybible[remote]'"
            )
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._session = None

    @property
    def name(self) -> str:
        return "remote"

    def _url(self, key: str | None = None) -> str:
        if key is None:
            return f"{self.base_url}/bibles"
        return f"{self.base_url}/bibles/{quote(key, safe='')}"

    def _client(self):
        if self._session is None or self._session.closed:
            self._session = self._aiohttp.ClientSession(
                timeout=self._timeout, headers=self._headers
            )
        return self._session

    async def get(self, key: str) -> Record | None:
        async with self._client().get(self._url(key)) as resp:
            if resp.status == 404:
                return None
            resp.raise_for_status()
            return await resp.json()

    async def set(self, key: str, record: Record) -> None:
        async with self._client().put(self._url(key), json=record) as resp:
            resp.raise_for_status()
        logger.debug("Stored bible %s remotely", key)

    async def delete(self, key: str) -> None:
        async with self._client().delete(self._url(key)) as resp:
            if resp.status == 404:
                return
            resp.raise_for_status()

    async def keys(self) -> list[str]:
        async with self._client().get(self._url()) as resp:
            resp.raise_for_status()
            return [str(k) for k in await resp.json()]

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
