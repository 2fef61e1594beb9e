"""HTTP media fetcher.

Streams remote media into a staging file with aiohttp so large videos never
sit in memory. HTTP and network failures are mapped to the bridge taxonomy.
"""

from __future__ import annotations

import asyncio
import logging
from typing import BinaryIO, Optional

import aiohttp

from core.errors import MediaTooLargeError, TransferError, TransientNetworkError

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class AiohttpFetcher:
    """HttpFetcherPort backed by a shared ``aiohttp.ClientSession``."""

    def __init__(self, timeout: float = 60.0, chunk_size: int = CHUNK_SIZE) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._chunk_size = chunk_size
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def fetch(self, url: str, handle: BinaryIO, max_bytes: Optional[int]) -> int:
        """Stream ``url`` into ``handle`` and return the number of bytes written."""

        session = self._get_session()
        written = 0
        try:
            async with session.get(url) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise TransientNetworkError(f"GET {url} -> HTTP {resp.status}")
                if resp.status != 200:
                    raise TransferError(f"GET {url} -> HTTP {resp.status}")
                length = resp.headers.get("Content-Length")
                if max_bytes is not None and length and length.isdigit() and int(length) > max_bytes:
                    raise MediaTooLargeError(f"Skipping oversized file ({length} B): {url}")
                async for chunk in resp.content.iter_chunked(self._chunk_size):
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise MediaTooLargeError(f"Skipping oversized file (>{max_bytes} B): {url}")
                    handle.write(chunk)
        except asyncio.TimeoutError as exc:
            raise TransientNetworkError(f"GET {url} timed out") from exc
        except aiohttp.ClientError as exc:
            raise TransientNetworkError(f"GET {url} failed: {exc}") from exc
        LOGGER.debug("Fetched %s bytes from %s", written, url)
        return written
