"""Content Transfer Pipeline.

Media is streamed into a unique file under the staging directory, handed to a
platform send, and removed on every exit path. Removal problems are logged
and never escalated.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar
from urllib.parse import urlparse

from core.config import TransferConfig
from core.errors import BridgeError, MediaTooLargeError, TransferError
from core.models import MediaSource, MessageKind, StagedFile
from core.ports import FileFetcherPort, HttpFetcherPort

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SUFFIXES = {
    MessageKind.IMAGE: ".jpg",
    MessageKind.VIDEO: ".mp4",
    MessageKind.VOICE: ".ogg",
    MessageKind.STICKER: ".webp",
    MessageKind.ANIMATION: ".mp4",
}


def _suffix_for(media: MediaSource, kind: MessageKind) -> str:
    for candidate in (media.file_name, urlparse(media.url).path if media.url else None):
        if candidate:
            _, ext = os.path.splitext(candidate)
            if ext and len(ext) <= 6:
                return ext.lower()
    return DEFAULT_SUFFIXES.get(kind, ".bin")


class ContentTransferPipeline:
    """Stage media on disk between the two platforms."""

    def __init__(
        self,
        config: TransferConfig,
        http: HttpFetcherPort,
        files: Optional[FileFetcherPort] = None,
    ) -> None:
        self._config = config
        self._http = http
        self._files = files

    @property
    def staging_dir(self) -> str:
        return self._config.staging_dir

    def _new_path(self, media: MediaSource, kind: MessageKind) -> str:
        os.makedirs(self._config.staging_dir, exist_ok=True)
        name = f"{kind.value}_{uuid.uuid4().hex}{_suffix_for(media, kind)}"
        return os.path.join(self._config.staging_dir, name)

    async def transfer(
        self,
        media: MediaSource,
        kind: MessageKind,
        files: Optional[FileFetcherPort] = None,
    ) -> StagedFile:
        """Download ``media`` into the staging area and return its handle.

        A URL is streamed through the HTTP fetcher; a platform file handle is
        downloaded by the client that produced it. A partial file is removed
        before the error propagates.
        """

        path = self._new_path(media, kind)
        limit = self._config.max_media_bytes
        try:
            if media.url:
                with open(path, "wb") as handle:
                    size = await self._http.fetch(media.url, handle, limit)
            elif media.ref is not None:
                fetcher = files or self._files
                if fetcher is None:
                    raise TransferError("No file fetcher configured for platform media")
                await fetcher.download_file(media.ref, path)
                if not os.path.exists(path):
                    raise TransferError(f"Download produced no file for {media.describe()}")
                size = os.path.getsize(path)
                if limit is not None and size > limit:
                    raise MediaTooLargeError(f"{media.describe()} is {size} bytes (limit {limit})")
            else:
                raise TransferError("Media has neither a URL nor a file reference")
        except BridgeError:
            self._remove(path)
            raise
        except OSError as exc:
            self._remove(path)
            raise TransferError(f"Could not stage {media.describe()}: {exc}") from exc
        except BaseException:
            self._remove(path)
            raise

        LOGGER.debug("Staged %s (%s bytes) at %s", kind.value, size, path)
        return StagedFile(path=path, kind=kind, size=size)

    async def deliver(self, staged: StagedFile, send: Callable[[str], Awaitable[T]]) -> T:
        """Run ``send`` with the staged path, then discard the file regardless."""

        try:
            return await send(staged.path)
        finally:
            self.discard(staged)

    @asynccontextmanager
    async def staging(
        self,
        media: MediaSource,
        kind: MessageKind,
        files: Optional[FileFetcherPort] = None,
    ) -> AsyncIterator[StagedFile]:
        """Scoped staging: the file exists only inside the ``async with`` body."""

        staged = await self.transfer(media, kind, files)
        try:
            yield staged
        finally:
            self.discard(staged)

    def discard(self, staged: StagedFile) -> None:
        self._remove(staged.path)

    def _remove(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError:
            LOGGER.warning("Could not clean up staging file %s", path, exc_info=True)

    def purge(self) -> int:
        """Remove every leftover file from the staging directory."""

        directory = self._config.staging_dir
        if not os.path.isdir(directory):
            return 0
        removed = 0
        for name in os.listdir(directory):
            path = os.path.join(directory, name)
            if os.path.isfile(path):
                self._remove(path)
                removed += 1
        return removed
