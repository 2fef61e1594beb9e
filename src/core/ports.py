"""Ports (interfaces) used by the bridge engine.

Ports define the minimal contracts for storage, platform clients and media
fetching so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, BinaryIO, Optional, Protocol

from core.models import NormalizedMessage, ParticipantInfo, ThreadMapping, UserProfile


class StoragePort(Protocol):
    """Durable record storage behind the Mapping Store."""

    def get_mapping(self, source_thread_id: str) -> Optional[ThreadMapping]:
        ...

    def get_mapping_by_topic(self, dest_topic_id: str) -> Optional[ThreadMapping]:
        ...

    def upsert_mapping(self, mapping: ThreadMapping) -> None:
        ...

    def delete_mapping(self, source_thread_id: str, dest_topic_id: Optional[str] = None) -> bool:
        ...

    def list_mappings(self) -> list[ThreadMapping]:
        ...

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    def upsert_user(self, profile: UserProfile) -> None:
        ...

    def list_users(self) -> list[UserProfile]:
        ...


class SourceClientPort(Protocol):
    """Operations consumed from the source platform (DM threads)."""

    def iter_messages(self) -> AsyncIterator[NormalizedMessage]:
        ...

    async def send_text(self, thread_id: str, text: str) -> Any:
        ...

    async def send_photo(self, thread_id: str, path: str, caption: str) -> Any:
        ...

    async def send_video(self, thread_id: str, path: str, caption: str) -> Any:
        ...

    async def fetch_participant(self, user_id: str) -> ParticipantInfo:
        ...


class DestinationClientPort(Protocol):
    """Operations consumed from the destination platform (forum topics).

    Implementations must raise ``ResourceMissingError`` when the topic is
    gone and ``TransientNetworkError`` for timeouts and rate limits.
    """

    async def create_sub_channel(self, parent_id: str, title: str, icon_color: int) -> str:
        ...

    async def send_text(self, parent_id: str, topic_id: str, text: str) -> int:
        ...

    async def send_photo(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        ...

    async def send_video(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        ...

    async def send_voice(self, parent_id: str, topic_id: str, path: str, duration: int) -> int:
        ...

    async def send_document(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        ...

    async def send_animation(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        ...

    async def pin_message(self, parent_id: str, message_id: int) -> None:
        ...

    async def set_reaction(self, parent_id: str, message_id: int, emoji: str) -> None:
        ...

    async def download_file(self, ref: Any, path: str) -> None:
        ...


class FileFetcherPort(Protocol):
    """Downloads a platform file handle (no public URL) to a local path."""

    async def download_file(self, ref: Any, path: str) -> None:
        ...


class HttpFetcherPort(Protocol):
    """Streams a remote URL into an open binary handle, returning bytes written."""

    async def fetch(self, url: str, handle: BinaryIO, max_bytes: Optional[int]) -> int:
        ...
