from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, BinaryIO, Optional

from core.errors import ResourceMissingError, StoreUnavailableError
from core.models import NormalizedMessage, ParticipantInfo, ThreadMapping, UserProfile


class FakeStorage:
    def __init__(self) -> None:
        self.mappings: dict[str, ThreadMapping] = {}
        self.users: dict[str, UserProfile] = {}
        self.fail_reads = False
        self.fail_writes = False

    def _read(self) -> None:
        if self.fail_reads:
            raise StoreUnavailableError("read failed")

    def _write(self) -> None:
        if self.fail_writes:
            raise StoreUnavailableError("write failed")

    def get_mapping(self, source_thread_id: str) -> Optional[ThreadMapping]:
        self._read()
        return self.mappings.get(source_thread_id)

    def get_mapping_by_topic(self, dest_topic_id: str) -> Optional[ThreadMapping]:
        self._read()
        for mapping in self.mappings.values():
            if mapping.dest_topic_id == dest_topic_id:
                return mapping
        return None

    def upsert_mapping(self, mapping: ThreadMapping) -> None:
        self._write()
        for thread_id, existing in list(self.mappings.items()):
            if existing.dest_topic_id == mapping.dest_topic_id and thread_id != mapping.source_thread_id:
                del self.mappings[thread_id]
        self.mappings[mapping.source_thread_id] = mapping

    def delete_mapping(self, source_thread_id: str, dest_topic_id: Optional[str] = None) -> bool:
        self._write()
        existing = self.mappings.get(source_thread_id)
        if existing is None:
            return False
        if dest_topic_id is not None and existing.dest_topic_id != dest_topic_id:
            return False
        del self.mappings[source_thread_id]
        return True

    def list_mappings(self) -> list[ThreadMapping]:
        self._read()
        return list(self.mappings.values())

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        self._read()
        return self.users.get(user_id)

    def upsert_user(self, profile: UserProfile) -> None:
        self._write()
        self.users[profile.user_id] = profile

    def list_users(self) -> list[UserProfile]:
        self._read()
        return list(self.users.values())


class FakeDestination:
    """In-memory forum: topics are numbered from ``first_topic_id``."""

    def __init__(self, first_topic_id: int = 100) -> None:
        self.next_topic_id = first_topic_id
        self.created: list[tuple[str, str]] = []
        self.sent: list[tuple[str, str, str]] = []
        self.pinned: list[int] = []
        self.reactions: list[tuple[int, str]] = []
        self.missing: set[str] = set()
        self.fail_create: Optional[BaseException] = None
        self.fail_sends: dict[str, BaseException] = {}
        self.file_bytes = b"telegram-file"
        self._message_id = 0

    async def create_sub_channel(self, parent_id: str, title: str, icon_color: int) -> str:
        # Yield so concurrent callers get a chance to interleave.
        await asyncio.sleep(0)
        if self.fail_create is not None:
            raise self.fail_create
        topic_id = str(self.next_topic_id)
        self.next_topic_id += 1
        self.created.append((topic_id, title))
        return topic_id

    async def _record(self, action: str, topic_id: str, payload: str) -> int:
        await asyncio.sleep(0)
        if topic_id in self.missing:
            raise ResourceMissingError(f"{action}: TOPIC_DELETED")
        if action in self.fail_sends:
            raise self.fail_sends[action]
        self.sent.append((action, topic_id, payload))
        self._message_id += 1
        return self._message_id

    async def send_text(self, parent_id: str, topic_id: str, text: str) -> int:
        return await self._record("text", topic_id, text)

    async def send_photo(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._record("photo", topic_id, caption)

    async def send_video(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._record("video", topic_id, caption)

    async def send_voice(self, parent_id: str, topic_id: str, path: str, duration: int) -> int:
        return await self._record("voice", topic_id, str(duration))

    async def send_document(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._record("document", topic_id, caption)

    async def send_animation(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._record("animation", topic_id, caption)

    async def pin_message(self, parent_id: str, message_id: int) -> None:
        self.pinned.append(message_id)

    async def set_reaction(self, parent_id: str, message_id: int, emoji: str) -> None:
        self.reactions.append((message_id, emoji))

    async def download_file(self, ref: Any, path: str) -> None:
        with open(path, "wb") as handle:
            handle.write(self.file_bytes)


class FakeSource:
    def __init__(self, messages: Optional[list[NormalizedMessage]] = None) -> None:
        self.messages = messages or []
        self.sent: list[tuple[str, str, str]] = []
        self.participants: dict[str, ParticipantInfo] = {}
        self.participant_delay = 0.0
        self.fail_media: Optional[BaseException] = None

    async def iter_messages(self) -> AsyncIterator[NormalizedMessage]:
        for message in self.messages:
            yield message

    async def send_text(self, thread_id: str, text: str) -> None:
        self.sent.append(("text", thread_id, text))

    async def send_photo(self, thread_id: str, path: str, caption: str) -> None:
        if self.fail_media is not None:
            raise self.fail_media
        self.sent.append(("photo", thread_id, caption))

    async def send_video(self, thread_id: str, path: str, caption: str) -> None:
        if self.fail_media is not None:
            raise self.fail_media
        self.sent.append(("video", thread_id, caption))

    async def fetch_participant(self, user_id: str) -> ParticipantInfo:
        if self.participant_delay:
            await asyncio.sleep(self.participant_delay)
        participant = self.participants.get(user_id)
        if participant is None:
            raise LookupError(user_id)
        return participant


class FakeHttp:
    def __init__(self, payload: bytes = b"remote-bytes") -> None:
        self.payload = payload
        self.urls: list[str] = []
        self.fail: Optional[BaseException] = None
        self.delays: dict[str, float] = {}

    async def fetch(self, url: str, handle: BinaryIO, max_bytes: Optional[int]) -> int:
        self.urls.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])
        # Write part of the payload first so failures leave a partial file.
        handle.write(self.payload[:4])
        if self.fail is not None:
            raise self.fail
        handle.write(self.payload[4:])
        return len(self.payload)
