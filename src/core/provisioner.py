"""Topic Provisioner.

Returns the destination topic for a source thread, creating it at most once
even when many messages for a brand-new thread arrive together.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from core.config import BridgeConfig
from core.errors import BridgeError, ProvisioningError, StoreUnavailableError
from core.formatting import format_topic_title, format_welcome
from core.mapping_store import MappingStore
from core.models import MediaSource, MessageKind, ParticipantInfo, ThreadMapping, utc_now
from core.ports import DestinationClientPort, SourceClientPort
from core.single_flight import SingleFlight
from core.transfer import ContentTransferPipeline

LOGGER = logging.getLogger(__name__)


class TopicProvisioner:
    """Lazily creates one destination topic per source thread."""

    def __init__(
        self,
        store: MappingStore,
        destination: DestinationClientPort,
        config: BridgeConfig,
        source: Optional[SourceClientPort] = None,
        pipeline: Optional[ContentTransferPipeline] = None,
    ) -> None:
        self._store = store
        self._destination = destination
        self._config = config
        self._source = source
        self._pipeline = pipeline
        self._inflight: SingleFlight[str] = SingleFlight()

    def in_flight(self, source_thread_id: str) -> bool:
        return self._inflight.in_flight(source_thread_id)

    async def ensure_topic(self, source_thread_id: str, participant_hint: Optional[str] = None) -> str:
        """Return the topic id for ``source_thread_id``, creating it if needed.

        Fast path is a fresh cache hit with no I/O. Otherwise the work runs
        under the thread's single-flight token, so concurrent callers await
        the same creation. Failures propagate and nothing negative is cached.
        """

        mapping = self._store.cached(source_thread_id)
        if mapping is not None:
            return mapping.dest_topic_id
        return await self._inflight.run(
            source_thread_id,
            lambda: self._provision(source_thread_id, participant_hint),
        )

    async def _provision(self, source_thread_id: str, participant_hint: Optional[str]) -> str:
        pending = self._store.pending(source_thread_id)
        if pending is not None:
            # A previous write never reached storage; retry it before use.
            try:
                self._store.put(pending)
            except StoreUnavailableError:
                LOGGER.warning("Mapping for thread %s is still unpersisted", source_thread_id)
            return pending.dest_topic_id

        try:
            existing = self._store.get(source_thread_id)
        except StoreUnavailableError:
            existing = None
        if existing is not None:
            return existing.dest_topic_id

        participant = await self._participant_for(participant_hint)
        title = format_topic_title(participant, source_thread_id)
        try:
            topic_id = await self._destination.create_sub_channel(
                self._config.dest_chat_id,
                title,
                self._config.topic_icon_color,
            )
        except BridgeError:
            LOGGER.error("Failed to create topic %r for thread %s", title, source_thread_id)
            raise
        except Exception as exc:
            raise ProvisioningError(f"Topic creation failed for thread {source_thread_id}: {exc}") from exc

        topic_id = str(topic_id)
        # The avatar URL is recorded only once the picture is actually posted.
        mapping = ThreadMapping(source_thread_id=source_thread_id, dest_topic_id=topic_id)
        try:
            self._store.put(mapping)
        except StoreUnavailableError:
            # The topic exists; hold the mapping as pending rather than
            # creating a second topic on the next message.
            self._store.hold_pending(mapping)
        LOGGER.info("Created topic %r (ID: %s) for thread %s", title, topic_id, source_thread_id)

        await self._send_welcome(source_thread_id, topic_id, participant_hint, participant)
        return topic_id

    async def _participant_for(self, user_id: Optional[str]) -> Optional[ParticipantInfo]:
        """Participant metadata, bounded by ``metadata_timeout``.

        Cached profiles are enough for a title unless profile pictures are
        synced, which needs a fresh avatar URL from the source platform.
        """

        if not user_id:
            return None
        profile = self._store.get_user(user_id)
        cached = None
        if profile is not None and (profile.username or profile.full_name):
            cached = ParticipantInfo(user_id=user_id, username=profile.username, full_name=profile.full_name)
            if not self._config.profile_pic_sync:
                return cached
        if self._source is None:
            return cached
        try:
            return await asyncio.wait_for(
                self._source.fetch_participant(user_id),
                timeout=self._config.metadata_timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Participant lookup for %s timed out", user_id)
        except Exception:
            LOGGER.warning("Participant lookup for %s failed", user_id, exc_info=True)
        return cached

    async def _send_welcome(
        self,
        source_thread_id: str,
        topic_id: str,
        sender_id: Optional[str],
        participant: Optional[ParticipantInfo],
    ) -> None:
        if self._config.welcome_message:
            text = format_welcome(
                source_thread_id,
                sender_id,
                participant,
                self._store.get_user(sender_id) if sender_id else None,
                utc_now(),
            )
            try:
                message_id = await self._destination.send_text(self._config.dest_chat_id, topic_id, text)
                if self._config.pin_welcome and message_id:
                    await self._destination.pin_message(self._config.dest_chat_id, message_id)
            except BridgeError as exc:
                LOGGER.warning("Failed to send welcome message for thread %s: %s", source_thread_id, exc)

        if participant is not None and participant.profile_pic_url:
            await self.send_profile_picture(source_thread_id, topic_id, participant.profile_pic_url)

    async def send_profile_picture(
        self,
        source_thread_id: str,
        topic_id: str,
        profile_pic_url: str,
        updated: bool = False,
    ) -> bool:
        """Post the participant's avatar into the topic and remember its URL."""

        if not self._config.profile_pic_sync or self._pipeline is None:
            return False
        caption = "📸 Profile picture updated" if updated else "📸 Profile Picture"
        try:
            async with self._pipeline.staging(MediaSource(url=profile_pic_url), MessageKind.IMAGE) as staged:
                await self._destination.send_photo(self._config.dest_chat_id, topic_id, staged.path, caption)
        except BridgeError as exc:
            LOGGER.warning("Could not send profile picture for thread %s: %s", source_thread_id, exc)
            return False
        self._store.touch(source_thread_id, profile_pic_url=profile_pic_url)
        LOGGER.info("Sent %s profile picture for thread %s", "updated" if updated else "initial", source_thread_id)
        return True
