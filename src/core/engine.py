"""Bridge Engine facade.

This module is integration-agnostic. It wires filtering, provisioning,
translation, transfer and recovery into two directional pipelines and only
relies on ports for storage and platform access.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from core.config import BridgeConfig
from core.errors import BridgeError, DeliveryRejectedError, TransferError
from core.filters import FilterSet, matching_rule
from core.mapping_store import MappingStore
from core.models import (
    BridgeResult,
    DeliveryResult,
    DeliveryStatus,
    DestinationAction,
    DestinationSendOp,
    MessageKind,
    NormalizedMessage,
    SourceAction,
    SourceSendOp,
)
from core.ports import DestinationClientPort, SourceClientPort
from core.provisioner import TopicProvisioner
from core.recovery import RecoverySupervisor
from core.transfer import ContentTransferPipeline
from core.translator import MessageTranslator

LOGGER = logging.getLogger(__name__)

DESTINATION_MEDIA_KINDS: Dict[DestinationAction, MessageKind] = {
    DestinationAction.PHOTO: MessageKind.IMAGE,
    DestinationAction.VIDEO: MessageKind.VIDEO,
    DestinationAction.VOICE: MessageKind.VOICE,
    DestinationAction.DOCUMENT: MessageKind.DOCUMENT,
    DestinationAction.ANIMATION: MessageKind.ANIMATION,
}

SOURCE_MEDIA_KINDS: Dict[SourceAction, MessageKind] = {
    SourceAction.PHOTO: MessageKind.IMAGE,
    SourceAction.VIDEO: MessageKind.VIDEO,
}


def _status(sent: int, total: int) -> DeliveryStatus:
    if sent == total:
        return DeliveryStatus.DELIVERED
    if sent:
        return DeliveryStatus.PARTIAL
    return DeliveryStatus.FAILED


class BridgeEngine:
    """Orchestrates both directions of the bridge.

    ``forward`` carries source messages into destination topics and
    ``receive`` carries destination topic messages back to source threads.
    Neither raises for a single message; failures come back as a
    ``BridgeResult`` and are logged.
    """

    def __init__(
        self,
        store: MappingStore,
        destination: DestinationClientPort,
        source: SourceClientPort,
        translator: MessageTranslator,
        pipeline: ContentTransferPipeline,
        config: BridgeConfig,
        filters: Optional[FilterSet] = None,
        provisioner: Optional[TopicProvisioner] = None,
        supervisor: Optional[RecoverySupervisor] = None,
    ) -> None:
        self._store = store
        self._destination = destination
        self._source = source
        self._translator = translator
        self._pipeline = pipeline
        self._config = config
        self._filters = filters or FilterSet()
        self._provisioner = provisioner or TopicProvisioner(store, destination, config, source, pipeline)
        self._supervisor = supervisor or RecoverySupervisor(store, self._provisioner)

    @property
    def provisioner(self) -> TopicProvisioner:
        return self._provisioner

    def start(self) -> int:
        """Warm the mapping cache from storage; returns the mapping count."""

        return self._store.warm()

    def shutdown(self) -> None:
        removed = self._pipeline.purge()
        if removed:
            LOGGER.info("Removed %s leftover staging files", removed)

    # -- source -> destination -------------------------------------------

    async def forward(self, message: NormalizedMessage) -> BridgeResult:
        try:
            return await self._forward(message)
        except Exception as exc:
            LOGGER.exception("Error while forwarding message for thread %s", message.thread_id)
            return BridgeResult(status=DeliveryStatus.FAILED, thread_id=message.thread_id, error=exc)

    async def _forward(self, message: NormalizedMessage) -> BridgeResult:
        thread_id = message.thread_id
        reason = matching_rule(message, self._filters)
        if reason:
            LOGGER.info("Blocked message from %s in thread %s (%s)", message.sender_id, thread_id, reason)
            return BridgeResult(status=DeliveryStatus.BLOCKED, thread_id=thread_id)

        self._store.record_user_activity(message.sender_id, message.sender_username)

        try:
            topic_id = await self._provisioner.ensure_topic(thread_id, message.sender_id)
        except BridgeError as exc:
            LOGGER.error("Could not get/create topic for thread %s: %s", thread_id, exc)
            return BridgeResult(status=DeliveryStatus.FAILED, thread_id=thread_id, error=exc)

        await self._sync_profile_picture(message, topic_id)

        ops = self._translator.to_destination(message)
        sent = 0
        last_error: Optional[Exception] = None
        for op in ops:
            result = await self._deliver_to_destination(message, topic_id, op)
            if result.topic_id:
                topic_id = result.topic_id
            if result.ok:
                sent += 1
            else:
                last_error = result.error
                LOGGER.error("Failed to forward %s to thread %s topic: %s", op.action.value, thread_id, result.error)

        if sent:
            self._store.touch(thread_id)
        return BridgeResult(
            status=_status(sent, len(ops)),
            thread_id=thread_id,
            topic_id=topic_id,
            sent=sent,
            error=last_error,
        )

    async def _sync_profile_picture(self, message: NormalizedMessage, topic_id: str) -> None:
        url = message.sender_avatar_url
        if not self._config.profile_pic_sync or not url:
            return
        mapping = self._store.cached(message.thread_id)
        if mapping is None or mapping.profile_pic_url == url:
            return
        await self._provisioner.send_profile_picture(
            message.thread_id,
            topic_id,
            url,
            updated=mapping.profile_pic_url is not None,
        )

    def _send_text(self, text: str) -> Callable[[str], Awaitable[int]]:
        return lambda topic_id: self._destination.send_text(self._config.dest_chat_id, topic_id, text)

    def _send_media(self, op: DestinationSendOp, path: str) -> Callable[[str], Awaitable[int]]:
        parent = self._config.dest_chat_id
        destination = self._destination

        async def send(topic_id: str) -> int:
            if op.action == DestinationAction.PHOTO:
                return await destination.send_photo(parent, topic_id, path, op.caption)
            if op.action == DestinationAction.VIDEO:
                return await destination.send_video(parent, topic_id, path, op.caption)
            if op.action == DestinationAction.VOICE:
                return await destination.send_voice(parent, topic_id, path, op.duration)
            if op.action == DestinationAction.DOCUMENT:
                return await destination.send_document(parent, topic_id, path, op.caption)
            return await destination.send_animation(parent, topic_id, path, op.caption)

        return send

    async def _deliver_to_destination(
        self,
        message: NormalizedMessage,
        topic_id: str,
        op: DestinationSendOp,
    ) -> DeliveryResult:
        recover = self._supervisor.send_with_recovery
        if op.action == DestinationAction.TEXT:
            return await recover(message.thread_id, topic_id, self._send_text(op.text), message.sender_id)

        try:
            # The staged file outlives the one recovery retry.
            async with self._pipeline.staging(op.media, DESTINATION_MEDIA_KINDS[op.action]) as staged:
                result = await recover(
                    message.thread_id,
                    topic_id,
                    self._send_media(op, staged.path),
                    message.sender_id,
                )
        except BridgeError as exc:
            LOGGER.warning("Could not stage %s for thread %s: %s", op.action.value, message.thread_id, exc)
            result = DeliveryResult(ok=False, topic_id=topic_id, attempts=0, error=exc)

        if result.ok or not op.fallback_text:
            return result
        if not isinstance(result.error, (TransferError, DeliveryRejectedError)):
            return result
        LOGGER.info("Sending text fallback for %s in thread %s", op.action.value, message.thread_id)
        return await recover(
            message.thread_id,
            result.topic_id or topic_id,
            self._send_text(op.fallback_text),
            message.sender_id,
        )

    # -- destination -> source -------------------------------------------

    async def receive(self, event: NormalizedMessage) -> BridgeResult:
        try:
            return await self._receive(event)
        except Exception as exc:
            LOGGER.exception("Error while handling message from topic %s", event.thread_id)
            return BridgeResult(status=DeliveryStatus.FAILED, topic_id=event.thread_id, error=exc)

    async def _receive(self, event: NormalizedMessage) -> BridgeResult:
        topic_id = event.thread_id
        thread_id = self._store.find_thread_by_topic(topic_id)
        if thread_id is None:
            LOGGER.warning("Could not find source thread for topic %s", topic_id)
            return BridgeResult(status=DeliveryStatus.UNMAPPED, topic_id=topic_id)

        reason = matching_rule(event, self._filters)
        if reason:
            LOGGER.info("Blocked reply from topic %s (%s)", topic_id, reason)
            return BridgeResult(status=DeliveryStatus.BLOCKED, thread_id=thread_id, topic_id=topic_id)

        ops = self._translator.to_source(event)
        sent = 0
        last_error: Optional[Exception] = None
        for op in ops:
            try:
                await self._deliver_to_source(thread_id, op)
            except Exception as exc:
                LOGGER.error("Failed to send %s to thread %s: %s", op.action.value, thread_id, exc)
                last_error = exc
            else:
                sent += 1

        if sent:
            self._store.touch(thread_id)
            LOGGER.info("Sent %s item(s) from topic %s to thread %s", sent, topic_id, thread_id)
        return BridgeResult(
            status=_status(sent, len(ops)),
            thread_id=thread_id,
            topic_id=topic_id,
            sent=sent,
            error=last_error,
        )

    async def _deliver_to_source(self, thread_id: str, op: SourceSendOp) -> None:
        if op.action == SourceAction.TEXT:
            await self._source.send_text(thread_id, op.text)
            return

        try:
            async with self._pipeline.staging(
                op.media,
                SOURCE_MEDIA_KINDS[op.action],
                files=self._destination,
            ) as staged:
                if op.action == SourceAction.PHOTO:
                    await self._source.send_photo(thread_id, staged.path, op.caption)
                else:
                    await self._source.send_video(thread_id, staged.path, op.caption)
        except Exception as exc:
            if not op.fallback_text:
                raise
            LOGGER.warning("Media send to thread %s failed (%s), sending text instead", thread_id, exc)
            await self._source.send_text(thread_id, op.fallback_text)
