"""Recovery Supervisor.

Wraps destination sends. When a topic is reported missing the mapping is
invalidated, a fresh topic is provisioned and the send is retried exactly
once. Anything else is returned to the caller untouched.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from core.errors import BridgeError, ResourceMissingError, StoreUnavailableError
from core.mapping_store import MappingStore
from core.models import DeliveryResult
from core.provisioner import TopicProvisioner

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RecoverySupervisor:
    """Active -> Invalidated -> re-provisioned -> Active, with one retry."""

    def __init__(self, store: MappingStore, provisioner: TopicProvisioner) -> None:
        self._store = store
        self._provisioner = provisioner

    async def send_with_recovery(
        self,
        source_thread_id: str,
        topic_id: str,
        send: Callable[[str], Awaitable[T]],
        participant_hint: Optional[str] = None,
    ) -> DeliveryResult:
        try:
            value = await send(topic_id)
        except ResourceMissingError:
            LOGGER.warning(
                "Topic %s for thread %s is missing. Recreating...",
                topic_id,
                source_thread_id,
            )
        except BridgeError as exc:
            # Timeouts, rate limits and rejections never trigger re-provisioning.
            return DeliveryResult(ok=False, topic_id=topic_id, attempts=1, error=exc)
        else:
            return DeliveryResult(ok=True, topic_id=topic_id, attempts=1, value=value)

        try:
            self._store.invalidate(source_thread_id, topic_id)
        except StoreUnavailableError:
            # The store remembers the dead topic, so provisioning below
            # still creates a new one.
            LOGGER.warning(
                "Stored mapping %s -> %s could not be removed, re-provisioning anyway",
                source_thread_id,
                topic_id,
            )

        try:
            new_topic_id = await self._provisioner.ensure_topic(source_thread_id, participant_hint)
        except BridgeError as exc:
            LOGGER.error("Could not re-provision thread %s: %s", source_thread_id, exc)
            return DeliveryResult(ok=False, topic_id=None, attempts=1, error=exc)

        try:
            value = await send(new_topic_id)
        except BridgeError as exc:
            LOGGER.error(
                "Send to recreated topic %s for thread %s failed, giving up: %s",
                new_topic_id,
                source_thread_id,
                exc,
            )
            return DeliveryResult(
                ok=False,
                topic_id=new_topic_id,
                attempts=2,
                reprovisioned=True,
                error=exc,
            )
        return DeliveryResult(
            ok=True,
            topic_id=new_topic_id,
            attempts=2,
            reprovisioned=True,
            value=value,
        )
