"""Telegram destination adapter.

Implements the core DestinationClientPort on top of Telethon, posting into
forum topics of a single supergroup. Telethon errors are classified here so
the core never looks at raw RPC error codes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from telethon import TelegramClient, errors, functions, types

from core.errors import (
    BridgeError,
    DeliveryRejectedError,
    ProvisioningError,
    ResourceMissingError,
    TransferError,
    TransientNetworkError,
)

LOGGER = logging.getLogger(__name__)

# RPC error codes meaning the topic (or the whole forum) is gone.
MISSING_TOPIC_CODES = frozenset(
    {
        "TOPIC_DELETED",
        "TOPIC_ID_INVALID",
        "CHANNEL_INVALID",
        "CHANNEL_PRIVATE",
        "CHAT_ID_INVALID",
        "PEER_ID_INVALID",
    }
)

TRANSIENT_CODES = frozenset({"TIMEOUT", "RPC_CALL_FAIL", "RPC_MCGET_FAIL", "WORKER_BUSY_TOO_LONG_RETRY"})


def _rpc_code(exc: errors.RPCError) -> str:
    # Generated subclasses carry the code in their class name, generic ones in .message.
    name = type(exc).__name__
    if name.endswith("Error") and name not in {"RPCError", "BadRequestError", "ForbiddenError"}:
        derived = "".join(f"_{ch}" if ch.isupper() else ch.upper() for ch in name[: -len("Error")])
        code = derived.lstrip("_")
        if code in MISSING_TOPIC_CODES or code in TRANSIENT_CODES:
            return code
    return str(getattr(exc, "message", "") or "").upper()


def classify_error(exc: BaseException, action: str) -> BridgeError:
    """Map a Telethon/network exception onto the bridge error taxonomy."""

    if isinstance(exc, BridgeError):
        return exc
    if isinstance(exc, errors.FloodWaitError):
        return TransientNetworkError(f"{action}: flood wait {exc.seconds}s", retry_after=float(exc.seconds))
    if isinstance(exc, errors.RPCError):
        code = _rpc_code(exc)
        if code in MISSING_TOPIC_CODES:
            return ResourceMissingError(f"{action}: {code}")
        if isinstance(exc, errors.ServerError) or code in TRANSIENT_CODES:
            return TransientNetworkError(f"{action}: {code or exc}")
        return DeliveryRejectedError(f"{action}: {code or exc}")
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, OSError)):
        return TransientNetworkError(f"{action}: {exc}")
    return DeliveryRejectedError(f"{action}: {exc}")


def _topic_id_from_updates(updates: Any) -> Optional[int]:
    for update in getattr(updates, "updates", None) or []:
        if isinstance(update, types.UpdateMessageID):
            return update.id
        if isinstance(update, (types.UpdateNewChannelMessage, types.UpdateNewMessage)):
            return update.message.id
    return None


class TelegramDestinationClient:
    """Destination adapter that mirrors conversations into forum topics."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client
        self._entities: Dict[str, Any] = {}

    async def _entity(self, parent_id: str) -> Any:
        entity = self._entities.get(parent_id)
        if entity is None:
            peer = int(parent_id) if parent_id.lstrip("-").isdigit() else parent_id
            entity = await self._call("resolve chat", self._client.get_input_entity(peer))
            self._entities[parent_id] = entity
        return entity

    async def _call(self, action: str, awaitable):
        try:
            return await awaitable
        except BridgeError:
            raise
        except Exception as exc:
            # Telethon raises ValueError/TypeError for peers it cannot resolve.
            raise classify_error(exc, action) from exc

    async def create_sub_channel(self, parent_id: str, title: str, icon_color: int) -> str:
        entity = await self._entity(parent_id)
        request = functions.channels.CreateForumTopicRequest(
            channel=entity,
            title=title[:128],
            icon_color=icon_color,
        )
        try:
            updates = await self._client(request)
        except errors.RPCError as exc:
            error = classify_error(exc, "create topic")
            if isinstance(error, ResourceMissingError):
                # The forum itself is unusable; recreating would loop.
                raise ProvisioningError(str(error)) from exc
            raise error from exc
        except (asyncio.TimeoutError, ConnectionError, OSError) as exc:
            raise classify_error(exc, "create topic") from exc
        topic_id = _topic_id_from_updates(updates)
        if topic_id is None:
            raise ProvisioningError(f"No topic id in CreateForumTopic response for {title!r}")
        return str(topic_id)

    async def send_text(self, parent_id: str, topic_id: str, text: str) -> int:
        entity = await self._entity(parent_id)
        message = await self._call(
            "send text",
            self._client.send_message(
                entity,
                text,
                reply_to=int(topic_id),
                parse_mode="html",
                link_preview=False,
            ),
        )
        return message.id

    async def _send_file(self, parent_id: str, topic_id: str, path: str, action: str, **kwargs) -> int:
        entity = await self._entity(parent_id)
        message = await self._call(
            action,
            self._client.send_file(entity, path, reply_to=int(topic_id), parse_mode="html", **kwargs),
        )
        LOGGER.debug("Sent %s to topic %s", action, topic_id)
        return message.id

    async def send_photo(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._send_file(parent_id, topic_id, path, "send photo", caption=caption or None)

    async def send_video(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._send_file(
            parent_id, topic_id, path, "send video", caption=caption or None, supports_streaming=True
        )

    async def send_voice(self, parent_id: str, topic_id: str, path: str, duration: int) -> int:
        return await self._send_file(
            parent_id,
            topic_id,
            path,
            "send voice",
            voice_note=True,
            attributes=[types.DocumentAttributeAudio(duration=int(duration or 0), voice=True)],
        )

    async def send_document(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._send_file(
            parent_id, topic_id, path, "send document", caption=caption or None, force_document=True
        )

    async def send_animation(self, parent_id: str, topic_id: str, path: str, caption: str) -> int:
        return await self._send_file(
            parent_id,
            topic_id,
            path,
            "send animation",
            caption=caption or None,
            attributes=[types.DocumentAttributeAnimated()],
        )

    async def pin_message(self, parent_id: str, message_id: int) -> None:
        entity = await self._entity(parent_id)
        await self._call("pin message", self._client.pin_message(entity, message_id, notify=False))

    async def set_reaction(self, parent_id: str, message_id: int, emoji: str) -> None:
        entity = await self._entity(parent_id)
        await self._call(
            "set reaction",
            self._client(
                functions.messages.SendReactionRequest(
                    peer=entity,
                    msg_id=message_id,
                    reaction=[types.ReactionEmoji(emoticon=emoji)],
                )
            ),
        )

    async def download_file(self, ref: Any, path: str) -> None:
        """Download a Telethon message's media to ``path``."""

        result = await self._call("download media", self._client.download_media(ref, file=path))
        if result is None:
            raise TransferError("Message has no downloadable media")
