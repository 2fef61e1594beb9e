"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from telethon.tl.custom import Message

from core.models import Direction, MessageKind, NormalizedMessage


def topic_id_from_message(message: Message) -> Optional[int]:
    """Return the forum topic id a message was posted in, if any."""

    reply_to = getattr(message, "reply_to", None)
    if not reply_to or not getattr(reply_to, "forum_topic", False):
        return None
    top_id = getattr(reply_to, "reply_to_top_id", None)
    if top_id:
        return top_id
    return getattr(reply_to, "reply_to_msg_id", None)


def _sender_display_name(message: Message) -> str:
    sender = getattr(message, "sender", None)
    if sender is None:
        return str(getattr(message, "sender_id", "") or "Unknown")
    title = getattr(sender, "title", None)
    if title:
        return str(title)
    first = getattr(sender, "first_name", None)
    last = getattr(sender, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    username = getattr(sender, "username", None)
    if username:
        return f"@{username}"
    return str(getattr(sender, "id", "Unknown"))


def _kind_of(message: Message) -> MessageKind:
    # Order matters: stickers, gifs and voice notes are documents too.
    if getattr(message, "sticker", None):
        return MessageKind.STICKER
    if getattr(message, "gif", None):
        return MessageKind.ANIMATION
    if getattr(message, "voice", None) or getattr(message, "audio", None):
        return MessageKind.VOICE
    if getattr(message, "video", None) or getattr(message, "video_note", None):
        return MessageKind.VIDEO
    if getattr(message, "photo", None):
        return MessageKind.IMAGE
    if getattr(message, "document", None):
        return MessageKind.DOCUMENT
    if getattr(message, "raw_text", None):
        return MessageKind.TEXT
    return MessageKind.UNKNOWN


def build_message(message: Message) -> Optional[NormalizedMessage]:
    """Build a core NormalizedMessage from a Telethon forum-topic message.

    Returns None for messages outside a forum topic (General, private chats).
    """

    topic_id = topic_id_from_message(message)
    if topic_id is None:
        return None

    kind = _kind_of(message)
    text = message.raw_text or ""
    has_media = kind not in {MessageKind.TEXT, MessageKind.UNKNOWN}
    file = getattr(message, "file", None) if has_media else None
    sender = getattr(message, "sender", None)
    raw_media = getattr(message, "media", None)
    raw_kind = None
    if kind == MessageKind.UNKNOWN:
        raw_kind = type(raw_media).__name__ if raw_media is not None else "empty"

    return NormalizedMessage(
        kind=kind,
        thread_id=str(topic_id),
        sender_id=str(getattr(message, "sender_id", "") or ""),
        sender_display_name=_sender_display_name(message),
        direction=Direction.TO_SOURCE,
        timestamp=message.date or datetime.now(timezone.utc),
        text="" if has_media else text,
        caption=text if has_media else "",
        media_ref=message if has_media else None,
        duration=int(getattr(file, "duration", None) or 0) if file else 0,
        file_name=getattr(file, "name", None) if file else None,
        file_size=getattr(file, "size", None) if file else None,
        raw_kind=raw_kind,
        message_id=message.id,
        sender_username=getattr(sender, "username", None),
    )
