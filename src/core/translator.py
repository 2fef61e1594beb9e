"""Message translation between the source and destination type systems.

Each direction has one handler per ``MessageKind`` in a dispatch table that is
checked for exhaustiveness at import time, so a new kind without a handler
fails loudly instead of being silently dropped.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, List, Mapping, Optional

from core.config import TranslatorConfig
from core.errors import UnsupportedMessageKindError
from core.formatting import escape_clipped, format_attributed, truncate
from core.models import (
    DestinationAction,
    DestinationSendOp,
    MediaSource,
    MessageKind,
    NormalizedMessage,
    SourceAction,
    SourceSendOp,
)

LOGGER = logging.getLogger(__name__)

KIND_LABELS: Dict[MessageKind, str] = {
    MessageKind.TEXT: "💬 [Message]",
    MessageKind.IMAGE: "📷 [Photo]",
    MessageKind.VIDEO: "🎥 [Video]",
    MessageKind.VOICE: "🎤 [Voice Message]",
    MessageKind.DOCUMENT: "📎 [Document]",
    MessageKind.STICKER: "🎭 [Sticker]",
    MessageKind.ANIMATION: "🎬 [Animation/GIF]",
    MessageKind.SHARED_CONTENT: "🔗 [Shared content]",
    MessageKind.REACTION: "❤️ [Reaction]",
    MessageKind.UNKNOWN: "[Unsupported message]",
}

SHARED_EMOJI = {
    "story": "📖",
    "reel": "🎬",
    "clip": "🎬",
    "link": "🔗",
    "post": "🖼️",
}


def describe(message: NormalizedMessage) -> str:
    """Textual stand-in for a message that cannot be rendered natively."""

    detail = message.caption or message.text
    if message.kind == MessageKind.UNKNOWN:
        return f"[{message.raw_kind or 'unknown'}] {detail or 'Unsupported message type'}"
    if message.kind == MessageKind.DOCUMENT and message.file_name:
        detail = f"{message.file_name}\n{detail}".strip()
    label = KIND_LABELS[message.kind]
    return f"{label} {detail}".strip()


def _shared_header(message: NormalizedMessage) -> str:
    label = message.shared_label or "Post"
    emoji = SHARED_EMOJI.get(label.lower(), "🔗")
    body = message.text or message.caption or f"Shared a {label.lower()}"
    return f"{emoji} {label}: {body}"


def _format_size(size: Optional[int]) -> str:
    if not size:
        return ""
    return f" ({size / 1024:.2f} KB)"


class MessageTranslator:
    """Pure mapping from ``NormalizedMessage`` to per-platform send operations."""

    def __init__(self, config: Optional[TranslatorConfig] = None) -> None:
        self._config = config or TranslatorConfig()

    # -- source -> destination -------------------------------------------

    def to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        handler = DESTINATION_HANDLERS[message.kind]
        try:
            ops = handler(self, message)
        except UnsupportedMessageKindError as exc:
            LOGGER.debug("Degrading %s to text for destination: %s", message.kind.value, exc)
            ops = [self._dest_text_op(message, describe(message))]
        return ops

    def _dest_text(self, message: NormalizedMessage, text: str) -> str:
        if self._config.attribute_sender:
            return format_attributed(message.sender_display_name, text, self._config.max_text_chars)
        return escape_clipped(text, self._config.max_text_chars)

    def _dest_caption(self, message: NormalizedMessage, caption: str) -> str:
        if self._config.attribute_sender:
            return format_attributed(message.sender_display_name, caption, self._config.max_caption_chars)
        return escape_clipped(caption, self._config.max_caption_chars)

    def _dest_text_op(self, message: NormalizedMessage, text: str) -> DestinationSendOp:
        return DestinationSendOp(action=DestinationAction.TEXT, text=self._dest_text(message, text))

    def _dest_media_op(
        self,
        message: NormalizedMessage,
        action: DestinationAction,
        caption: str,
        media: Optional[MediaSource] = None,
    ) -> DestinationSendOp:
        media = media or message.media()
        if media is None:
            raise UnsupportedMessageKindError(f"{message.kind.value} without media")
        return DestinationSendOp(
            action=action,
            media=media,
            caption=self._dest_caption(message, caption),
            duration=message.duration,
            fallback_text=self._dest_text(message, describe(message)),
        )

    def _carousel_to_destination(self, message: NormalizedMessage, caption: str) -> List[DestinationSendOp]:
        ops: List[DestinationSendOp] = []
        for index, item in enumerate(message.items):
            action = DestinationAction.VIDEO if item.kind == MessageKind.VIDEO else DestinationAction.PHOTO
            label = KIND_LABELS[item.kind if item.kind in KIND_LABELS else MessageKind.IMAGE]
            # Only the first item carries the caption; the rest are bare.
            item_caption = caption if index == 0 else ""
            ops.append(
                DestinationSendOp(
                    action=action,
                    media=MediaSource(url=item.url),
                    caption=self._dest_caption(message, item_caption),
                    fallback_text=self._dest_text(message, f"{label} {item_caption}".strip()),
                )
            )
        return ops

    def _text_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        return [self._dest_text_op(message, message.text or "(empty message)")]

    def _image_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        caption = message.caption or message.text
        if message.items:
            return self._carousel_to_destination(message, caption)
        return [self._dest_media_op(message, DestinationAction.PHOTO, caption)]

    def _video_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        caption = message.caption or message.text
        if message.items:
            return self._carousel_to_destination(message, caption)
        return [self._dest_media_op(message, DestinationAction.VIDEO, caption)]

    def _voice_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        return [self._dest_media_op(message, DestinationAction.VOICE, message.caption)]

    def _document_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        return [self._dest_media_op(message, DestinationAction.DOCUMENT, message.caption or message.text)]

    def _sticker_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        # No native sticker upload from a URL; an image with a label is closest.
        return [self._dest_media_op(message, DestinationAction.PHOTO, "🎭 Sticker")]

    def _animation_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        return [self._dest_media_op(message, DestinationAction.ANIMATION, message.caption)]

    def _shared_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        header = _shared_header(message)
        if message.link_url:
            header = f"{header}\n🔗 {message.link_url}"
        if message.items:
            return self._carousel_to_destination(message, header)
        if message.media() is not None:
            return [self._dest_media_op(message, DestinationAction.PHOTO, header)]
        return [self._dest_text_op(message, header)]

    def _reaction_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        if message.text:
            return [self._dest_text_op(message, f"{message.text} Reacted to your message")]
        return [self._dest_text_op(message, "❤️ Liked your message")]

    def _unknown_to_destination(self, message: NormalizedMessage) -> List[DestinationSendOp]:
        return [self._dest_text_op(message, describe(message))]

    # -- destination -> source -------------------------------------------

    def to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        handler = SOURCE_HANDLERS[message.kind]
        try:
            ops = handler(self, message)
        except UnsupportedMessageKindError as exc:
            LOGGER.debug("Degrading %s to text for source: %s", message.kind.value, exc)
            ops = [self._source_text_op(message, describe(message))]
        return ops

    def _source_text(self, message: NormalizedMessage, text: str) -> str:
        if self._config.prefix_replies_with_sender and message.sender_display_name:
            text = f"{message.sender_display_name}: {text}"
        return truncate(text, self._config.max_source_text_chars)

    def _source_text_op(self, message: NormalizedMessage, text: str) -> SourceSendOp:
        return SourceSendOp(action=SourceAction.TEXT, text=self._source_text(message, text))

    def _source_media_op(self, message: NormalizedMessage, action: SourceAction, caption: str) -> SourceSendOp:
        media = message.media()
        if media is None:
            raise UnsupportedMessageKindError(f"{message.kind.value} without media")
        return SourceSendOp(
            action=action,
            media=media,
            caption=self._source_text(message, caption) if caption else "",
            fallback_text=self._source_text(message, describe(message)),
        )

    def _text_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        return [self._source_text_op(message, message.text or "(empty message)")]

    def _image_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        return [self._source_media_op(message, SourceAction.PHOTO, message.caption)]

    def _video_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        return [self._source_media_op(message, SourceAction.VIDEO, message.caption)]

    def _voice_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        # DM threads take no audio uploads; describe the clip instead.
        text = f"🎵 Audio: {message.file_name or 'Voice message'}"
        if message.caption:
            text = f"{text}\n{message.caption}"
        return [self._source_text_op(message, text)]

    def _document_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        text = f"📎 Document: {message.file_name or 'File'}{_format_size(message.file_size)}"
        if message.caption:
            text = f"{text}\n{message.caption}"
        return [self._source_text_op(message, text)]

    def _sticker_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        op = self._source_media_op(message, SourceAction.PHOTO, message.caption or "🎭 Sticker")
        fallback = "🎭 Sticker" + (f": {message.caption}" if message.caption else "")
        return [replace(op, fallback_text=self._source_text(message, fallback))]

    def _animation_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        return [self._source_media_op(message, SourceAction.VIDEO, message.caption)]

    def _shared_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        text = _shared_header(message)
        if message.link_url:
            text = f"{text}\n{message.link_url}"
        return [self._source_text_op(message, text)]

    def _reaction_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        return [self._source_text_op(message, message.text or "❤️")]

    def _unknown_to_source(self, message: NormalizedMessage) -> List[SourceSendOp]:
        text = "[Unsupported Telegram Media Received]"
        if message.caption or message.text:
            text = f"{text}\n{message.caption or message.text}"
        return [self._source_text_op(message, text)]


DestinationHandler = Callable[[MessageTranslator, NormalizedMessage], List[DestinationSendOp]]
SourceHandler = Callable[[MessageTranslator, NormalizedMessage], List[SourceSendOp]]

DESTINATION_HANDLERS: Dict[MessageKind, DestinationHandler] = {
    MessageKind.TEXT: MessageTranslator._text_to_destination,
    MessageKind.IMAGE: MessageTranslator._image_to_destination,
    MessageKind.VIDEO: MessageTranslator._video_to_destination,
    MessageKind.VOICE: MessageTranslator._voice_to_destination,
    MessageKind.DOCUMENT: MessageTranslator._document_to_destination,
    MessageKind.STICKER: MessageTranslator._sticker_to_destination,
    MessageKind.ANIMATION: MessageTranslator._animation_to_destination,
    MessageKind.SHARED_CONTENT: MessageTranslator._shared_to_destination,
    MessageKind.REACTION: MessageTranslator._reaction_to_destination,
    MessageKind.UNKNOWN: MessageTranslator._unknown_to_destination,
}

SOURCE_HANDLERS: Dict[MessageKind, SourceHandler] = {
    MessageKind.TEXT: MessageTranslator._text_to_source,
    MessageKind.IMAGE: MessageTranslator._image_to_source,
    MessageKind.VIDEO: MessageTranslator._video_to_source,
    MessageKind.VOICE: MessageTranslator._voice_to_source,
    MessageKind.DOCUMENT: MessageTranslator._document_to_source,
    MessageKind.STICKER: MessageTranslator._sticker_to_source,
    MessageKind.ANIMATION: MessageTranslator._animation_to_source,
    MessageKind.SHARED_CONTENT: MessageTranslator._shared_to_source,
    MessageKind.REACTION: MessageTranslator._reaction_to_source,
    MessageKind.UNKNOWN: MessageTranslator._unknown_to_source,
}


def _check_exhaustive(name: str, table: Mapping[MessageKind, object]) -> None:
    missing = set(MessageKind) - set(table)
    if missing:
        kinds = ", ".join(sorted(kind.value for kind in missing))
        raise RuntimeError(f"{name} translation has no handler for: {kinds}")


_check_exhaustive("destination", DESTINATION_HANDLERS)
_check_exhaustive("source", SOURCE_HANDLERS)
