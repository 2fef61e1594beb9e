"""Instagram DM item mapping adapter.

Turns raw direct-thread items (the JSON dicts returned by private-API
clients) into core NormalizedMessage objects. Pure dict parsing, no network.

Nothing in this package calls it directly: the source client named by
``source.factory`` in config.json feeds each raw item through ``build_message``
before yielding it from ``iter_messages``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from core.models import Direction, MediaItem, MessageKind, NormalizedMessage

# media_type values used by the private API.
PHOTO_MEDIA = 1
VIDEO_MEDIA = 2
CAROUSEL_MEDIA = 8


def _get(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _first_url(entries: Any) -> Optional[str]:
    if isinstance(entries, list) and entries:
        first = entries[0]
        if isinstance(first, dict):
            return first.get("url")
    return None


def _image_url(media: Any) -> Optional[str]:
    return _first_url(_get(media, "image_versions2", "candidates"))


def _video_url(media: Any) -> Optional[str]:
    return _first_url(_get(media, "video_versions"))


def _media_items(media: Any) -> Tuple[MediaItem, ...]:
    """Best-quality URL for each element of a post, carousel items in order."""

    if not isinstance(media, dict):
        return ()
    carousel = media.get("carousel_media")
    if isinstance(carousel, list) and carousel:
        items: List[MediaItem] = []
        for entry in carousel:
            items.extend(_media_items(entry))
        return tuple(items)
    video = _video_url(media)
    if video:
        return (MediaItem(kind=MessageKind.VIDEO, url=video),)
    image = _image_url(media)
    if image:
        return (MediaItem(kind=MessageKind.IMAGE, url=image),)
    return ()


def _timestamp(item: dict) -> datetime:
    raw = item.get("timestamp")
    try:
        # Item timestamps are microseconds since the epoch.
        return datetime.fromtimestamp(int(raw) / 1_000_000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


def _parse_media(item: dict) -> dict:
    media = item.get("media") or {}
    items = _media_items(media)
    if not items:
        return {"kind": MessageKind.UNKNOWN, "raw_kind": "media"}
    if len(items) > 1:
        kind = MessageKind.IMAGE if items[0].kind == MessageKind.IMAGE else MessageKind.VIDEO
        return {"kind": kind, "items": items}
    return {"kind": items[0].kind, "media_url": items[0].url}


def _parse_voice(item: dict) -> dict:
    audio = _get(item, "voice_media", "media", "audio")
    if not isinstance(audio, dict):
        audio = {}
    url = audio.get("audio_src")
    if not url:
        return {"kind": MessageKind.UNKNOWN, "raw_kind": "voice_media"}
    duration_ms = audio.get("duration") or 0
    return {"kind": MessageKind.VOICE, "media_url": url, "duration": int(duration_ms) // 1000}


def _parse_animated(item: dict) -> dict:
    animated = item.get("animated_media") or {}
    url = _get(animated, "images", "fixed_height", "url") or _get(animated, "images", "fixed_width", "url")
    kind = MessageKind.STICKER if animated.get("is_sticker") else MessageKind.ANIMATION
    return {"kind": kind, "media_url": url}


def _parse_link(item: dict) -> dict:
    link = item.get("link") or {}
    return {
        "kind": MessageKind.SHARED_CONTENT,
        "shared_label": "Link",
        "text": link.get("text") or item.get("text") or "",
        "link_url": _get(link, "link_context", "link_url"),
    }


def _parse_shared(item: dict, key: str, label: str, text_key: str) -> dict:
    shared = item.get(key) or {}
    media = shared.get("media") or shared
    if key == "clip":
        media = shared.get("clip") or shared
    items = _media_items(media)
    text = shared.get(text_key) or (media.get(text_key) if isinstance(media, dict) else None)
    if isinstance(text, dict):
        # Post captions are objects: {"text": ...}
        text = text.get("text")
    return {
        "kind": MessageKind.SHARED_CONTENT,
        "shared_label": label,
        "text": text or "",
        "items": items[:1],
    }


def _parse_item(item: dict) -> dict:
    item_type = item.get("item_type") or ""
    if item_type == "text":
        return {"kind": MessageKind.TEXT, "text": item.get("text") or ""}
    if item_type == "link":
        return _parse_link(item)
    if item_type == "media":
        return _parse_media(item)
    if item_type == "voice_media":
        return _parse_voice(item)
    if item_type == "animated_media":
        return _parse_animated(item)
    if item_type == "story_share":
        return _parse_shared(item, "story_share", "Story", "message")
    if item_type == "reel_share":
        return _parse_shared(item, "reel_share", "Reel", "text")
    if item_type == "clip":
        return _parse_shared(item, "clip", "Reel", "caption")
    if item_type == "media_share":
        return _parse_shared(item, "media_share", "Post", "caption")
    if item_type == "like":
        return {"kind": MessageKind.REACTION, "text": item.get("like") or ""}
    return {"kind": MessageKind.UNKNOWN, "raw_kind": item_type or "unknown", "text": item.get("text") or ""}


def build_message(
    item: dict,
    thread_id: str,
    sender_username: Optional[str] = None,
    sender_display_name: Optional[str] = None,
    sender_avatar_url: Optional[str] = None,
) -> NormalizedMessage:
    """Build a core NormalizedMessage from one raw DM thread item."""

    fields = _parse_item(item)
    sender_id = str(item.get("user_id") or "")
    display = sender_display_name or (f"@{sender_username}" if sender_username else sender_id or "Unknown")

    return NormalizedMessage(
        thread_id=str(thread_id),
        sender_id=sender_id,
        sender_display_name=display,
        direction=Direction.TO_DESTINATION,
        timestamp=_timestamp(item),
        sender_username=sender_username,
        sender_avatar_url=sender_avatar_url,
        **fields,
    )
