"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageKind(str, Enum):
    """Every message kind the bridge knows how to carry."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    VOICE = "voice"
    DOCUMENT = "document"
    STICKER = "sticker"
    ANIMATION = "animation"
    SHARED_CONTENT = "shared_content"
    REACTION = "reaction"
    UNKNOWN = "unknown"


class Direction(str, Enum):
    """Which way a message travels through the bridge."""

    TO_DESTINATION = "to_destination"
    TO_SOURCE = "to_source"


class DestinationAction(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    VOICE = "voice"
    DOCUMENT = "document"
    ANIMATION = "animation"


class SourceAction(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    PARTIAL = "partial"
    BLOCKED = "blocked"
    UNMAPPED = "unmapped"
    FAILED = "failed"


@dataclass(frozen=True)
class MediaItem:
    """One element of a carousel (multi-item) payload."""

    kind: MessageKind
    url: str


@dataclass(frozen=True)
class MediaSource:
    """Where media bytes can be read from: a remote URL or a platform file handle."""

    url: Optional[str] = None
    ref: Any = None
    file_name: Optional[str] = None

    def describe(self) -> str:
        if self.url:
            return self.url
        return self.file_name or repr(self.ref)


@dataclass(frozen=True)
class NormalizedMessage:
    """The translator's unit of work, produced by either platform's mapper."""

    kind: MessageKind
    thread_id: str
    sender_id: str
    sender_display_name: str
    direction: Direction
    timestamp: datetime = field(default_factory=utc_now)
    text: str = ""
    caption: str = ""
    media_url: Optional[str] = None
    # Opaque platform file handle (e.g. a Telethon message) for media that
    # has no public URL.
    media_ref: Any = None
    duration: int = 0
    items: Tuple[MediaItem, ...] = ()
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    shared_label: Optional[str] = None
    link_url: Optional[str] = None
    raw_kind: Optional[str] = None
    message_id: Optional[int] = None
    sender_username: Optional[str] = None
    sender_avatar_url: Optional[str] = None

    def media(self) -> Optional[MediaSource]:
        if not self.media_url and self.media_ref is None:
            return None
        return MediaSource(url=self.media_url, ref=self.media_ref, file_name=self.file_name)


@dataclass(frozen=True)
class DestinationSendOp:
    """A single send against the destination platform (one topic)."""

    action: DestinationAction
    text: str = ""
    media: Optional[MediaSource] = None
    caption: str = ""
    duration: int = 0
    # Sent instead when media delivery fails for a non-structural reason.
    fallback_text: str = ""


@dataclass(frozen=True)
class SourceSendOp:
    """A single send against the source platform (one thread)."""

    action: SourceAction
    text: str = ""
    media: Optional[MediaSource] = None
    caption: str = ""
    fallback_text: str = ""


@dataclass(frozen=True)
class ThreadMapping:
    """One bridged conversation: source thread <-> destination topic."""

    source_thread_id: str
    dest_topic_id: str
    created_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)
    profile_pic_url: Optional[str] = None

    def touched(self, profile_pic_url: Optional[str] = None) -> "ThreadMapping":
        return replace(
            self,
            last_activity=utc_now(),
            profile_pic_url=profile_pic_url or self.profile_pic_url,
        )


@dataclass(frozen=True)
class UserProfile:
    """A source-platform participant; historical record, never deleted."""

    user_id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    first_seen: datetime = field(default_factory=utc_now)
    message_count: int = 0
    last_seen: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ParticipantInfo:
    """Metadata fetched from the source platform for topic titles."""

    user_id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    profile_pic_url: Optional[str] = None


@dataclass(frozen=True)
class StagedFile:
    """A media payload staged on local disk between download and upload."""

    path: str
    kind: MessageKind
    size: int


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one send routed through the recovery supervisor."""

    ok: bool
    topic_id: Optional[str]
    attempts: int
    reprovisioned: bool = False
    error: Optional[Exception] = None
    value: Any = None


@dataclass(frozen=True)
class BridgeResult:
    """Outcome of forwarding or receiving a single message."""

    status: DeliveryStatus
    thread_id: Optional[str] = None
    topic_id: Optional[str] = None
    sent: int = 0
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED
