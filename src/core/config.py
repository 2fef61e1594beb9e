"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BridgeConfig:
    """Destination wiring and feature switches for the bridge engine."""

    dest_chat_id: str
    welcome_message: bool = True
    pin_welcome: bool = True
    profile_pic_sync: bool = False
    topic_icon_color: int = 0x7ABA3C
    metadata_timeout: float = 5.0


@dataclass(frozen=True)
class TranslatorConfig:
    """Formatting limits and options consumed by the message translator."""

    max_text_chars: int = 4096
    max_caption_chars: int = 1024
    max_source_text_chars: int = 1000
    attribute_sender: bool = True
    prefix_replies_with_sender: bool = False


@dataclass(frozen=True)
class TransferConfig:
    """Staging settings for the content transfer pipeline."""

    staging_dir: str
    max_media_bytes: Optional[int] = 50 * 1024 * 1024
