"""Destination-side formatting helpers.

Keeping formatting here prevents drift between the translator and the
provisioner's welcome card. The destination renders HTML.
"""

from __future__ import annotations

import html
from datetime import datetime
from typing import Optional

from core.models import ParticipantInfo, UserProfile

ELLIPSIS = "…"
DIVIDER = "──────────────"
# Escaped length cap for the bold sender header.
MAX_SENDER_CHARS = 64


def truncate(text: str, limit: int) -> str:
    """Clip plain text to ``limit`` characters, marking the cut."""

    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[: max(limit - len(ELLIPSIS), 0)].rstrip() + ELLIPSIS


def escape_clipped(text: str, limit: int) -> str:
    """HTML-escape ``text`` so the escaped result fits in ``limit`` characters.

    Clipping happens on the raw text so an entity is never cut in half.
    """

    raw = truncate(text, limit)
    escaped = html.escape(raw, quote=False)
    while len(escaped) > limit and raw:
        # One raw character escapes to at most five ("&amp;").
        drop = max(-(-(len(escaped) - limit) // 5), 1)
        raw = truncate(text, max(len(raw) - drop, 0))
        escaped = html.escape(raw, quote=False)
    return escaped


def format_attributed(sender: str, text: str, limit: int) -> str:
    """Prefix plain ``text`` with the sender's name in bold, escaped and clipped."""

    name = escape_clipped(sender or "Unknown", min(MAX_SENDER_CHARS, max(limit - 7, 1)))
    header = f"<b>{name}</b>"
    if not text:
        return header
    return f"{header}\n{escape_clipped(text, max(limit - len(header) - 1, 0))}"


def format_topic_title(participant: Optional[ParticipantInfo], thread_id: str) -> str:
    """Derive a human-readable topic title, falling back to the thread id."""

    if participant is not None:
        if participant.username:
            return f"@{participant.username}"
        if participant.full_name:
            return participant.full_name
        if participant.user_id:
            return f"User {participant.user_id}"
    return f"Chat {thread_id[:10]}..."


def format_welcome(
    thread_id: str,
    sender_id: Optional[str],
    participant: Optional[ParticipantInfo],
    profile: Optional[UserProfile],
    when: datetime,
) -> str:
    """Create the pinned contact card posted into a freshly created topic."""

    username = "Unknown"
    full_name = "Unknown User"
    if participant is not None:
        username = participant.username or "No Username"
        full_name = participant.full_name or "No Full Name"
    elif profile is not None:
        username = profile.username or "No Username"
        full_name = profile.full_name or "No Full Name"
    elif sender_id:
        username = f"user_{sender_id}"

    lines = [
        "👤 <b>Contact Information</b>",
        DIVIDER,
        f"<b>Username:</b> {html.escape(username, quote=False)}",
        f"<b>User ID:</b> {html.escape(sender_id or 'N/A', quote=False)}",
        f"<b>Full Name:</b> {html.escape(full_name, quote=False)}",
        f"<b>Thread:</b> <code>{html.escape(thread_id, quote=False)}</code>",
        f"<b>First Contact:</b> {when.astimezone().strftime('%d-%m-%Y')}",
        DIVIDER,
        "💬 Messages from this conversation will appear here",
    ]
    return "\n".join(lines)
