"""Filter compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Tuple

from core.models import NormalizedMessage

PREFIX = "prefix"
SUBSTRING = "substring"


@dataclass(frozen=True)
class FilterRule:
    """Case-insensitive token matched as a prefix or a substring."""

    token: str
    mode: str = PREFIX

    def matches(self, lowered: str) -> bool:
        if self.mode == PREFIX:
            return lowered.startswith(self.token)
        return self.token in lowered


@dataclass(frozen=True)
class FilterSet:
    """Compiled rules plus a sender block-list used by ``should_block``."""

    rules: Tuple[FilterRule, ...] = ()
    blocked_senders: FrozenSet[str] = field(default_factory=frozenset)

    def __bool__(self) -> bool:
        return bool(self.rules or self.blocked_senders)


def build_filter_set(filters_config: Optional[dict]) -> FilterSet:
    """Normalize filter config into a ``FilterSet``.

    Accepted shape::

        {"prefixes": [...], "keywords": [...], "blocked_users": [...]}

    Tokens are lowered once here so per-message matching stays minimal.
    Blocked users may be given with or without a leading ``@``.
    """

    filters_config = filters_config or {}
    if not filters_config.get("enabled", True):
        return FilterSet()

    rules: List[FilterRule] = []
    for token in filters_config.get("prefixes", []) or []:
        token = str(token).strip().lower()
        if token:
            rules.append(FilterRule(token=token, mode=PREFIX))
    for token in filters_config.get("keywords", []) or []:
        token = str(token).strip().lower()
        if token:
            rules.append(FilterRule(token=token, mode=SUBSTRING))

    blocked = {
        str(user).strip().lstrip("@").lower()
        for user in filters_config.get("blocked_users", []) or []
        if str(user).strip()
    }
    return FilterSet(rules=tuple(rules), blocked_senders=frozenset(blocked))


def _sender_identities(message: NormalizedMessage) -> Iterable[str]:
    for value in (message.sender_id, message.sender_username, message.sender_display_name):
        if value:
            yield str(value).strip().lstrip("@").lower()


def matching_rule(message: NormalizedMessage, filter_set: FilterSet) -> Optional[str]:
    """Return a human-readable reason when the message is blocked, else None."""

    for identity in _sender_identities(message):
        if identity in filter_set.blocked_senders:
            return f"sender: {identity}"

    for body in (message.text, message.caption):
        lowered = (body or "").strip().lower()
        if not lowered:
            continue
        for rule in filter_set.rules:
            if rule.matches(lowered):
                return f"{rule.mode}: {rule.token}"
    return None


def should_block(message: NormalizedMessage, filter_set: FilterSet) -> bool:
    """Pure predicate evaluated before translation in both directions."""

    return matching_rule(message, filter_set) is not None
