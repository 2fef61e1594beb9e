from __future__ import annotations

from core.filters import build_filter_set, matching_rule, should_block
from core.models import Direction, MessageKind, NormalizedMessage


def _message(text: str = "", caption: str = "", **fields) -> NormalizedMessage:
    return NormalizedMessage(
        kind=fields.pop("kind", MessageKind.TEXT),
        thread_id="t1",
        sender_id=fields.pop("sender_id", "u1"),
        sender_display_name=fields.pop("sender_display_name", "Alice"),
        direction=Direction.TO_DESTINATION,
        text=text,
        caption=caption,
        **fields,
    )


def test_prefix_rules_match_start_only() -> None:
    filters = build_filter_set({"prefixes": ["/"]})

    assert should_block(_message("/start"), filters)
    assert should_block(_message("   /start"), filters)
    assert not should_block(_message("see a/b"), filters)


def test_keyword_rules_are_case_insensitive_substrings() -> None:
    filters = build_filter_set({"keywords": ["Promo Code"]})

    assert matching_rule(_message("Use PROMO CODE now"), filters) == "substring: promo code"
    assert not should_block(_message("hello"), filters)


def test_caption_is_checked_for_media() -> None:
    filters = build_filter_set({"keywords": ["spam"]})

    assert should_block(_message(caption="pure spam", kind=MessageKind.IMAGE), filters)


def test_blocked_users_match_id_and_username() -> None:
    filters = build_filter_set({"blocked_users": ["@Spammer", "777"]})

    assert should_block(_message("hi", sender_username="spammer"), filters)
    assert should_block(_message("hi", sender_id="777"), filters)
    assert not should_block(_message("hi", sender_username="friend"), filters)


def test_disabled_filters_block_nothing() -> None:
    filters = build_filter_set({"enabled": False, "prefixes": ["/"]})

    assert not filters
    assert not should_block(_message("/start"), filters)


def test_empty_config_builds_empty_set() -> None:
    filters = build_filter_set(None)

    assert not filters
    assert matching_rule(_message("anything"), filters) is None


def test_blank_tokens_are_ignored() -> None:
    filters = build_filter_set({"prefixes": ["", "  "], "keywords": [" "], "blocked_users": [""]})

    assert not filters
