from __future__ import annotations

from datetime import datetime, timezone

from adapters.instagram_mapper import build_message
from core.models import Direction, MessageKind


def _item(item_type: str, **fields) -> dict:
    item = {"item_type": item_type, "user_id": 555, "timestamp": 1704067200000000}
    item.update(fields)
    return item


def _image(url: str) -> dict:
    return {"media_type": 1, "image_versions2": {"candidates": [{"url": url}, {"url": url + "?small"}]}}


def test_text_item() -> None:
    message = build_message(_item("text", text="hello"), "t1", sender_username="alice")

    assert message.kind == MessageKind.TEXT
    assert message.text == "hello"
    assert message.thread_id == "t1"
    assert message.sender_id == "555"
    assert message.sender_display_name == "@alice"
    assert message.direction == Direction.TO_DESTINATION
    assert message.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_single_photo_uses_best_candidate() -> None:
    message = build_message(_item("media", media=_image("https://cdn/p.jpg")), "t1")

    assert message.kind == MessageKind.IMAGE
    assert message.media_url == "https://cdn/p.jpg"


def test_video_is_preferred_over_cover_image() -> None:
    media = _image("https://cdn/cover.jpg")
    media["video_versions"] = [{"url": "https://cdn/v.mp4"}]

    message = build_message(_item("media", media=media), "t1")

    assert message.kind == MessageKind.VIDEO
    assert message.media_url == "https://cdn/v.mp4"


def test_carousel_items_keep_order() -> None:
    video = {"video_versions": [{"url": "https://cdn/2.mp4"}]}
    media = {"carousel_media": [_image("https://cdn/1.jpg"), video, _image("https://cdn/3.jpg")]}

    message = build_message(_item("media", media=media), "t1")

    assert [item.url for item in message.items] == ["https://cdn/1.jpg", "https://cdn/2.mp4", "https://cdn/3.jpg"]
    assert message.kind == MessageKind.IMAGE


def test_voice_duration_is_in_seconds() -> None:
    voice = {"media": {"audio": {"audio_src": "https://cdn/a.m4a", "duration": 4500}}}

    message = build_message(_item("voice_media", voice_media=voice), "t1")

    assert message.kind == MessageKind.VOICE
    assert message.duration == 4
    assert message.media_url == "https://cdn/a.m4a"


def test_animated_sticker_and_gif() -> None:
    images = {"fixed_height": {"url": "https://cdn/g.gif"}}

    sticker = build_message(_item("animated_media", animated_media={"images": images, "is_sticker": True}), "t1")
    gif = build_message(_item("animated_media", animated_media={"images": images}), "t1")

    assert sticker.kind == MessageKind.STICKER
    assert gif.kind == MessageKind.ANIMATION
    assert gif.media_url == "https://cdn/g.gif"


def test_link_item() -> None:
    link = {"text": "look https://example.com", "link_context": {"link_url": "https://example.com"}}

    message = build_message(_item("link", link=link), "t1")

    assert message.kind == MessageKind.SHARED_CONTENT
    assert message.shared_label == "Link"
    assert message.link_url == "https://example.com"


def test_post_share_reads_caption_object() -> None:
    media = _image("https://cdn/post.jpg")
    media["caption"] = {"text": "beach day"}

    message = build_message(_item("media_share", media_share=media), "t1")

    assert message.kind == MessageKind.SHARED_CONTENT
    assert message.shared_label == "Post"
    assert message.text == "beach day"
    assert [item.url for item in message.items] == ["https://cdn/post.jpg"]


def test_story_share_message() -> None:
    story = {"message": "reply to story", "media": _image("https://cdn/s.jpg")}

    message = build_message(_item("story_share", story_share=story), "t1")

    assert message.shared_label == "Story"
    assert message.text == "reply to story"


def test_like_item_is_a_reaction() -> None:
    message = build_message(_item("like", like="❤️"), "t1")

    assert message.kind == MessageKind.REACTION
    assert message.text == "❤️"


def test_unknown_item_keeps_raw_type() -> None:
    message = build_message(_item("xma_poll"), "t1")

    assert message.kind == MessageKind.UNKNOWN
    assert message.raw_kind == "xma_poll"


def test_media_without_urls_is_unknown() -> None:
    message = build_message(_item("media", media={}), "t1")

    assert message.kind == MessageKind.UNKNOWN


def test_bad_timestamp_falls_back_to_now() -> None:
    message = build_message(_item("text", text="x", timestamp="soon"), "t1")

    assert message.timestamp.tzinfo is not None


def test_voice_with_malformed_audio_is_unknown() -> None:
    voice = {"media": {"audio": ["https://cdn/a.m4a"]}}

    message = build_message(_item("voice_media", voice_media=voice), "t1")

    assert message.kind == MessageKind.UNKNOWN
    assert message.raw_kind == "voice_media"
