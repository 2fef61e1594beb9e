from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from core.config import BridgeConfig
from core.errors import ProvisioningError
from core.mapping_store import MappingCache, MappingStore
from core.models import ParticipantInfo, ThreadMapping
from core.provisioner import TopicProvisioner
from fakes import FakeDestination, FakeSource, FakeStorage


def _provisioner(
    storage: Optional[FakeStorage] = None,
    destination: Optional[FakeDestination] = None,
    source: Optional[FakeSource] = None,
    **config,
) -> tuple[TopicProvisioner, FakeStorage, FakeDestination]:
    storage = storage or FakeStorage()
    destination = destination or FakeDestination()
    config.setdefault("welcome_message", False)
    store = MappingStore(storage, MappingCache())
    store.warm()
    provisioner = TopicProvisioner(store, destination, BridgeConfig(dest_chat_id="-100123", **config), source)
    return provisioner, storage, destination


def test_concurrent_first_messages_create_one_topic() -> None:
    provisioner, storage, destination = _provisioner()

    async def scenario() -> list[str]:
        return await asyncio.gather(*(provisioner.ensure_topic("t1", "u1") for _ in range(10)))

    topics = asyncio.run(scenario())

    assert len(destination.created) == 1
    assert set(topics) == {"100"}
    assert storage.mappings["t1"].dest_topic_id == "100"
    assert not provisioner.in_flight("t1")


def test_unrelated_threads_get_their_own_topics() -> None:
    provisioner, storage, destination = _provisioner()

    async def scenario() -> list[str]:
        return await asyncio.gather(provisioner.ensure_topic("t1"), provisioner.ensure_topic("t2"))

    first, second = asyncio.run(scenario())

    assert first != second
    assert len(destination.created) == 2
    assert {m.dest_topic_id for m in storage.mappings.values()} == {first, second}


def test_repeat_call_is_served_from_cache() -> None:
    provisioner, _, destination = _provisioner()

    first = asyncio.run(provisioner.ensure_topic("t1"))
    second = asyncio.run(provisioner.ensure_topic("t1"))

    assert first == second
    assert len(destination.created) == 1


def test_stored_mapping_is_reused_without_creating() -> None:
    storage = FakeStorage()
    storage.mappings["t1"] = ThreadMapping(source_thread_id="t1", dest_topic_id="42")
    provisioner, _, destination = _provisioner(storage=storage)

    assert asyncio.run(provisioner.ensure_topic("t1")) == "42"
    assert destination.created == []


def test_failed_creation_is_not_cached() -> None:
    destination = FakeDestination()
    destination.fail_create = ProvisioningError("forum disabled")
    provisioner, storage, _ = _provisioner(destination=destination)

    with pytest.raises(ProvisioningError):
        asyncio.run(provisioner.ensure_topic("t1"))
    assert not provisioner.in_flight("t1")
    assert "t1" not in storage.mappings

    destination.fail_create = None
    assert asyncio.run(provisioner.ensure_topic("t1")) == "100"


def test_unexpected_creation_error_is_wrapped() -> None:
    destination = FakeDestination()
    destination.fail_create = RuntimeError("socket closed")
    provisioner, _, _ = _provisioner(destination=destination)

    with pytest.raises(ProvisioningError):
        asyncio.run(provisioner.ensure_topic("t1"))


def test_title_uses_participant_username() -> None:
    source = FakeSource()
    source.participants["u1"] = ParticipantInfo(user_id="u1", username="alice", full_name="Alice A")
    provisioner, _, destination = _provisioner(source=source)

    asyncio.run(provisioner.ensure_topic("t1", "u1"))

    assert destination.created == [("100", "@alice")]


def test_slow_metadata_lookup_falls_back_to_default_title() -> None:
    source = FakeSource()
    source.participants["u1"] = ParticipantInfo(user_id="u1", username="alice")
    source.participant_delay = 1.0
    provisioner, _, destination = _provisioner(source=source, metadata_timeout=0.01)

    asyncio.run(provisioner.ensure_topic("t1", "u1"))

    assert destination.created == [("100", "Chat t1...")]


def test_title_without_participant_hint_uses_thread_id() -> None:
    provisioner, _, destination = _provisioner()

    asyncio.run(provisioner.ensure_topic("340282366920938463463374607431768211456"))

    assert destination.created == [("100", "Chat 3402823669...")]


def test_store_failure_after_creation_does_not_duplicate_topic() -> None:
    storage = FakeStorage()
    storage.fail_writes = True
    provisioner, _, destination = _provisioner(storage=storage)

    first = asyncio.run(provisioner.ensure_topic("t1"))
    second = asyncio.run(provisioner.ensure_topic("t1"))

    assert first == second == "100"
    assert len(destination.created) == 1
    assert "t1" not in storage.mappings

    storage.fail_writes = False
    assert asyncio.run(provisioner.ensure_topic("t1")) == "100"
    assert storage.mappings["t1"].dest_topic_id == "100"


def test_welcome_message_is_sent_and_pinned() -> None:
    provisioner, _, destination = _provisioner(welcome_message=True, pin_welcome=True)

    asyncio.run(provisioner.ensure_topic("t1", "u1"))

    assert len(destination.sent) == 1
    action, topic_id, text = destination.sent[0]
    assert (action, topic_id) == ("text", "100")
    assert "Contact Information" in text
    assert "<code>t1</code>" in text
    assert destination.pinned == [1]


def test_welcome_failure_does_not_fail_provisioning() -> None:
    destination = FakeDestination()
    destination.fail_sends["text"] = ProvisioningError("cannot post")
    provisioner, storage, _ = _provisioner(destination=destination, welcome_message=True)

    assert asyncio.run(provisioner.ensure_topic("t1")) == "100"
    assert storage.mappings["t1"].dest_topic_id == "100"
    assert destination.pinned == []
