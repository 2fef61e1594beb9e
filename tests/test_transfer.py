from __future__ import annotations

import asyncio
import os

import pytest

from core.config import TransferConfig
from core.errors import MediaTooLargeError, TransferError
from core.models import MediaSource, MessageKind
from core.transfer import ContentTransferPipeline
from fakes import FakeDestination, FakeHttp


def _pipeline(tmp_path, http=None, files=None, **config) -> ContentTransferPipeline:
    return ContentTransferPipeline(
        TransferConfig(staging_dir=str(tmp_path / "staging"), **config),
        http or FakeHttp(),
        files,
    )


def _staged_files(tmp_path) -> list[str]:
    directory = tmp_path / "staging"
    if not directory.exists():
        return []
    return os.listdir(directory)


def test_staged_file_exists_only_inside_scope(tmp_path) -> None:
    pipeline = _pipeline(tmp_path)
    seen: dict[str, object] = {}

    async def scenario() -> None:
        async with pipeline.staging(MediaSource(url="https://cdn.example/p.jpg"), MessageKind.IMAGE) as staged:
            seen["path"] = staged.path
            seen["exists"] = os.path.exists(staged.path)
            with open(staged.path, "rb") as handle:
                seen["data"] = handle.read()
            seen["size"] = staged.size

    asyncio.run(scenario())

    assert seen["exists"] is True
    assert seen["data"] == b"remote-bytes"
    assert seen["size"] == len(b"remote-bytes")
    assert str(seen["path"]).endswith(".jpg")
    assert not os.path.exists(str(seen["path"]))
    assert _staged_files(tmp_path) == []


def test_staged_file_removed_when_send_fails(tmp_path) -> None:
    pipeline = _pipeline(tmp_path)

    async def scenario() -> None:
        async with pipeline.staging(MediaSource(url="https://cdn.example/v.mp4"), MessageKind.VIDEO):
            raise TransferError("upload rejected")

    with pytest.raises(TransferError):
        asyncio.run(scenario())
    assert _staged_files(tmp_path) == []


def test_partial_download_is_removed(tmp_path) -> None:
    http = FakeHttp()
    http.fail = TransferError("connection reset")
    pipeline = _pipeline(tmp_path, http=http)

    with pytest.raises(TransferError):
        asyncio.run(pipeline.transfer(MediaSource(url="https://cdn.example/p.jpg"), MessageKind.IMAGE))
    assert _staged_files(tmp_path) == []


def test_oversized_platform_file_is_rejected(tmp_path) -> None:
    destination = FakeDestination()
    destination.file_bytes = b"x" * 32
    pipeline = _pipeline(tmp_path, files=destination, max_media_bytes=16)

    with pytest.raises(MediaTooLargeError):
        asyncio.run(pipeline.transfer(MediaSource(ref=object(), file_name="a.pdf"), MessageKind.DOCUMENT))
    assert _staged_files(tmp_path) == []


def test_platform_file_uses_fetcher_passed_per_call(tmp_path) -> None:
    pipeline = _pipeline(tmp_path)
    destination = FakeDestination()

    async def size_of(path: str) -> int:
        return os.path.getsize(path)

    async def scenario() -> int:
        staged = await pipeline.transfer(MediaSource(ref=object()), MessageKind.IMAGE, files=destination)
        return await pipeline.deliver(staged, size_of)

    assert asyncio.run(scenario()) == len(destination.file_bytes)
    assert _staged_files(tmp_path) == []


def test_media_without_location_is_a_transfer_error(tmp_path) -> None:
    pipeline = _pipeline(tmp_path)

    with pytest.raises(TransferError):
        asyncio.run(pipeline.transfer(MediaSource(), MessageKind.IMAGE))
    assert _staged_files(tmp_path) == []


def test_platform_file_without_fetcher_is_a_transfer_error(tmp_path) -> None:
    pipeline = _pipeline(tmp_path)

    with pytest.raises(TransferError):
        asyncio.run(pipeline.transfer(MediaSource(ref=object()), MessageKind.IMAGE))


def test_purge_clears_leftovers(tmp_path) -> None:
    pipeline = _pipeline(tmp_path)
    staging = tmp_path / "staging"
    staging.mkdir()
    (staging / "old_1.jpg").write_bytes(b"1")
    (staging / "old_2.mp4").write_bytes(b"2")

    assert pipeline.purge() == 2
    assert _staged_files(tmp_path) == []


def test_staging_paths_are_unique(tmp_path) -> None:
    pipeline = _pipeline(tmp_path)

    async def scenario() -> list[str]:
        staged = await asyncio.gather(
            *(pipeline.transfer(MediaSource(url="https://cdn.example/same.jpg"), MessageKind.IMAGE) for _ in range(3))
        )
        paths = [item.path for item in staged]
        for item in staged:
            pipeline.discard(item)
        return paths

    paths = asyncio.run(scenario())

    assert len(set(paths)) == 3
    assert _staged_files(tmp_path) == []
