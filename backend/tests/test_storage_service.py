import os
import time

import pytest

from app.core.errors import InvalidPayload
from app.services.storage_service import StorageService
from conftest import make_upload


def test_materialize_writes_unique_files(storage):
    first = storage.materialize(make_upload("clip.mp4", "video/mp4", b"one"))
    second = storage.materialize(make_upload("clip.mp4", "video/mp4", b"two"))

    assert first.path != second.path
    assert first.original_name == second.original_name == "clip.mp4"
    assert first.mimetype == "video/mp4"
    assert first.size == 3
    with open(second.path, "rb") as f:
        assert f.read() == b"two"
    assert os.path.dirname(first.path) == storage.upload_dir


def test_materialize_rejects_oversized_upload(tmp_path):
    storage = StorageService(upload_dir=str(tmp_path / "u"), output_dir=str(tmp_path / "o"), max_upload_bytes=4)

    with pytest.raises(InvalidPayload):
        storage.materialize(make_upload("big.mp4", "video/mp4", b"0123456789"))
    assert os.listdir(storage.upload_dir) == []


def test_delete_is_best_effort(storage, tmp_path):
    kept = storage.materialize(make_upload("a.png", "image/png"))

    storage.delete([str(tmp_path / "missing.mp4"), kept.path])

    assert not os.path.exists(kept.path)


async def test_delete_later(storage):
    stored = storage.materialize(make_upload("a.png", "image/png"))

    await storage.delete_later([stored.path], delay=0)

    assert not os.path.exists(stored.path)


def test_sweep_only_removes_files_past_retention(storage):
    old = storage.materialize(make_upload("old.mp4", "video/mp4"))
    fresh = storage.materialize(make_upload("fresh.mp4", "video/mp4"))
    old_output = storage.output_path("mp4")
    with open(old_output, "wb") as f:
        f.write(b"done")

    now = time.time()
    two_hours_ago = now - 7200
    os.utime(old.path, (two_hours_ago, two_hours_ago))
    os.utime(old_output, (two_hours_ago, two_hours_ago))

    removed = storage.sweep(max_age_seconds=3600, now=now)

    assert removed == 2
    assert not os.path.exists(old.path)
    assert not os.path.exists(old_output)
    assert os.path.exists(fresh.path)


def test_output_paths_are_unique(storage):
    paths = {storage.output_path("mp4") for _ in range(20)}
    assert len(paths) == 20
    assert all(p.endswith(".mp4") for p in paths)
