"""
Shared fixtures.

The media engine is replaced by FakeEngine everywhere, so the suite never
needs an ffmpeg binary: it records what it was asked to run and writes a
small placeholder output file.
"""
import io
import os
import tempfile

# Keep uploads/exports created at import time out of the project tree.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="montage_test_"))

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from app.core.config import settings
from app.schemas.timeline import MediaAsset, MediaKind, TimelineEntry, TransitionKind
from app.services.storage_service import StorageService


class FakeEngine:
    binary = "fake-ffmpeg"

    def __init__(self, available=True, probe_info=None, fail_with=None):
        self.available = available
        self.probe_info = probe_info or {}
        self.fail_with = fail_with
        self.runs = []
        self.probed = []
        self.converted = []

    def is_available(self):
        return self.available

    def list_formats(self, limit=10):
        return ["mp4", "webm", "mov"][:limit]

    def probe(self, path):
        self.probed.append(path)
        for suffix, info in self.probe_info.items():
            if path.endswith(suffix):
                return info
        return {"duration": 5.0, "has_video": True, "has_audio": True}

    async def run(self, plan, locations, output_path, on_progress=None, is_cancelled=None):
        self.runs.append({"plan": plan, "locations": dict(locations), "output_path": output_path})
        if self.fail_with is not None:
            raise self.fail_with
        with open(output_path, "wb") as f:
            f.write(b"rendered video")
        if on_progress is not None:
            on_progress(100.0)
        return output_path

    def convert_single(self, input_path, output_path, is_image, **kwargs):
        self.converted.append({"input_path": input_path, "is_image": is_image})
        if self.fail_with is not None:
            raise self.fail_with
        with open(output_path, "wb") as f:
            f.write(b"converted clip")
        return output_path


def make_upload(filename, content_type, data=b"media-bytes"):
    return UploadFile(file=io.BytesIO(data), filename=filename,
                      headers=Headers({"content-type": content_type}))


def entry(entry_id, asset_id, duration, transition=TransitionKind.CUT, transition_duration=1.0):
    return TimelineEntry(
        id=entry_id,
        media_asset_id=asset_id,
        duration_seconds=duration,
        transition_to_next=transition,
        transition_duration_seconds=transition_duration,
    )


def video_asset(asset_id, duration=5.0, has_audio=True):
    return MediaAsset(id=asset_id, kind=MediaKind.VIDEO, source_handle=f"/media/{asset_id}.mp4",
                      duration_seconds=duration, has_audio=has_audio)


def image_asset(asset_id):
    return MediaAsset(id=asset_id, kind=MediaKind.IMAGE, source_handle=f"/media/{asset_id}.png")


def audio_asset(asset_id, duration=30.0):
    return MediaAsset(id=asset_id, kind=MediaKind.AUDIO, source_handle=f"/media/{asset_id}.mp3",
                      duration_seconds=duration)


@pytest.fixture(autouse=True)
def no_cleanup_delay(monkeypatch):
    monkeypatch.setattr(settings, "CLEANUP_GRACE_SECONDS", 0.0)


@pytest.fixture
def storage(tmp_path):
    return StorageService(upload_dir=str(tmp_path / "uploads"), output_dir=str(tmp_path / "output"))


@pytest.fixture
def engine():
    return FakeEngine()
