import asyncio
import logging
import os
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from app.core.errors import EngineUnavailable, InvalidPayload
from app.schemas.export import AudioSettingsPayload, ExportRequest, MediaFilePayload, StoredFile
from app.schemas.timeline import AudioTrack, MediaAsset, MediaKind
from app.services.filtergraph_compiler import FiltergraphCompiler
from app.services.media_engine import MediaEngine, ProgressCallback
from app.services.storage_service import StorageService
from app.services.timeline import Timeline

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    "mp4": "video/mp4",
    "webm": "video/webm",
}


class ExportResult(BaseModel):
    path: str
    filename: str
    media_type: str
    cleanup_paths: List[str]
    strategy: str


def build_media_assets(stored: Sequence[StoredFile],
                       manifest: Optional[Sequence[MediaFilePayload]] = None) -> Dict[str, MediaAsset]:
    """
    Maps uploaded files to media assets.

    With a manifest, each manifest item claims the first unclaimed upload with
    the same file name and keeps the client's asset id. Uploads nobody claims
    (or every upload, without a manifest) are addressed by their file name.
    """
    assets: Dict[str, MediaAsset] = {}
    claimed = set()

    for item in manifest or ():
        match = next(
            (f for f in stored if f.original_name == item.name and f.path not in claimed),
            None,
        )
        if match is None:
            logger.warning(f"Manifest entry '{item.id}' ({item.name}) has no uploaded file")
            continue
        claimed.add(match.path)
        assets[item.id] = MediaAsset(
            id=item.id,
            kind=MediaKind(item.type),
            source_handle=match.path,
            duration_seconds=item.duration,
        )

    for f in stored:
        if f.path in claimed:
            continue
        if f.original_name in assets:
            logger.warning(f"Duplicate upload name '{f.original_name}', ignoring {f.filename}")
            continue
        assets[f.original_name] = MediaAsset(
            id=f.original_name,
            kind=MediaKind.from_mimetype(f.mimetype),
            source_handle=f.path,
        )
    return assets


class ExportOrchestrator:
    """
    Runs an export request end to end: store uploads, compile the timeline,
    run the engine and hand back the produced file.

    The compiled strategy is tried first. Only when the engine cannot be
    invoked at all does the request degrade to a pass-through export; every
    other failure is reported to the caller.
    """

    def __init__(self, storage: Optional[StorageService] = None, engine: Optional[MediaEngine] = None,
                 compiler: Optional[FiltergraphCompiler] = None):
        self.storage = storage or StorageService()
        self.engine = engine or MediaEngine()
        self.compiler = compiler or FiltergraphCompiler()

    async def export(
        self,
        uploads: Sequence[UploadFile],
        timeline: Optional[str],
        audio_settings: Optional[str] = None,
        export_settings: Optional[str] = None,
        media_files: Optional[str] = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExportResult:
        if not uploads:
            raise InvalidPayload("No files provided")
        request = ExportRequest.from_form(timeline, audio_settings, export_settings, media_files)

        stored = await self.storage.materialize_all(uploads)
        input_paths = [f.path for f in stored]

        try:
            assets, parsed = self._validate(stored, request)
            if not self.engine.is_available():
                raise EngineUnavailable(details=f"'{self.engine.binary}' not found")
            return await self._export_compiled(stored, request, assets, parsed, is_disconnected, on_progress)
        except EngineUnavailable as e:
            logger.warning(f"Media engine unavailable ({e.details}), falling back to pass-through export")
            return self._passthrough(stored, self._preferred_passthrough(stored, request))
        except (Exception, asyncio.CancelledError):
            self.storage.delete(input_paths)
            raise

    async def simple_export(self, uploads: Sequence[UploadFile]) -> ExportResult:
        """Returns the first uploaded file unchanged."""
        if not uploads:
            raise InvalidPayload("No files provided")
        stored = await self.storage.materialize_all(uploads)
        return self._passthrough(stored, stored[0])

    async def combine(self, uploads: Sequence[UploadFile]) -> ExportResult:
        """Converts the first uploaded file into a standalone MP4 clip."""
        if not uploads:
            raise InvalidPayload("No files provided")
        stored = await self.storage.materialize_all(uploads)
        source = stored[0]
        output_path = self.storage.output_path("mp4")
        try:
            await run_in_threadpool(
                self.engine.convert_single,
                source.path,
                output_path,
                MediaKind.from_mimetype(source.mimetype) == MediaKind.IMAGE,
            )
        finally:
            self.storage.delete(f.path for f in stored)

        return ExportResult(
            path=output_path,
            filename=f"output-{int(time.time() * 1000)}.mp4",
            media_type=MEDIA_TYPES["mp4"],
            cleanup_paths=[output_path],
            strategy="combine",
        )

    # --- Strategies ---

    def _validate(self, stored: List[StoredFile], request: ExportRequest):
        """Rejects invalid timelines up front, whether or not the engine is there to render them."""
        assets = build_media_assets(stored, request.mediaFiles)
        timeline = Timeline(item.to_entry() for item in request.timeline)
        return assets, self.compiler.validate(timeline, assets)

    async def _export_compiled(self, stored: List[StoredFile], request: ExportRequest,
                               assets: Dict[str, MediaAsset], timeline: Timeline,
                               is_disconnected, on_progress) -> ExportResult:
        assets = await self._probe_missing(assets)
        audio_track = self._audio_track(assets, request)
        render_settings = request.exportSettings.to_render_settings()

        plan = self.compiler.compile(timeline, assets, audio_track, render_settings)

        output_format = render_settings.output_format.value
        output_path = self.storage.output_path(output_format)
        locations = {asset_id: asset.source_handle for asset_id, asset in assets.items()}
        await self.engine.run(plan, locations, output_path, on_progress=on_progress, is_cancelled=is_disconnected)

        return ExportResult(
            path=output_path,
            filename=f"export-{int(time.time() * 1000)}.{output_format}",
            media_type=MEDIA_TYPES[output_format],
            cleanup_paths=[*(f.path for f in stored), output_path],
            strategy="compiled",
        )

    def _passthrough(self, stored: List[StoredFile], chosen: StoredFile) -> ExportResult:
        self.storage.delete(f.path for f in stored if f.path != chosen.path)
        return ExportResult(
            path=chosen.path,
            filename=chosen.original_name,
            media_type=chosen.mimetype,
            cleanup_paths=[chosen.path],
            strategy="passthrough",
        )

    # --- Helpers ---

    def _preferred_passthrough(self, stored: List[StoredFile], request: ExportRequest) -> StoredFile:
        """The first timeline clip's file if it can be found, else the first visual upload."""
        assets = build_media_assets(stored, request.mediaFiles)
        by_path = {f.path: f for f in stored}
        for item in request.timeline:
            asset = assets.get(item.mediaId)
            if asset is not None and asset.kind != MediaKind.AUDIO:
                return by_path[asset.source_handle]
        visual = [f for f in stored if MediaKind.from_mimetype(f.mimetype) != MediaKind.AUDIO]
        return (visual or stored)[0]

    def _audio_track(self, assets: Dict[str, MediaAsset], request: ExportRequest) -> Optional[AudioTrack]:
        music = next((a for a in assets.values() if a.kind == MediaKind.AUDIO), None)
        if music is None:
            if request.audioSettings is not None:
                logger.info("Audio settings provided without an audio file; ignoring them")
            return None
        audio_settings = request.audioSettings or AudioSettingsPayload()
        return audio_settings.to_track(music.id)

    async def _probe_missing(self, assets: Dict[str, MediaAsset]) -> Dict[str, MediaAsset]:
        """Fills in durations and audio presence of time-based assets."""
        probed = {}
        for asset_id, asset in assets.items():
            if asset.kind == MediaKind.IMAGE:
                probed[asset_id] = asset
                continue
            info = await run_in_threadpool(self.engine.probe, asset.source_handle)
            duration = asset.duration_seconds if asset.duration_seconds is not None else info["duration"]
            probed[asset_id] = asset.model_copy(update={
                "duration_seconds": duration,
                "has_audio": info["has_audio"],
            })
            logger.debug(f"Probed {os.path.basename(asset.source_handle)}: {info}")
        return probed
