import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from app.core.config import settings
from app.core.errors import EditorError, InvalidPayload
from app.services.export_orchestrator import ExportOrchestrator, ExportResult
from app.services.media_engine import MediaEngine
from app.services.storage_service import StorageService

# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter()


def get_storage() -> StorageService:
    return StorageService()


def get_engine() -> MediaEngine:
    return MediaEngine()


def get_orchestrator(
    storage: StorageService = Depends(get_storage),
    engine: MediaEngine = Depends(get_engine),
) -> ExportOrchestrator:
    return ExportOrchestrator(storage=storage, engine=engine)


def _file_response(result: ExportResult, storage: StorageService) -> FileResponse:
    """Streams the result and deletes everything it used once the response is sent."""
    return FileResponse(
        result.path,
        media_type=result.media_type,
        filename=result.filename,
        background=BackgroundTask(storage.delete_later, result.cleanup_paths, settings.CLEANUP_GRACE_SECONDS),
    )


@router.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "OK", "message": "Video editor backend is running"}


@router.get("/ffmpeg-status")
async def ffmpeg_status(engine: MediaEngine = Depends(get_engine)):
    """Reports whether the media engine can be invoked."""
    if not engine.is_available():
        return {
            "available": False,
            "error": "FFmpeg not found. Please install FFmpeg on your system.",
        }
    try:
        formats = await run_in_threadpool(engine.list_formats)
    except EditorError as e:
        return {"available": False, "error": e.message, "details": e.details}
    return {"available": True, "message": "FFmpeg is available", "formats": formats}


@router.post("/upload")
async def upload_media(
    media: List[UploadFile] = File(...),
    storage: StorageService = Depends(get_storage),
):
    """
    Stores media files and returns their descriptors.
    Stored files are only kept until the periodic sweep removes them.
    """
    if not media:
        raise InvalidPayload("No files uploaded")

    stored = await storage.materialize_all(media, field_name="media")
    return {
        "success": True,
        "files": [
            {
                "id": f.id,
                "filename": f.filename,
                "originalName": f.original_name,
                "path": f.path,
                "size": f.size,
                "mimetype": f.mimetype,
            }
            for f in stored
        ],
    }


@router.post("/export")
async def export_video(
    request: Request,
    files: List[UploadFile] = File(...),
    timeline: Optional[str] = Form(None),
    audioSettings: Optional[str] = Form(None),
    exportSettings: Optional[str] = Form(None),
    mediaFiles: Optional[str] = Form(None),
    orchestrator: ExportOrchestrator = Depends(get_orchestrator),
):
    """
    Compiles the timeline into one FFmpeg run and streams back the export.
    Falls back to a pass-through export when FFmpeg is not installed.
    """
    logger.info(f"Export requested with {len(files)} files")
    result = await orchestrator.export(
        files,
        timeline,
        audio_settings=audioSettings,
        export_settings=exportSettings,
        media_files=mediaFiles,
        is_disconnected=request.is_disconnected,
    )
    logger.info(f"Export ready ({result.strategy}): {result.filename}")
    return _file_response(result, orchestrator.storage)


@router.post("/simple-export")
async def simple_export(
    files: List[UploadFile] = File(...),
    orchestrator: ExportOrchestrator = Depends(get_orchestrator),
):
    """Returns the first uploaded file as-is, without invoking FFmpeg."""
    result = await orchestrator.simple_export(files)
    return _file_response(result, orchestrator.storage)


@router.post("/combine")
async def combine(
    files: List[UploadFile] = File(...),
    orchestrator: ExportOrchestrator = Depends(get_orchestrator),
):
    """Converts the first uploaded file into a 1280x720 MP4 clip."""
    result = await orchestrator.combine(files)
    return _file_response(result, orchestrator.storage)
