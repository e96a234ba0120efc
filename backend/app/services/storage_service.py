import asyncio
import logging
import os
import shutil
import time
import uuid
from typing import Iterable, List, Optional

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.errors import InvalidPayload
from app.schemas.export import StoredFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class StorageService:
    """
    Local storage for request-scoped media.

    Every upload and export gets a generated unique name, so concurrent
    requests never share a path. Nothing here is kept indefinitely: files
    are deleted after the response and a periodic sweep removes anything
    older than the retention threshold.
    """

    def __init__(self, upload_dir: Optional[str] = None, output_dir: Optional[str] = None,
                 max_upload_bytes: Optional[int] = None):
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.output_dir = output_dir or settings.OUTPUT_DIR
        self.max_upload_bytes = max_upload_bytes or settings.MAX_UPLOAD_MB * 1024 * 1024

        # Ensure storage directories exist
        os.makedirs(self.upload_dir, exist_ok=True)
        os.makedirs(self.output_dir, exist_ok=True)

    def _unique_name(self, prefix: str, extension: str) -> str:
        return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}{extension}"

    def materialize(self, upload: UploadFile, field_name: str = "files") -> StoredFile:
        """Copies an upload to a unique path in the upload directory."""
        original_name = os.path.basename(upload.filename or "upload")
        extension = os.path.splitext(original_name)[1].lower()
        path = os.path.join(self.upload_dir, self._unique_name(field_name, extension))

        size = 0
        with open(path, "wb") as buffer:
            while True:
                chunk = upload.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > self.max_upload_bytes:
                    buffer.close()
                    self.delete([path])
                    raise InvalidPayload(
                        "File too large",
                        details=f"{original_name} exceeds {self.max_upload_bytes} bytes",
                    )
                buffer.write(chunk)

        logger.info(f"Stored locally: {path}")
        return StoredFile(
            id=uuid.uuid4().hex[:16],
            filename=os.path.basename(path),
            original_name=original_name,
            path=path,
            size=size,
            mimetype=upload.content_type or "application/octet-stream",
        )

    async def materialize_all(self, uploads: Iterable[UploadFile], field_name: str = "files") -> List[StoredFile]:
        stored = []
        try:
            for upload in uploads:
                stored.append(await run_in_threadpool(self.materialize, upload, field_name))
        except Exception:
            self.delete(f.path for f in stored)
            raise
        return stored

    def output_path(self, extension: str) -> str:
        return os.path.join(self.output_dir, self._unique_name("export", f".{extension.lstrip('.')}"))

    def copy_to_output(self, path: str) -> str:
        """Copies a file into the output directory under a fresh name."""
        target = self.output_path(os.path.splitext(path)[1] or ".bin")
        shutil.copy2(path, target)
        return target

    def delete(self, paths: Iterable[str]) -> None:
        """Best-effort removal; failures are logged and never raised."""
        for path in paths:
            try:
                if os.path.exists(path):
                    os.remove(path)
                    logger.debug(f"Deleted {path}")
            except OSError as e:
                logger.error(f"Error deleting file {path}: {e}")

    async def delete_later(self, paths: List[str], delay: Optional[float] = None) -> None:
        delay = settings.CLEANUP_GRACE_SECONDS if delay is None else delay
        if delay > 0:
            await asyncio.sleep(delay)
        self.delete(paths)

    def sweep(self, max_age_seconds: Optional[float] = None, now: Optional[float] = None) -> int:
        """Deletes stored files older than `max_age_seconds`. Returns how many were removed."""
        max_age = settings.RETENTION_SECONDS if max_age_seconds is None else max_age_seconds
        now = time.time() if now is None else now
        removed = 0
        for directory in (self.upload_dir, self.output_dir):
            try:
                names = os.listdir(directory)
            except OSError as e:
                logger.error(f"Cleanup error listing {directory}: {e}")
                continue
            for name in names:
                path = os.path.join(directory, name)
                try:
                    if os.path.isfile(path) and now - os.path.getmtime(path) > max_age:
                        os.remove(path)
                        removed += 1
                        logger.info(f"Deleted old file: {name}")
                except OSError as e:
                    # Another request may have removed it first.
                    logger.error(f"Cleanup error for {path}: {e}")
        return removed

    async def run_periodic_sweep(self, interval_seconds: Optional[float] = None,
                                 max_age_seconds: Optional[float] = None) -> None:
        interval = settings.SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        while True:
            await asyncio.sleep(interval)
            removed = await run_in_threadpool(self.sweep, max_age_seconds)
            if removed:
                logger.info(f"Periodic sweep removed {removed} stale files")
