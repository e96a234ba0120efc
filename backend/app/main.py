import asyncio
import contextlib
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.endpoints import router as api_router
from app.core.config import settings
from app.core.errors import EditorError
from app.services.storage_service import StorageService
from app.utils.logger import setup_logger

# Configure basic logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = setup_logger()


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    # Stale upload/export sweep for files no request cleaned up
    sweeper = asyncio.create_task(StorageService().run_periodic_sweep())
    logger.info(f"{settings.PROJECT_NAME} backend started; sweeping every {settings.SWEEP_INTERVAL_SECONDS:.0f}s")
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(
    title="Montage API",
    version="1.0.0",
    description="Video editor backend: compiles timelines into a single FFmpeg export.",
    lifespan=lifespan,
)

# CORS Configuration
origins = [*settings.CORS_ORIGINS, settings.FRONTEND_URL]

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in origins if origin],
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


@app.exception_handler(EditorError)
async def editor_error_handler(request: Request, exc: EditorError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.message} {exc.details or ''}")
    else:
        logger.warning(f"{request.url.path} rejected: {exc.message} {exc.details or ''}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include API Router
app.include_router(api_router, prefix="/api")

@app.get("/")
def root():
    """Service banner."""
    return {"status": "ok", "service": "Montage Backend", "version": "1.0.0"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=5000, reload=True)
