import os
from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Montage"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Path Configuration
    # config.py is in backend/app/core/ => 3 levels up to backend => 4 levels up to root
    BACKEND_DIR: str = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    PROJECT_ROOT: str = os.path.dirname(BACKEND_DIR)

    DATA_DIR: str = os.getenv("DATA_DIR", os.path.join(PROJECT_ROOT, "data"))
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", os.path.join(DATA_DIR, "uploads"))
    OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", os.path.join(DATA_DIR, "output"))
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "100"))

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "")
    CORS_ORIGIN_REGEX: str = os.getenv("CORS_ORIGIN_REGEX", r"^https://.*\.up\.railway\.app$")

    # Media Engine
    FFMPEG_BINARY: str = os.getenv("FFMPEG_BINARY", "ffmpeg")
    FFPROBE_BINARY: str = os.getenv("FFPROBE_BINARY", "ffprobe")

    # Retention / Cleanup
    RETENTION_SECONDS: float = float(os.getenv("RETENTION_SECONDS", "3600"))
    SWEEP_INTERVAL_SECONDS: float = float(os.getenv("SWEEP_INTERVAL_SECONDS", "3600"))
    CLEANUP_GRACE_SECONDS: float = float(os.getenv("CLEANUP_GRACE_SECONDS", "5"))

    # Timeline Defaults
    DEFAULT_IMAGE_DURATION: float = float(os.getenv("DEFAULT_IMAGE_DURATION", "3"))
    DEFAULT_TRANSITION_DURATION: float = float(os.getenv("DEFAULT_TRANSITION_DURATION", "1"))
    DEFAULT_WIDTH: int = int(os.getenv("DEFAULT_WIDTH", "1280"))
    DEFAULT_HEIGHT: int = int(os.getenv("DEFAULT_HEIGHT", "720"))

    # Encoding
    OUTPUT_FPS: int = int(os.getenv("OUTPUT_FPS", "30"))
    CRF: int = int(os.getenv("CRF", "23"))
    AUDIO_BITRATE: str = os.getenv("AUDIO_BITRATE", "128k")

    class Config:
        case_sensitive = True
        env_file = ".env"

    def __init__(self, **data):
        super().__init__(**data)
        self._ensure_directories()

    def _ensure_directories(self):
        """Creates the working directories uploads and exports are written to."""
        for path in (self.UPLOAD_DIR, self.OUTPUT_DIR):
            os.makedirs(path, exist_ok=True)

settings = Settings()
