import json
from typing import List, Literal, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.errors import InvalidPayload
from app.schemas.timeline import (
    AudioTrack,
    EncodePreset,
    MixMode,
    OutputFormat,
    RenderSettings,
    TimelineEntry,
    TransitionKind,
)


class StoredFile(BaseModel):
    id: str
    filename: str
    original_name: str
    path: str
    size: int
    mimetype: str


# --- Browser payloads (camelCase, as sent by the editor UI) ---

class TimelineItemPayload(BaseModel):
    id: str
    mediaId: str
    duration: float
    transition: Optional[str] = None
    transitionDuration: Optional[float] = None
    # Sent by the client for display only; always recomputed server-side.
    startTime: Optional[float] = None
    endTime: Optional[float] = None

    def to_entry(self) -> TimelineEntry:
        try:
            transition = TransitionKind(self.transition or TransitionKind.CUT.value)
        except ValueError:
            # Unknown kinds are rejected by the compiler with the pair they sit between.
            transition = self.transition
        return TimelineEntry.model_construct(
            id=self.id,
            media_asset_id=self.mediaId,
            duration_seconds=self.duration,
            transition_to_next=transition,
            transition_duration_seconds=(
                self.transitionDuration if self.transitionDuration is not None
                else settings.DEFAULT_TRANSITION_DURATION
            ),
        )


class AudioSettingsPayload(BaseModel):
    masterVolume: float = 1.0
    musicVolume: float = 1.0
    videoVolume: float = 1.0
    mixMode: Literal['mix', 'replace'] = 'mix'

    def to_track(self, media_asset_id: str) -> AudioTrack:
        return AudioTrack(
            media_asset_id=media_asset_id,
            mix_mode=MixMode(self.mixMode),
            music_volume=self.musicVolume,
            video_volume=self.videoVolume,
            master_volume=self.masterVolume,
        )


class ResolutionPayload(BaseModel):
    width: int
    height: int


class ExportSettingsPayload(BaseModel):
    format: Literal['mp4', 'webm'] = 'mp4'
    quality: Optional[str] = None
    resolution: Optional[ResolutionPayload] = None
    preset: Literal['fast', 'medium', 'slow'] = 'medium'

    def to_render_settings(self) -> RenderSettings:
        resolution = self.resolution or ResolutionPayload(
            width=settings.DEFAULT_WIDTH, height=settings.DEFAULT_HEIGHT
        )
        return RenderSettings(
            output_format=OutputFormat(self.format),
            width=resolution.width,
            height=resolution.height,
            encode_preset=EncodePreset(self.preset),
            frame_rate=settings.OUTPUT_FPS,
        )


class MediaFilePayload(BaseModel):
    id: str
    name: str
    type: Literal['image', 'video', 'audio']
    duration: Optional[float] = None


class ExportRequest(BaseModel):
    timeline: List[TimelineItemPayload]
    audioSettings: Optional[AudioSettingsPayload] = None
    exportSettings: ExportSettingsPayload = ExportSettingsPayload()
    mediaFiles: Optional[List[MediaFilePayload]] = None

    @classmethod
    def from_form(cls, timeline: Optional[str], audio_settings: Optional[str] = None,
                  export_settings: Optional[str] = None, media_files: Optional[str] = None) -> "ExportRequest":
        """Parses the JSON-encoded multipart fields of an export request."""
        raw = {}
        for key, value in (("timeline", timeline), ("audioSettings", audio_settings),
                           ("exportSettings", export_settings), ("mediaFiles", media_files)):
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            try:
                raw[key] = json.loads(value) if isinstance(value, str) else value
            except json.JSONDecodeError as e:
                raise InvalidPayload(details=f"Field '{key}' is not valid JSON: {e}") from e

        if raw.get("timeline") is None:
            raw["timeline"] = []
        if raw.get("exportSettings") is None:
            raw.pop("exportSettings", None)
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            raise InvalidPayload(details=str(e)) from e
