from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def from_mimetype(cls, mimetype: Optional[str]) -> "MediaKind":
        """Classifies an upload by its content type; anything unrecognised is treated as video."""
        mimetype = (mimetype or "").lower()
        if mimetype.startswith("image/"):
            return cls.IMAGE
        if mimetype.startswith("audio/"):
            return cls.AUDIO
        return cls.VIDEO


class TransitionKind(str, Enum):
    CUT = "cut"
    CROSSFADE = "crossfade"
    FADE = "fade"
    SLIDE_LEFT = "slide-left"
    SLIDE_RIGHT = "slide-right"
    WIPE = "wipe"

    @classmethod
    def _missing_(cls, value):
        # The browser client sends 'none' for a hard cut.
        if not isinstance(value, str):
            return None
        value = value.strip().lower()
        if value == "none":
            return cls.CUT
        for member in cls:
            if member.value == value:
                return member
        return None

    @property
    def is_blending(self) -> bool:
        return self is not TransitionKind.CUT


class MixMode(str, Enum):
    MIX = "mix"
    REPLACE = "replace"


class OutputFormat(str, Enum):
    MP4 = "mp4"
    WEBM = "webm"


class EncodePreset(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


class MediaAsset(BaseModel):
    """An uploaded media file. `source_handle` is where the engine can read it."""
    model_config = ConfigDict(frozen=True)

    id: str
    kind: MediaKind
    source_handle: str
    duration_seconds: Optional[float] = None
    has_audio: bool = True


class TimelineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    media_asset_id: str
    duration_seconds: float
    transition_to_next: TransitionKind = TransitionKind.CUT
    transition_duration_seconds: float = 1.0


class ScheduledEntry(BaseModel):
    """A timeline entry annotated with its derived position on the timeline."""
    model_config = ConfigDict(frozen=True)

    entry: TimelineEntry
    start_time: float
    end_time: float

    @property
    def id(self) -> str:
        return self.entry.id

    @property
    def duration_seconds(self) -> float:
        return self.entry.duration_seconds


class AudioTrack(BaseModel):
    model_config = ConfigDict(frozen=True)

    media_asset_id: str
    mix_mode: MixMode = MixMode.MIX
    music_volume: float = 1.0
    video_volume: float = 1.0
    master_volume: float = 1.0


class RenderSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    output_format: OutputFormat = OutputFormat.MP4
    width: int = 1280
    height: int = 720
    encode_preset: EncodePreset = EncodePreset.MEDIUM
    frame_rate: int = 30
