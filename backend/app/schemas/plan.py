"""
Intermediate representation of a compiled export.

The compiler never concatenates graph text directly. It emits typed input
declarations and filter stages wired together by generated labels; the
textual ``-filter_complex`` syntax is produced only when the plan is
serialized into an engine command line.
"""
from enum import Enum
from typing import List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from app.schemas.timeline import MediaKind, TransitionKind


def format_number(value: float) -> str:
    """Renders a number for the engine: 5.0 -> '5', 2.50 -> '2.5'."""
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


class InputDeclaration(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    media_asset_id: str
    kind: MediaKind
    entry_id: Optional[str] = None
    options: Tuple[str, ...] = ()

    @property
    def video_pad(self) -> str:
        return f"{self.index}:v"

    @property
    def audio_pad(self) -> str:
        return f"{self.index}:a"

    def to_args(self, locations: Mapping[str, str]) -> List[str]:
        return [*self.options, "-i", locations[self.media_asset_id]]


class FilterSpec(BaseModel):
    """One filter in a chain, e.g. ``scale=1280:720:force_original_aspect_ratio=decrease``."""
    model_config = ConfigDict(frozen=True)

    name: str
    args: Tuple[str, ...] = ()
    params: Tuple[Tuple[str, str], ...] = ()

    def render(self) -> str:
        options = [*self.args, *(f"{key}={value}" for key, value in self.params)]
        if not options:
            return self.name
        return f"{self.name}={':'.join(options)}"


class StageKind(str, Enum):
    NORMALIZE = "normalize"
    PASSTHROUGH = "passthrough"
    CONCAT = "concat"
    TRANSITION = "transition"
    AUDIO_MIX = "audio_mix"
    AUDIO_VOLUME = "audio_volume"


class TransitionDescriptor(BaseModel):
    """Resolved description of how two adjacent clips are joined."""
    model_config = ConfigDict(frozen=True)

    kind: TransitionKind
    duration_seconds: float
    offset_seconds: float
    engine_transition: Optional[str] = None

    @property
    def is_blend(self) -> bool:
        return self.engine_transition is not None


class FilterStage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: StageKind
    inputs: Tuple[str, ...]
    output: str
    filters: Tuple[FilterSpec, ...]
    transition: Optional[TransitionDescriptor] = None
    entry_ids: Tuple[str, ...] = ()

    def render(self) -> str:
        sources = "".join(f"[{label}]" for label in self.inputs)
        chain = ",".join(spec.render() for spec in self.filters)
        return f"{sources}{chain}[{self.output}]"


class CompiledPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_declarations: Tuple[InputDeclaration, ...]
    stages: Tuple[FilterStage, ...]
    video_output: str
    audio_output: Optional[str] = None
    encode_args: Tuple[str, ...] = ()
    nominal_duration: float = 0.0
    output_format: str = "mp4"

    @property
    def filter_graph_text(self) -> str:
        return ";".join(stage.render() for stage in self.stages)

    @property
    def output_mappings(self) -> List[str]:
        labels = [self.video_output]
        if self.audio_output:
            labels.append(self.audio_output)
        return [f"[{label}]" for label in labels]

    def stages_of(self, kind: StageKind) -> List[FilterStage]:
        return [stage for stage in self.stages if stage.kind == kind]

    def to_command(self, locations: Mapping[str, str], output_path: str,
                   binary: str = "ffmpeg", progress: bool = True) -> List[str]:
        """Serializes the plan into an engine argument list."""
        args = [binary, "-y", "-hide_banner"]
        for declaration in self.input_declarations:
            args.extend(declaration.to_args(locations))
        args.extend(["-filter_complex", self.filter_graph_text])
        for mapping in self.output_mappings:
            args.extend(["-map", mapping])
        args.extend(self.encode_args)
        if progress:
            args.extend(["-progress", "pipe:1", "-nostats"])
        args.append(output_path)
        return args
