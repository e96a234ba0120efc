import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Union

from app.core.config import settings
from app.core.errors import (
    EmptyTimeline,
    InvalidDuration,
    InvalidMediaKind,
    MissingMediaAsset,
    UnresolvedTransition,
    UnsupportedTransition,
)
from app.schemas.plan import (
    CompiledPlan,
    FilterSpec,
    FilterStage,
    InputDeclaration,
    StageKind,
    TransitionDescriptor,
    format_number,
)
from app.schemas.timeline import (
    AudioTrack,
    EncodePreset,
    MediaAsset,
    MediaKind,
    MixMode,
    OutputFormat,
    RenderSettings,
    ScheduledEntry,
    TimelineEntry,
)
from app.services.timeline import Timeline
from app.services.transition_resolver import resolve_transition

logger = logging.getLogger(__name__)

VIDEO_OUTPUT_LABEL = "vout"
AUDIO_OUTPUT_LABEL = "aout"

# Codec profile per output container.
CODEC_PROFILES = {
    OutputFormat.MP4: {"video": "libx264", "audio": "aac"},
    OutputFormat.WEBM: {"video": "libvpx-vp9", "audio": "libopus"},
}

# x264 speed presets.
X264_PRESETS = {
    EncodePreset.FAST: "ultrafast",
    EncodePreset.MEDIUM: "medium",
    EncodePreset.SLOW: "slow",
}

# libvpx has no -preset; the same trade-off is expressed with deadline/cpu-used.
VPX_PRESETS = {
    EncodePreset.FAST: ("realtime", "8"),
    EncodePreset.MEDIUM: ("good", "4"),
    EncodePreset.SLOW: ("good", "1"),
}

PIXEL_FORMAT = "yuv420p"


class LabelAllocator:
    """Hands out unique stream labels; terminal labels are reserved up front."""

    def __init__(self, reserved: Iterable[str] = (VIDEO_OUTPUT_LABEL, AUDIO_OUTPUT_LABEL)):
        self._counters: Dict[str, int] = defaultdict(int)
        self._used = set(reserved)

    def allocate(self, prefix: str) -> str:
        while True:
            label = f"{prefix}{self._counters[prefix]}"
            self._counters[prefix] += 1
            if label not in self._used:
                self._used.add(label)
                return label


class FiltergraphCompiler:
    """
    Compiles a timeline into a single-pass engine plan.

    Every timeline entry gets its own input declaration; the input index
    and entry id travel with each stage instead of being inferred from
    positions, so the same asset may appear on the timeline several times.
    """

    def __init__(self, crf: Optional[int] = None, audio_bitrate: Optional[str] = None):
        self.crf = crf if crf is not None else settings.CRF
        self.audio_bitrate = audio_bitrate or settings.AUDIO_BITRATE

    def validate(
        self,
        timeline: Union[Timeline, Iterable[TimelineEntry]],
        media_assets: Union[Mapping[str, MediaAsset], Iterable[MediaAsset]],
    ) -> Timeline:
        """
        Runs the checks that do not depend on probed media: the timeline is
        not empty, every entry references a visual asset and every transition
        between adjacent entries resolves.
        """
        timeline, media_assets = self._coerce(timeline, media_assets)
        scheduled = timeline.entries
        if not scheduled:
            raise EmptyTimeline()

        self._resolve_assets(scheduled, media_assets, require_durations=False)
        self._resolve_transitions(scheduled)
        return timeline

    def compile(
        self,
        timeline: Union[Timeline, Iterable[TimelineEntry]],
        media_assets: Union[Mapping[str, MediaAsset], Iterable[MediaAsset]],
        audio_track: Optional[AudioTrack],
        render_settings: RenderSettings,
    ) -> CompiledPlan:
        timeline, media_assets = self._coerce(timeline, media_assets)
        scheduled = timeline.entries
        if not scheduled:
            raise EmptyTimeline()

        assets = self._resolve_assets(scheduled, media_assets)
        music = self._resolve_audio_asset(audio_track, media_assets)
        transitions = self._resolve_transitions(scheduled)

        labels = LabelAllocator()
        declarations = self._declare_inputs(scheduled, assets, music, render_settings)
        entry_inputs = declarations[:len(scheduled)]

        stages: List[FilterStage] = []
        normalized = []
        for scheduled_entry, declaration in zip(scheduled, entry_inputs):
            stage = self._normalize(declaration, scheduled_entry, render_settings, labels)
            stages.append(stage)
            normalized.append(stage)

        stages.extend(self._chain(scheduled, normalized, transitions, labels))

        audio_output = None
        if audio_track is not None:
            audio_stages = self._mix_audio(audio_track, entry_inputs, assets, declarations[-1], labels)
            stages.extend(audio_stages)
            audio_output = AUDIO_OUTPUT_LABEL

        plan = CompiledPlan(
            input_declarations=declarations,
            stages=stages,
            video_output=VIDEO_OUTPUT_LABEL,
            audio_output=audio_output,
            encode_args=self._encode_args(render_settings, with_audio=audio_output is not None),
            nominal_duration=timeline.total_duration,
            output_format=render_settings.output_format.value,
        )
        logger.info(f"Compiled timeline: {len(declarations)} inputs, {len(stages)} stages, "
                    f"nominal duration {plan.nominal_duration:.2f}s")
        return plan

    # --- Validation ---

    @staticmethod
    def _coerce(timeline, media_assets):
        if not isinstance(timeline, Timeline):
            timeline = Timeline(timeline)
        if not isinstance(media_assets, Mapping):
            media_assets = {asset.id: asset for asset in media_assets}
        return timeline, media_assets

    def _resolve_assets(self, scheduled: List[ScheduledEntry], media_assets: Mapping[str, MediaAsset],
                        require_durations: bool = True) -> Dict[str, MediaAsset]:
        assets = {}
        for item in scheduled:
            asset = media_assets.get(item.entry.media_asset_id)
            if asset is None:
                raise MissingMediaAsset(
                    details=f"Entry '{item.id}' references unknown asset '{item.entry.media_asset_id}'"
                )
            if asset.kind == MediaKind.AUDIO:
                raise InvalidMediaKind(
                    details=f"Audio asset '{asset.id}' cannot be placed on the video track"
                )
            if require_durations and asset.kind == MediaKind.VIDEO and asset.duration_seconds is None:
                raise InvalidDuration(details=f"Video asset '{asset.id}' has no known duration")
            assets[item.id] = asset
        return assets

    def _resolve_audio_asset(self, audio_track: Optional[AudioTrack],
                             media_assets: Mapping[str, MediaAsset]) -> Optional[MediaAsset]:
        if audio_track is None:
            return None
        asset = media_assets.get(audio_track.media_asset_id)
        if asset is None:
            raise MissingMediaAsset(details=f"Audio track references unknown asset '{audio_track.media_asset_id}'")
        if asset.kind == MediaKind.IMAGE:
            raise InvalidMediaKind(details=f"Image asset '{asset.id}' cannot be used as the audio track")
        if asset.duration_seconds is None:
            raise InvalidDuration(details=f"Audio asset '{asset.id}' has no known duration")
        return asset

    def _resolve_transitions(self, scheduled: List[ScheduledEntry]) -> List[TransitionDescriptor]:
        """Descriptor i joins entries i and i+1; the last entry's transition is never used."""
        descriptors = []
        for before, after in zip(scheduled, scheduled[1:]):
            try:
                descriptors.append(resolve_transition(
                    before.entry.transition_to_next,
                    before.entry.transition_duration_seconds,
                    before.end_time,
                ))
            except UnsupportedTransition as e:
                raise UnresolvedTransition(
                    details=f"Between '{before.id}' and '{after.id}': {e.details}"
                ) from e
        return descriptors

    # --- Graph construction ---

    def _declare_inputs(self, scheduled: List[ScheduledEntry], assets: Dict[str, MediaAsset],
                        music: Optional[MediaAsset], render_settings: RenderSettings) -> List[InputDeclaration]:
        declarations = []
        for index, item in enumerate(scheduled):
            asset = assets[item.id]
            options = ()
            if asset.kind == MediaKind.IMAGE:
                # A still image becomes a fixed-length stream at the output frame rate.
                options = (
                    "-loop", "1",
                    "-framerate", str(render_settings.frame_rate),
                    "-t", format_number(item.duration_seconds),
                )
            declarations.append(InputDeclaration(
                index=index,
                media_asset_id=asset.id,
                kind=asset.kind,
                entry_id=item.id,
                options=options,
            ))

        if music is not None:
            declarations.append(InputDeclaration(
                index=len(declarations),
                media_asset_id=music.id,
                kind=music.kind,
            ))
        return declarations

    def _normalize(self, declaration: InputDeclaration, item: ScheduledEntry,
                   render_settings: RenderSettings, labels: LabelAllocator) -> FilterStage:
        width, height = str(render_settings.width), str(render_settings.height)
        return FilterStage(
            kind=StageKind.NORMALIZE,
            inputs=(declaration.video_pad,),
            output=labels.allocate("v"),
            filters=(
                FilterSpec(name="scale", args=(width, height),
                           params=(("force_original_aspect_ratio", "decrease"),)),
                FilterSpec(name="pad", args=(width, height, "(ow-iw)/2", "(oh-ih)/2")),
                FilterSpec(name="setsar", args=("1",)),
                FilterSpec(name="fps", args=(str(render_settings.frame_rate),)),
                FilterSpec(name="format", args=(PIXEL_FORMAT,)),
            ),
            entry_ids=(item.id,),
        )

    def _chain(self, scheduled: List[ScheduledEntry], normalized: List[FilterStage],
               transitions: List[TransitionDescriptor], labels: LabelAllocator) -> List[FilterStage]:
        if len(normalized) == 1:
            return [FilterStage(
                kind=StageKind.PASSTHROUGH,
                inputs=(normalized[0].output,),
                output=VIDEO_OUTPUT_LABEL,
                filters=(FilterSpec(name="copy"),),
                entry_ids=normalized[0].entry_ids,
            )]

        stages = []
        previous = normalized[0].output
        last = len(normalized) - 1
        for i in range(1, len(normalized)):
            before, after = scheduled[i - 1], scheduled[i]
            descriptor = transitions[i - 1]

            output = VIDEO_OUTPUT_LABEL if i == last else labels.allocate("x" if descriptor.is_blend else "c")
            if descriptor.is_blend:
                stage = FilterStage(
                    kind=StageKind.TRANSITION,
                    inputs=(previous, normalized[i].output),
                    output=output,
                    filters=(FilterSpec(name="xfade", params=(
                        ("transition", descriptor.engine_transition),
                        ("duration", format_number(descriptor.duration_seconds)),
                        ("offset", format_number(descriptor.offset_seconds)),
                    )),),
                    transition=descriptor,
                    entry_ids=(before.id, after.id),
                )
            else:
                stage = FilterStage(
                    kind=StageKind.CONCAT,
                    inputs=(previous, normalized[i].output),
                    output=output,
                    filters=(FilterSpec(name="concat", params=(("n", "2"), ("v", "1"), ("a", "0"))),),
                    transition=descriptor,
                    entry_ids=(before.id, after.id),
                )
            stages.append(stage)
            previous = output
        return stages

    def _mix_audio(self, audio_track: AudioTrack, entry_inputs: List[InputDeclaration],
                   assets: Dict[str, MediaAsset], music_input: InputDeclaration,
                   labels: LabelAllocator) -> List[FilterStage]:
        embedded = [
            declaration for declaration in entry_inputs
            if declaration.kind == MediaKind.VIDEO and assets[declaration.entry_id].has_audio
        ]
        apply_master = audio_track.master_volume != 1.0
        mix_output = labels.allocate("a") if apply_master else AUDIO_OUTPUT_LABEL

        if audio_track.mix_mode == MixMode.MIX and embedded:
            weights = [format_number(audio_track.video_volume)] * len(embedded)
            weights.append(format_number(audio_track.music_volume))
            stages = [FilterStage(
                kind=StageKind.AUDIO_MIX,
                inputs=(*(d.audio_pad for d in embedded), music_input.audio_pad),
                output=mix_output,
                filters=(FilterSpec(name="amix", params=(
                    ("inputs", str(len(embedded) + 1)),
                    ("duration", "longest"),
                    ("weights", " ".join(weights)),
                )),),
                entry_ids=tuple(d.entry_id for d in embedded),
            )]
        else:
            stages = [FilterStage(
                kind=StageKind.AUDIO_VOLUME,
                inputs=(music_input.audio_pad,),
                output=mix_output,
                filters=(FilterSpec(name="volume", args=(format_number(audio_track.music_volume),)),),
            )]

        if apply_master:
            stages.append(FilterStage(
                kind=StageKind.AUDIO_VOLUME,
                inputs=(mix_output,),
                output=AUDIO_OUTPUT_LABEL,
                filters=(FilterSpec(name="volume", args=(format_number(audio_track.master_volume),)),),
            ))
        return stages

    # --- Encoding ---

    def _encode_args(self, render_settings: RenderSettings, with_audio: bool) -> List[str]:
        profile = CODEC_PROFILES[render_settings.output_format]
        args = ["-c:v", profile["video"]]
        if render_settings.output_format == OutputFormat.WEBM:
            deadline, cpu_used = VPX_PRESETS[render_settings.encode_preset]
            args += ["-deadline", deadline, "-cpu-used", cpu_used, "-b:v", "0"]
        else:
            args += ["-preset", X264_PRESETS[render_settings.encode_preset]]
        args += ["-crf", str(self.crf), "-pix_fmt", PIXEL_FORMAT]

        if with_audio:
            args += ["-c:a", profile["audio"], "-b:a", self.audio_bitrate]
        else:
            args.append("-an")
        return args
