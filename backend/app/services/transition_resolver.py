import logging
from typing import Union

from app.core.errors import UnsupportedTransition
from app.schemas.plan import TransitionDescriptor
from app.schemas.timeline import TransitionKind

logger = logging.getLogger(__name__)

# Engine-side ("xfade") transition names for each blending kind.
XFADE_TRANSITIONS = {
    TransitionKind.CROSSFADE: "fade",
    TransitionKind.FADE: "fadeblack",
    TransitionKind.SLIDE_LEFT: "slideleft",
    TransitionKind.SLIDE_RIGHT: "slideright",
    TransitionKind.WIPE: "wipeleft",
}


def parse_transition_kind(kind: Union[TransitionKind, str, None]) -> TransitionKind:
    if kind is None:
        return TransitionKind.CUT
    try:
        return TransitionKind(kind)
    except ValueError as e:
        raise UnsupportedTransition(details=f"Unknown transition '{kind}'") from e


def resolve_transition(
    kind: Union[TransitionKind, str, None],
    duration_seconds: float,
    preceding_end_time: float,
) -> TransitionDescriptor:
    """
    Maps a transition onto the stage that joins two adjacent clips.

    The offset is the preceding clip's end time on the plain concatenated
    timeline; blending kinds overlap the two clips from that point for
    `duration_seconds`. A cut joins the clips with no blend and no duration.
    """
    kind = parse_transition_kind(kind)

    if not kind.is_blending:
        return TransitionDescriptor(
            kind=kind,
            duration_seconds=0.0,
            offset_seconds=preceding_end_time,
        )

    engine_transition = XFADE_TRANSITIONS.get(kind)
    if engine_transition is None:
        raise UnsupportedTransition(details=f"No engine transition for '{kind.value}'")
    if duration_seconds is None or duration_seconds <= 0:
        raise UnsupportedTransition(
            details=f"Transition '{kind.value}' requires a positive duration, got {duration_seconds}"
        )

    logger.debug(f"Resolved {kind.value} -> {engine_transition} "
                 f"(duration={duration_seconds}, offset={preceding_end_time})")
    return TransitionDescriptor(
        kind=kind,
        duration_seconds=duration_seconds,
        offset_seconds=preceding_end_time,
        engine_transition=engine_transition,
    )
