import pytest

from app.core.errors import UnsupportedTransition
from app.schemas.timeline import TransitionKind
from app.services.transition_resolver import resolve_transition


def test_cut_concatenates_without_blend():
    descriptor = resolve_transition(TransitionKind.CUT, 1.0, 5.0)

    assert descriptor.kind == TransitionKind.CUT
    assert not descriptor.is_blend
    assert descriptor.duration_seconds == 0.0
    assert descriptor.offset_seconds == 5.0


@pytest.mark.parametrize("kind, engine_name", [
    (TransitionKind.CROSSFADE, "fade"),
    (TransitionKind.FADE, "fadeblack"),
    (TransitionKind.SLIDE_LEFT, "slideleft"),
    (TransitionKind.SLIDE_RIGHT, "slideright"),
    (TransitionKind.WIPE, "wipeleft"),
])
def test_blending_kinds_keep_duration_and_preceding_end_as_offset(kind, engine_name):
    descriptor = resolve_transition(kind, 1.5, 7.25)

    assert descriptor.is_blend
    assert descriptor.engine_transition == engine_name
    assert descriptor.duration_seconds == 1.5
    assert descriptor.offset_seconds == 7.25


def test_string_kinds_and_none_alias():
    assert resolve_transition("crossfade", 1.0, 2.0).engine_transition == "fade"
    assert not resolve_transition("none", 1.0, 2.0).is_blend
    assert not resolve_transition(None, 1.0, 2.0).is_blend


def test_unknown_kind_is_rejected():
    with pytest.raises(UnsupportedTransition):
        resolve_transition("spin", 1.0, 2.0)


@pytest.mark.parametrize("duration", [0, -0.5])
def test_blend_without_positive_duration_is_rejected(duration):
    with pytest.raises(UnsupportedTransition):
        resolve_transition(TransitionKind.CROSSFADE, duration, 2.0)
