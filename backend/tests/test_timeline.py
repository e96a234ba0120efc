import pytest

from app.core.errors import (
    InvalidDuration,
    InvalidOrder,
    UnknownTimelineEntry,
    UnsupportedTransition,
    ValidationError,
)
from app.schemas.timeline import TransitionKind
from app.services.timeline import Timeline
from conftest import entry


@pytest.fixture
def timeline():
    return Timeline([entry("a", "clip-a", 5.0), entry("b", "clip-b", 4.0), entry("c", "clip-c", 3.0)])


def _times(timeline):
    return [(s.id, s.start_time, s.end_time) for s in timeline.entries]


class TestAppend:
    def test_append_schedules_after_last_entry(self, timeline):
        added = timeline.append(entry("d", "clip-d", 2.0))

        assert (added.start_time, added.end_time) == (12.0, 14.0)
        assert timeline.total_duration == 14.0

    def test_append_rejects_non_positive_duration(self, timeline):
        with pytest.raises(InvalidDuration):
            timeline.append(entry("d", "clip-d", 0))
        assert len(timeline) == 3

    def test_append_rejects_duplicate_id(self, timeline):
        with pytest.raises(ValidationError):
            timeline.append(entry("a", "clip-a", 1.0))


class TestReorder:
    def test_reorder_recomputes_times(self, timeline):
        timeline.reorder(["c", "a", "b"])

        assert _times(timeline) == [("c", 0.0, 3.0), ("a", 3.0, 8.0), ("b", 8.0, 12.0)]

    @pytest.mark.parametrize("new_order", [
        ["a", "b"],
        ["a", "b", "b"],
        ["a", "b", "x"],
        ["a", "b", "c", "d"],
    ])
    def test_non_permutation_fails_and_leaves_timeline_unchanged(self, timeline, new_order):
        before = _times(timeline)

        with pytest.raises(InvalidOrder):
            timeline.reorder(new_order)

        assert _times(timeline) == before


class TestSetDuration:
    def test_changes_shift_following_entries(self, timeline):
        timeline.set_duration("a", 1.5)

        assert _times(timeline) == [("a", 0.0, 1.5), ("b", 1.5, 5.5), ("c", 5.5, 8.5)]

    @pytest.mark.parametrize("seconds", [0, -1])
    def test_non_positive_duration_fails(self, timeline, seconds):
        with pytest.raises(InvalidDuration):
            timeline.set_duration("b", seconds)
        assert timeline.get("b").duration_seconds == 4.0

    def test_unknown_entry(self, timeline):
        with pytest.raises(UnknownTimelineEntry):
            timeline.set_duration("zzz", 2.0)


class TestSetTransition:
    def test_sets_kind_and_duration(self, timeline):
        updated = timeline.set_transition("a", TransitionKind.CROSSFADE, 0.5)

        assert updated.entry.transition_to_next == TransitionKind.CROSSFADE
        assert updated.entry.transition_duration_seconds == 0.5
        assert _times(timeline)[1] == ("b", 5.0, 9.0)

    def test_accepts_client_names(self, timeline):
        assert timeline.set_transition("a", "slide-left", 1.0).entry.transition_to_next == TransitionKind.SLIDE_LEFT
        assert timeline.set_transition("a", "none").entry.transition_to_next == TransitionKind.CUT

    def test_blending_requires_positive_duration(self, timeline):
        with pytest.raises(InvalidDuration):
            timeline.set_transition("a", TransitionKind.WIPE, 0)

    def test_cut_ignores_duration(self, timeline):
        updated = timeline.set_transition("a", TransitionKind.CUT, 0)
        assert updated.entry.transition_to_next == TransitionKind.CUT

    def test_unknown_kind(self, timeline):
        with pytest.raises(UnsupportedTransition):
            timeline.set_transition("a", "spin", 1.0)


def test_format_duration():
    timeline = Timeline([entry("a", "clip", 65.9), entry("b", "clip", 10.0)])
    assert timeline.format_duration() == "1:15"
    assert Timeline().format_duration() == "0:00"
