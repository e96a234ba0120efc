import logging
from typing import Iterable, Iterator, List, Optional, Sequence, Union

from app.core.errors import InvalidDuration, InvalidOrder, UnknownTimelineEntry, ValidationError
from app.schemas.timeline import ScheduledEntry, TimelineEntry, TransitionKind
from app.services.timing import recalculate_timings, total_duration
from app.services.transition_resolver import parse_transition_kind

logger = logging.getLogger(__name__)


class Timeline:
    """
    Ordered, contiguous sequence of clip placements.

    Entries are the source of truth; start/end times are recomputed after
    every mutation and only ever read from the recomputed schedule.
    """

    def __init__(self, entries: Iterable[TimelineEntry] = ()):
        self._entries: List[TimelineEntry] = []
        self._scheduled: List[ScheduledEntry] = []
        for entry in entries:
            self._check_new_entry(entry)
            self._entries.append(entry)
        self._recompute()

    # --- Read access ---

    @property
    def entries(self) -> List[ScheduledEntry]:
        return list(self._scheduled)

    @property
    def entry_ids(self) -> List[str]:
        return [entry.id for entry in self._entries]

    @property
    def total_duration(self) -> float:
        return total_duration(self._scheduled)

    def get(self, entry_id: str) -> ScheduledEntry:
        for scheduled in self._scheduled:
            if scheduled.id == entry_id:
                return scheduled
        raise UnknownTimelineEntry(details=f"No timeline entry with id '{entry_id}'")

    def format_duration(self) -> str:
        """Total duration as M:SS."""
        total_seconds = int(self.total_duration)
        minutes, seconds = divmod(total_seconds, 60)
        return f"{minutes}:{seconds:02d}"

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ScheduledEntry]:
        return iter(list(self._scheduled))

    # --- Mutations ---

    def append(self, entry: TimelineEntry) -> ScheduledEntry:
        self._check_new_entry(entry)
        self._entries.append(entry)
        self._recompute()
        return self._scheduled[-1]

    def reorder(self, new_order: Sequence[str]) -> None:
        current = self.entry_ids
        if len(new_order) != len(current) or sorted(new_order) != sorted(current):
            raise InvalidOrder(details=f"Expected a permutation of {current}, got {list(new_order)}")

        by_id = {entry.id: entry for entry in self._entries}
        self._entries = [by_id[entry_id] for entry_id in new_order]
        self._recompute()

    def set_duration(self, entry_id: str, seconds: float) -> ScheduledEntry:
        _check_duration(seconds, f"entry '{entry_id}'")
        self._replace(entry_id, duration_seconds=seconds)
        return self.get(entry_id)

    def set_transition(
        self,
        entry_id: str,
        kind: Union[TransitionKind, str],
        duration_seconds: Optional[float] = None,
    ) -> ScheduledEntry:
        kind = parse_transition_kind(kind)
        update = {"transition_to_next": kind}
        if duration_seconds is not None:
            if kind.is_blending:
                _check_duration(duration_seconds, f"transition of '{entry_id}'")
            update["transition_duration_seconds"] = duration_seconds
        elif kind.is_blending:
            _check_duration(self.get(entry_id).entry.transition_duration_seconds, f"transition of '{entry_id}'")
        self._replace(entry_id, **update)
        return self.get(entry_id)

    # --- Internals ---

    def _replace(self, entry_id: str, **update) -> None:
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                self._entries[index] = entry.model_copy(update=update)
                self._recompute()
                return
        raise UnknownTimelineEntry(details=f"No timeline entry with id '{entry_id}'")

    def _check_new_entry(self, entry: TimelineEntry) -> None:
        if any(existing.id == entry.id for existing in self._entries):
            raise ValidationError("Duplicate timeline entry id", details=entry.id)
        _check_duration(entry.duration_seconds, f"entry '{entry.id}'")

    def _recompute(self) -> None:
        self._scheduled = recalculate_timings(self._entries)


def _check_duration(seconds: Optional[float], what: str) -> None:
    if seconds is None or seconds <= 0:
        raise InvalidDuration(details=f"Duration of {what} must be > 0, got {seconds}")
