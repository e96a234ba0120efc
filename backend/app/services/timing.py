from typing import Iterable, List

from app.schemas.timeline import ScheduledEntry, TimelineEntry


def recalculate_timings(entries: Iterable[TimelineEntry]) -> List[ScheduledEntry]:
    """
    Derives start/end times for an ordered sequence of entries.

    Entries are laid out back to back from zero: each entry starts exactly
    where the previous one ends. The result depends only on the order and
    durations, so recomputing it is always safe.
    """
    scheduled = []
    current_time = 0.0
    for entry in entries:
        end_time = current_time + entry.duration_seconds
        scheduled.append(ScheduledEntry(entry=entry, start_time=current_time, end_time=end_time))
        current_time = end_time
    return scheduled


def total_duration(scheduled: List[ScheduledEntry]) -> float:
    return scheduled[-1].end_time if scheduled else 0.0
