"""Adaptive table of observed segment transit durations."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from .config import HISTORY_ALPHA
from .models import SegmentHistoryEntry, SegmentTime, TrackState

logger = logging.getLogger(__name__)


def resolve_segment_duration(*candidates: Optional[float], default: float) -> float:
    """
    Pick the first known duration from an ordered list of sources.

    Sources are tried in the order given (typically observed history, then
    the static catalog table) and ``default`` is used when none is known.
    """
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return default


class SegmentHistory:
    """Exponential moving average of transit time per (train, segment)."""

    def __init__(self, alpha: float = HISTORY_ALPHA):
        self.alpha = alpha
        self._entries: Dict[Tuple[str, int], SegmentHistoryEntry] = {}

    def record_departure(self, train_id: str, state: TrackState, now: float) -> float:
        """
        Record the time spent since the train's last departure.

        The sample is attributed to ``state.last_segment`` and the departure
        clock is restarted at ``now``.

        Returns:
            The updated average for the segment.
        """
        delta = now - state.departure_time
        key = (train_id, state.last_segment)
        entry = self._entries.get(key)
        if entry is None:
            entry = SegmentHistoryEntry(average_duration=delta, smoothing_factor=self.alpha)
            self._entries[key] = entry
        entry.average_duration = (
            entry.smoothing_factor * delta + (1 - entry.smoothing_factor) * entry.average_duration
        )
        entry.min_duration = delta if entry.min_duration is None else min(entry.min_duration, delta)
        entry.max_duration = delta if entry.max_duration is None else max(entry.max_duration, delta)
        entry.samples += 1
        state.departure_time = now
        logger.debug(
            f"Train {train_id} segment {state.last_segment}: {delta:.1f}s "
            f"(avg {entry.average_duration:.1f}s)"
        )
        return entry.average_duration

    def average(self, train_id: str, segment: int) -> Optional[float]:
        """Observed average for a segment, or None if never recorded."""
        entry = self._entries.get((train_id, segment))
        return entry.average_duration if entry else None

    def seed(self, train_id: str, durations: Dict[int, float]) -> None:
        """Preload averages, e.g. from a broadcast schedule update."""
        for segment, seconds in durations.items():
            seconds = float(seconds)
            self._entries[(train_id, int(segment))] = SegmentHistoryEntry(
                average_duration=seconds,
                smoothing_factor=self.alpha,
                min_duration=seconds,
                max_duration=seconds,
            )

    def segment_time(self, train_id: str, segment: int) -> Optional[SegmentTime]:
        """Average, spread and confidence for a segment, or None if never seen."""
        entry = self._entries.get((train_id, segment))
        if entry is None:
            return None
        return SegmentTime(
            segment=segment,
            average=entry.average_duration,
            minimum=entry.min_duration,
            maximum=entry.max_duration,
            confidence=entry.samples / (entry.samples + 1),
        )

    def all_segment_times(self, train_id: str) -> List[SegmentTime]:
        return [self.segment_time(train_id, seg) for seg in self.segments_for(train_id)]

    def segments_for(self, train_id: str) -> Iterable[int]:
        return sorted(seg for tid, seg in self._entries if tid == train_id)

    def forget(self, train_id: str) -> None:
        for key in [k for k in self._entries if k[0] == train_id]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
