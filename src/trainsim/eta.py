"""Per-station ETA prediction for sensed trains."""

import logging
from typing import Dict

from .config import ARRIVAL_T_THRESHOLD, DEFAULT_SEGMENT_SECONDS
from .estimator import ScalarEstimator
from .history import SegmentHistory, resolve_segment_duration
from .models import Direction, Route, TrackState

logger = logging.getLogger(__name__)


class ETAPredictor:
    """
    Combines a train's canonical location with segment durations to predict
    arrival times at every station on its route.

    Segment durations are resolved history first, then the route's catalog
    table, then a default.
    """

    def __init__(self, history: SegmentHistory,
                 default_segment_seconds: float = DEFAULT_SEGMENT_SECONDS,
                 arrival_threshold: float = ARRIVAL_T_THRESHOLD):
        self.history = history
        self.default_segment_seconds = default_segment_seconds
        self.arrival_threshold = arrival_threshold

    def segment_duration(self, train_id: str, route: Route, segment: int, default: float) -> float:
        """Duration in seconds of 1-based ``segment`` for this train."""
        return resolve_segment_duration(
            self.history.average(train_id, segment),
            route.segment_duration(Direction.FORWARD, segment - 1),
            default=default,
        )

    def base_duration(self, train_id: str, route: Route, segment: int) -> float:
        """Duration of the segment the train is currently on."""
        return self.segment_duration(train_id, route, segment, self.default_segment_seconds)

    def raw_eta(self, train_id: str, route: Route, best_segment: int, best_t: float,
                waypoint_index: int, base_avg: float, live_delay: float = 0.0) -> float:
        """
        Unfiltered seconds until the train reaches ``waypoint_index``.

        The remainder of the current segment plus every segment from
        ``best_segment + 1`` up to and including ``waypoint_index`` (the
        segment ending at that waypoint), plus the live delay. Segments with
        no history or catalog entry fall back to ``base_avg``.
        """
        eta = (1 - best_t) * base_avg
        for segment in range(best_segment + 1, waypoint_index + 1):
            eta += self.segment_duration(train_id, route, segment, base_avg)
        return eta + live_delay

    def has_arrived(self, best_segment: int, best_t: float, waypoint_index: int) -> bool:
        """True once the train is past the segment ending at ``waypoint_index``."""
        return best_segment > waypoint_index + 1 or (
            best_segment == waypoint_index + 1 and best_t >= self.arrival_threshold
        )

    def predict(self, train_id: str, route: Route, state: TrackState,
                estimator: ScalarEstimator, now: float,
                live_delay: float = 0.0) -> Dict[str, float]:
        """
        Predict smoothed ETAs for every station in ``state.station_list``.

        The current target station reports 0 once reached; reaching it
        records a departure in the segment history and advances the station
        pointer, at most once per call. Other stations report a smoothed ETA
        only when their raw ETA is positive.

        Args:
            train_id: Train identifier.
            route: The train's route.
            state: Canonical tracking state; ``last_segment``/``last_t``
                must already hold this tick's location.
            estimator: The train's noise filter.
            now: Current timestamp.
            live_delay: Externally known delay in seconds.

        Returns:
            Mapping of station name to ETA in seconds.
        """
        best_segment = state.last_segment
        best_t = state.last_t
        base_avg = self.base_duration(train_id, route, best_segment)

        etas: Dict[str, float] = {}
        stations = state.station_list
        ptr = state.station_pointer

        for i, entry in enumerate(stations):
            raw = self.raw_eta(train_id, route, best_segment, best_t,
                               entry.waypoint_index, base_avg, live_delay)

            if i == ptr:
                if self.has_arrived(best_segment, best_t, entry.waypoint_index):
                    etas[entry.name] = 0.0
                    if state.station_pointer == ptr:
                        self.history.record_departure(train_id, state, now)
                        state.station_pointer = ptr + 1
                        logger.info(f"Train {train_id} arrived at {entry.name}")
                else:
                    etas[entry.name] = estimator.update(raw)
            elif raw > 0:
                etas[entry.name] = estimator.update(raw)

        return etas
