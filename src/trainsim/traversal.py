"""Bidirectional route traversal for simulated trains."""

import logging
from typing import Optional, Sequence, Tuple

from .config import CANONICAL_EPS, DEFAULT_SEGMENT_SECONDS
from .geometry import canonicalize, distance, heading, is_finite, lerp, segment_from_waypoint
from .models import Direction, Phase, Route, RouteTrainState, Station, Vec3

logger = logging.getLogger(__name__)

Pose = Tuple[Vec3, Vec3]  # (position, heading)


def next_station_index(route: Route, waypoint_index: int, direction: Direction) -> int:
    """
    Index of the nearest station strictly ahead of ``waypoint_index``.

    Falls back to the far end of the station list when nothing is ahead.
    """
    stations = route.stations
    if direction is Direction.FORWARD:
        for i, station in enumerate(stations):
            if station.waypoint_index > waypoint_index:
                return i
        return max(len(stations) - 1, 0)
    for i in range(len(stations) - 1, -1, -1):
        if stations[i].waypoint_index < waypoint_index:
            return i
    return 0


class TraversalStateMachine:
    """
    Advances a simulated train through depot, service and returning phases.

    Each call to :meth:`step` moves the train by elapsed time along its
    current segment, holds it at stations for their dwell time, and reverses
    it at route ends where the route allows.
    """

    def __init__(self, eps: float = CANONICAL_EPS,
                 default_segment_seconds: float = DEFAULT_SEGMENT_SECONDS):
        self.eps = eps
        self.default_segment_seconds = default_segment_seconds

    @staticmethod
    def waypoints_for(state: RouteTrainState, route: Route) -> Sequence[Vec3]:
        if state.phase is Phase.DEPOT:
            return route.depot_path
        return route.world_waypoints

    def step(self, state: RouteTrainState, route: Route, dt: float, now: float) -> Optional[Pose]:
        """
        Advance ``state`` by ``dt`` seconds.

        Args:
            state: Train state, mutated in place.
            route: The train's route.
            dt: Elapsed seconds since the previous step.
            now: Current timestamp, used for dwell timing.

        Returns:
            (position, heading) for the train, or None when no usable pose
            could be computed this tick.
        """
        if state.phase is Phase.DEPOT and len(route.depot_path) < 2:
            self._enter_service(state, route)

        waypoints = self.waypoints_for(state, route)
        if not waypoints:
            logger.warning(f"Train {state.train_id}: route {route.route_id} has no {state.phase.value} waypoints")
            return None

        if not self.validate_index(state, len(waypoints)):
            state.t = 0.0

        in_service = state.phase is not Phase.DEPOT
        if in_service:
            self._check_arrival(state, route, now)
            if self._hold_for_dwell(state, route, now):
                return self.pose(state, route)

        max_index = len(waypoints) - 1
        if self._can_move(state, max_index):
            self._advance(state, route, waypoints, dt)
        elif in_service and route.allow_reverse:
            self._reverse_at_boundary(state, route, max_index)

        if state.phase is not Phase.DEPOT:
            self._check_arrival(state, route, now)

        return self.pose(state, route)

    def validate_index(self, state: RouteTrainState, waypoint_count: int) -> bool:
        """Clamp ``state.waypoint_index`` into range; False if it had to be fixed."""
        max_index = waypoint_count - 1
        if 0 <= state.waypoint_index <= max_index:
            return True
        old = state.waypoint_index
        state.waypoint_index = max(0, min(max_index, old))
        logger.warning(
            f"Train {state.train_id} had invalid waypoint index {old} (max: {max_index}) "
            f"in phase {state.phase.value}; clamped to {state.waypoint_index}"
        )
        return False

    def segment_time(self, state: RouteTrainState, route: Route, current: Vec3, nxt: Vec3,
                     waypoint_count: int) -> float:
        """Seconds the train needs for the segment it is on."""
        if state.phase is Phase.DEPOT:
            if route.max_speed <= 0:
                return 0.0
            return distance(current, nxt) / route.max_speed

        seconds = route.duration_from_waypoint(state.direction, state.waypoint_index)
        if seconds is not None:
            return seconds
        journey = route.journey_time.get(state.direction)
        if journey is None:
            return self.default_segment_seconds
        return journey * 60 / max(waypoint_count - 1, 1)

    def location(self, state: RouteTrainState, route: Route) -> Tuple[int, float]:
        """Canonical 1-based (segment, fraction) on the main route."""
        count = len(route.world_waypoints)
        segment, t = segment_from_waypoint(state.waypoint_index, state.t, state.direction, count, self.eps)
        return canonicalize(segment, t, state.direction, max(count - 1, 1), self.eps)

    def pose(self, state: RouteTrainState, route: Route) -> Optional[Pose]:
        """Interpolated position and heading, or None if it is not usable."""
        waypoints = self.waypoints_for(state, route)
        idx = state.waypoint_index
        if not 0 <= idx < len(waypoints):
            return None

        current = waypoints[idx]
        nxt_idx = idx + 1 if state.direction is Direction.FORWARD else idx - 1
        if 0 <= nxt_idx < len(waypoints):
            nxt = waypoints[nxt_idx]
            position = lerp(current, nxt, state.t)
            direction = heading(current, nxt)
        else:
            prev_idx = idx - 1 if state.direction is Direction.FORWARD else idx + 1
            position = current
            direction = heading(waypoints[prev_idx], current) if 0 <= prev_idx < len(waypoints) else (0.0, 0.0, 1.0)

        if not is_finite(position):
            logger.warning(f"Train {state.train_id} generated invalid position {position}")
            return None
        return position, direction

    @staticmethod
    def _can_move(state: RouteTrainState, max_index: int) -> bool:
        if state.direction is Direction.FORWARD:
            return state.waypoint_index < max_index
        return state.waypoint_index > 0

    def _advance(self, state: RouteTrainState, route: Route, waypoints: Sequence[Vec3], dt: float) -> None:
        idx = state.waypoint_index
        step = 1 if state.direction is Direction.FORWARD else -1
        current, nxt = waypoints[idx], waypoints[idx + step]

        seconds = self.segment_time(state, route, current, nxt, len(waypoints))
        state.t = 1.0 if seconds <= 0 else state.t + dt / seconds
        if state.t < 1:
            return

        state.t = 0.0
        state.waypoint_index += step
        self.validate_index(state, len(waypoints))

        if state.phase is Phase.DEPOT and state.waypoint_index >= len(waypoints) - 1:
            self._enter_service(state, route)

    def _enter_service(self, state: RouteTrainState, route: Route) -> None:
        state.phase = Phase.SERVICE
        state.direction = Direction.FORWARD
        state.waypoint_index = route.merge_point
        state.t = 0.0
        state.next_station_index = next_station_index(route, route.merge_point - 1, Direction.FORWARD)
        self.validate_index(state, len(route.world_waypoints))
        logger.info(f"Train {state.train_id} entered service on route {route.route_id}")

    def _flip(self, state: RouteTrainState, route: Route) -> None:
        state.direction = state.direction.opposite
        state.phase = Phase.RETURNING if state.direction is Direction.REVERSE else Phase.SERVICE
        state.next_station_index = next_station_index(route, state.waypoint_index, state.direction)

    def _reverse_at_boundary(self, state: RouteTrainState, route: Route, max_index: int) -> None:
        state.waypoint_index = max_index if state.direction is Direction.FORWARD else 0
        state.t = 0.0
        self._flip(state, route)
        logger.info(
            f"Train {state.train_id} reached the end of route {route.route_id}, "
            f"now heading {state.direction.value}"
        )

    def _target_station(self, state: RouteTrainState, route: Route) -> Optional[Station]:
        if 0 <= state.next_station_index < len(route.stations):
            return route.stations[state.next_station_index]
        return None

    def _check_arrival(self, state: RouteTrainState, route: Route, now: float) -> None:
        if state.dwell_start_time is not None:
            return
        step = 1 if state.direction is Direction.FORWARD else -1

        # Skip targets the train is already past
        station = self._target_station(state, route)
        while station is not None and (station.waypoint_index - state.waypoint_index) * step < 0:
            state.next_station_index += step
            station = self._target_station(state, route)

        if station is None or station.waypoint_index != state.waypoint_index or state.t > self.eps:
            return
        state.dwell_start_time = now
        logger.info(f"Train {state.train_id} arrived at {station.name}")

    def _hold_for_dwell(self, state: RouteTrainState, route: Route, now: float) -> bool:
        if state.dwell_start_time is None:
            return False
        station = self._target_station(state, route)
        if station is None:
            state.dwell_start_time = None
            return False
        if now - state.dwell_start_time < station.dwell_seconds:
            return True

        state.dwell_start_time = None
        state.next_station_index += 1 if state.direction is Direction.FORWARD else -1

        if station.is_terminus and route.allow_reverse:
            self._flip(state, route)
            self.validate_index(state, len(route.world_waypoints))
            logger.info(
                f"Train {state.train_id} reversed at {station.name}, now heading "
                f"{state.direction.value}"
            )
        else:
            logger.info(f"Train {state.train_id} departed {station.name}")
        return False
