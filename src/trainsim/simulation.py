"""
Tick loop tying together sensed tracking, simulated traversal and broadcasting.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from .broadcaster import MAP_UPDATE, SCHEDULE_UPDATE, TRIP_MODIFICATION, Broadcaster
from .catalog import RouteCatalog, is_peak_hour, operator_color
from .config import HISTORY_ALPHA, SIMULATED_PREFIX, SimulationConfig
from .estimator import ScalarEstimator
from .eta import ETAPredictor
from .geometry import canonicalize, is_finite, match_position
from .history import SegmentHistory
from .models import (
    Direction,
    Phase,
    Route,
    RouteTrainState,
    Snapshot,
    StationEntry,
    TrackState,
    TrainEntity,
    TripModification,
    Vec3,
)
from .traversal import TraversalStateMachine
from .trip_mods import TripModificationManager

logger = logging.getLogger(__name__)

PositionSource = Callable[[], Dict[str, Vec3]]


class SimulationContext:
    """Per-simulation registries, keyed by train identifier."""

    def __init__(self, history_alpha: float = HISTORY_ALPHA):
        self.track_states: Dict[str, TrackState] = {}
        self.route_states: Dict[str, RouteTrainState] = {}
        self.history = SegmentHistory(history_alpha)
        self.estimators: Dict[str, ScalarEstimator] = {}
        self.live_delays: Dict[str, float] = {}
        self.entities: Dict[str, TrainEntity] = {}
        self.last_seen: Dict[str, int] = {}  # sensed train -> tick number
        self.last_spawn: Dict[str, float] = {}  # route id -> timestamp
        self.tick_count = 0

    def clear(self) -> None:
        """Drop every registry entry and reset the tick counter."""
        self.track_states.clear()
        self.route_states.clear()
        self.history.clear()
        self.estimators.clear()
        self.live_delays.clear()
        self.entities.clear()
        self.last_seen.clear()
        self.last_spawn.clear()
        self.tick_count = 0


class Simulation:
    """
    Single-threaded simulation of sensed and simulated trains.

    Each :meth:`tick` applies queued spawns and despawns, optionally
    auto-spawns trains, updates every sensed train and then every simulated
    train, evicts sensed trains that have gone quiet, and publishes one
    snapshot per train on the ``map.update`` topic. A failure while
    updating one train is logged and does not affect the others.
    """

    def __init__(self, catalog: RouteCatalog, broadcaster: Optional[Broadcaster] = None,
                 config: Optional[SimulationConfig] = None,
                 clock: Callable[[], float] = time.time,
                 context: Optional[SimulationContext] = None,
                 trip_mods: Optional[TripModificationManager] = None):
        """
        Initialize the simulation.

        Args:
            catalog: Routes available to trains.
            broadcaster: Snapshot sink (a new one is created if omitted).
            config: Tunables (defaults if omitted).
            clock: Time source in seconds.
            context: Registries to operate on (a new one if omitted).
            trip_mods: Trip modification registry (a new one if omitted).
        """
        self.catalog = catalog
        self.config = config or SimulationConfig()
        self.clock = clock
        self.broadcaster = broadcaster or Broadcaster(clock=clock)
        self.context = context or SimulationContext(self.config.history_alpha)
        self.trip_mods = trip_mods or TripModificationManager()
        self.traversal = TraversalStateMachine(self.config.eps, self.config.default_segment_seconds)
        self.eta = ETAPredictor(
            self.context.history,
            default_segment_seconds=self.config.default_segment_seconds,
            arrival_threshold=self.config.arrival_threshold,
        )
        self._pending_spawns: List[Tuple[str, str]] = []  # (train_id, route_id)
        self._pending_despawns: List[str] = []

    @staticmethod
    def current_hour(now: float) -> int:
        return int(now // 3600) % 24

    # ------------------------------------------------------------------
    # Controller requests (applied at the next tick boundary)
    # ------------------------------------------------------------------

    def request_route(self, route_id: str, requester: Optional[str] = None) -> Optional[str]:
        """
        Queue a train to spawn on ``route_id``.

        Args:
            route_id: Requested route.
            requester: Name of whoever asked; used in the train name.

        Returns:
            The new train's identifier, or None if the request was rejected
            (unknown route, outside operating hours, or name already in use).
        """
        if not self.catalog.has_route(route_id):
            logger.warning(f"Rejected request for unknown route {route_id}")
            return None

        now = self.clock()
        hour = self.current_hour(now)
        if not self.catalog.is_operational(route_id, hour):
            logger.warning(f"Rejected request for route {route_id}: not operational at hour {hour}")
            return None

        train_id = self._train_name(route_id, requester, now)
        if train_id in self.context.route_states or any(tid == train_id for tid, _ in self._pending_spawns):
            logger.warning(f"Rejected request for route {route_id}: train {train_id} already exists")
            return None

        self._pending_spawns.append((train_id, route_id))
        logger.info(f"Queued train {train_id} for route {route_id}")
        return train_id

    def despawn(self, train_id: str) -> bool:
        """Queue removal of a simulated train; False if it is unknown."""
        known = train_id in self.context.route_states or any(
            tid == train_id for tid, _ in self._pending_spawns
        )
        if known:
            self._pending_despawns.append(train_id)
        return known

    def remove_entity(self, train_id: str) -> None:
        """Remove a train's world entity; its state is dropped on the next update."""
        self.context.entities.pop(train_id, None)

    def set_live_delay(self, train_id: str, seconds: float) -> None:
        self.context.live_delays[train_id] = float(seconds)

    # ------------------------------------------------------------------
    # Tick loop
    # ------------------------------------------------------------------

    def tick(self, dt: float, sensed_positions: Optional[Dict[str, Vec3]] = None) -> List[Snapshot]:
        """
        Advance the simulation by one tick.

        Args:
            dt: Seconds elapsed since the previous tick.
            sensed_positions: World positions of externally driven trains.

        Returns:
            The snapshots published this tick.
        """
        ctx = self.context
        now = self.clock()
        ctx.tick_count += 1

        self._apply_pending()
        if self.config.auto_spawn:
            self._auto_spawn(now)

        snapshots: List[Snapshot] = []

        for train_id, position in (sensed_positions or {}).items():
            if self.is_simulated(train_id):
                continue
            try:
                snapshot = self._update_sensed(train_id, position, now)
            except Exception as e:
                logger.error(f"Error updating sensed train {train_id}: {e}", exc_info=True)
                continue
            if snapshot is not None:
                snapshots.append(snapshot)

        for train_id, state in list(ctx.route_states.items()):
            try:
                snapshot = self._update_simulated(train_id, state, dt, now)
            except Exception as e:
                logger.error(f"Error updating simulated train {train_id}: {e}", exc_info=True)
                continue
            if snapshot is not None:
                snapshots.append(snapshot)

        for snapshot in snapshots:
            self.broadcaster.publish(MAP_UPDATE, snapshot.as_dict())

        self._evict_stale()
        self.trip_mods.cleanup_expired(now)
        return snapshots

    def run(self, ticks: int, dt: Optional[float] = None,
            positions_source: Optional[PositionSource] = None,
            sleep: Optional[Callable[[float], None]] = None) -> List[Snapshot]:
        """
        Run ``ticks`` ticks back to back.

        Args:
            ticks: Number of ticks.
            dt: Seconds per tick (defaults to the configured tick interval).
            positions_source: Called once per tick for sensed positions.
            sleep: Called with ``dt`` between ticks, e.g. ``time.sleep``.

        Returns:
            All snapshots published during the run.
        """
        if dt is None:
            dt = self.config.tick_interval
        published: List[Snapshot] = []
        for i in range(ticks):
            positions = positions_source() if positions_source else None
            published.extend(self.tick(dt, positions))
            if sleep is not None and i < ticks - 1:
                sleep(dt)
        return published

    # ------------------------------------------------------------------
    # Out-of-band broadcasts
    # ------------------------------------------------------------------

    def broadcast_schedule_update(self, train_id: str, segment_times: Dict[int, float]) -> None:
        """Seed the train's segment history and announce the new times."""
        self.context.history.seed(train_id, segment_times)
        self.broadcaster.publish(SCHEDULE_UPDATE, {
            "trainId": train_id,
            "segmentTimes": {int(k): float(v) for k, v in segment_times.items()},
        })
        logger.info(f"Broadcasted schedule update for train {train_id}")

    def broadcast_trip_modification(self, modification: TripModification) -> None:
        """Register a trip modification and announce it."""
        self.trip_mods.add_modification(modification)
        self.broadcaster.publish(TRIP_MODIFICATION, modification.as_dict())
        logger.info(
            f"Broadcasted trip modification: {modification.modification_type} "
            f"for trip {modification.trip_id}"
        )

    # ------------------------------------------------------------------
    # Sensed trains
    # ------------------------------------------------------------------

    def is_simulated(self, train_id: str) -> bool:
        """True for trains driven by this simulation rather than sensed."""
        return (
            train_id.startswith(SIMULATED_PREFIX)
            or train_id in self.context.route_states
            or train_id in self.context.entities
        )

    def resolve_route_key(self, train_id: str) -> str:
        """Longest catalog route id appearing in the name as ``_<routeId>``."""
        matches = [rid for rid in self.catalog.route_ids() if f"_{rid}" in train_id]
        if not matches:
            return self.config.default_route_key
        return max(matches, key=len)

    def _update_sensed(self, train_id: str, position: Vec3, now: float) -> Optional[Snapshot]:
        ctx = self.context
        if not is_finite(position):
            logger.warning(f"Train {train_id} reported invalid position {position}")
            return None

        route_key = self.resolve_route_key(train_id)
        state = ctx.track_states.get(train_id)
        if state is not None:
            route_key = self.trip_mods.shape_for(
                train_id,
                self._current_station(state),
                state.last_segment,
                state.direction is Direction.REVERSE,
                route_key,
            )

        route = self.catalog.find_route(route_key)
        if route is None:
            logger.warning(f"No route found for {route_key}, skipping train {train_id}")
            return None
        if len(route.world_waypoints) < 2:
            logger.warning(f"Route {route_key} has no usable waypoints, skipping train {train_id}")
            return None

        ctx.last_seen[train_id] = ctx.tick_count
        if state is None:
            state = self._new_track_state(route, now)
            ctx.track_states[train_id] = state
            logger.info(f"Tracking train {train_id} on route {route_key}")
        estimator = ctx.estimators.get(train_id)
        if estimator is None:
            estimator = ctx.estimators[train_id] = ScalarEstimator(
                self.config.measurement_noise, self.config.initial_uncertainty
            )

        max_segment = route.segment_count
        if route.allow_reverse:
            self._turn_at_terminus(train_id, state, route, max_segment)

        segment, t, point = match_position(route.world_waypoints, position)
        segment, t = canonicalize(segment, t, state.direction, max_segment, self.config.eps)
        if not route.allow_reverse:
            self._restart_loop(train_id, state, route, max_segment, segment, t, now)
        state.last_segment, state.last_t = segment, t

        etas = self.eta.predict(
            train_id, route, state, estimator, now, ctx.live_delays.get(train_id, 0.0)
        )
        return Snapshot(
            train_id=train_id,
            segment=segment,
            fraction=t,
            station_etas=etas,
            world_position=point,
            route_key=route_key,
            direction=state.direction,
        )

    @staticmethod
    def _new_track_state(route: Route, now: float) -> TrackState:
        stations = sorted(
            (StationEntry(s.name, s.waypoint_index) for s in route.stations),
            key=lambda e: e.waypoint_index,
        )
        return TrackState(
            last_segment=1,
            last_t=0.0,
            departure_time=now,
            direction=Direction.FORWARD,
            station_list=stations,
        )

    @staticmethod
    def _current_station(state: TrackState) -> Optional[str]:
        # Last station reached
        idx = state.station_pointer - 1
        if 0 <= idx < len(state.station_list):
            return state.station_list[idx].name
        return None

    def _turn_at_terminus(self, train_id: str, state: TrackState, route: Route,
                          max_segment: int) -> None:
        threshold = self.config.reverse_threshold
        if (state.direction is Direction.FORWARD
                and state.last_segment >= max_segment and state.last_t >= threshold):
            state.direction = Direction.REVERSE
            state.last_segment, state.last_t = max_segment, threshold
            logger.info(f"Train {train_id} reached the end of {route.route_id}, reversing")
        elif (state.direction is Direction.REVERSE
                and state.last_segment <= 1 and state.last_t <= 1 - threshold):
            state.direction = Direction.FORWARD
            state.last_segment, state.last_t = 1, 1 - threshold
            logger.info(f"Train {train_id} reached the start of {route.route_id}, reversing")

    def _restart_loop(self, train_id: str, state: TrackState, route: Route, max_segment: int,
                      segment: int, t: float, now: float) -> None:
        """Start a non-reversible route over once the train is seen back at its start."""
        threshold = self.config.reverse_threshold
        was_at_end = state.last_segment == max_segment and state.last_t >= threshold
        if max_segment == 1:
            back_at_start = t <= 1 - threshold
        else:
            back_at_start = segment < max_segment
        if was_at_end and back_at_start:
            state.direction = Direction.FORWARD
            state.station_pointer = 0
            state.departure_time = now
            logger.info(f"Train {train_id} completed {route.route_id}, starting over")

    # ------------------------------------------------------------------
    # Simulated trains
    # ------------------------------------------------------------------

    def _update_simulated(self, train_id: str, state: RouteTrainState, dt: float,
                          now: float) -> Optional[Snapshot]:
        ctx = self.context
        entity = ctx.entities.get(train_id)
        if entity is None:
            logger.warning(f"Train {train_id} has no entity, dropping its state")
            del ctx.route_states[train_id]
            return None

        route = self.catalog.find_route(state.route_id)
        if route is None:
            logger.warning(f"No route found for {state.route_id}, skipping train {train_id}")
            return None

        pose = self.traversal.step(state, route, dt, now)
        if pose is not None:
            entity.position, entity.heading = pose

        if state.phase is Phase.DEPOT:
            return None

        segment, t = self.traversal.location(state, route)
        return Snapshot(
            train_id=train_id,
            segment=segment,
            fraction=t,
            station_etas={},
            world_position=entity.position,
            route_key=route.route_id,
            direction=state.direction,
            phase=state.phase,
        )

    def _apply_pending(self) -> None:
        spawns, self._pending_spawns = self._pending_spawns, []
        for train_id, route_id in spawns:
            self._spawn(train_id, self.catalog.get_route(route_id))

        despawns, self._pending_despawns = self._pending_despawns, []
        for train_id in despawns:
            self.context.route_states.pop(train_id, None)
            self.context.entities.pop(train_id, None)
            self.context.live_delays.pop(train_id, None)
            logger.info(f"Despawned train {train_id}")

    def _auto_spawn(self, now: float) -> None:
        hour = self.current_hour(now)
        peak = is_peak_hour(hour)
        for route in self.catalog.available_routes():
            if not self.catalog.is_operational(route.route_id, hour):
                continue
            last_spawn = self.context.last_spawn.get(route.route_id, 0.0)
            interval = self.catalog.frequency(route.route_id, peak) * 60
            if now - last_spawn >= interval:
                self._spawn(self._train_name(route.route_id, None, now), route)
                self.context.last_spawn[route.route_id] = now

    def _spawn(self, train_id: str, route: Route) -> None:
        if route.depot_spawn is not None:
            position = route.depot_spawn
        elif route.depot_path:
            position = route.depot_path[0]
        else:
            position = route.world_waypoints[0]

        self.context.entities[train_id] = TrainEntity(
            train_id=train_id,
            label=f"{route.route_id}: {route.display_name}",
            position=position,
            color=operator_color(route.operator),
        )
        self.context.route_states[train_id] = RouteTrainState(train_id=train_id, route_id=route.route_id)
        logger.info(f"Spawned train {train_id} for route {route.route_id} at depot")

    @staticmethod
    def _train_name(route_id: str, requester: Optional[str], now: float) -> str:
        if requester:
            return f"{requester}_{route_id}"
        return f"{SIMULATED_PREFIX}{route_id}_{now}"

    def _evict_stale(self) -> None:
        ctx = self.context
        limit = self.config.stale_track_ticks
        stale = [tid for tid, seen in ctx.last_seen.items() if ctx.tick_count - seen > limit]
        for train_id in stale:
            ctx.track_states.pop(train_id, None)
            ctx.estimators.pop(train_id, None)
            ctx.live_delays.pop(train_id, None)
            del ctx.last_seen[train_id]
        if stale:
            logger.info(f"Evicted {len(stale)} stale sensed train(s)")
