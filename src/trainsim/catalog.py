"""Read-only route catalog."""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .config import PEAK_HOURS
from .models import Direction, Operator, Route, ServiceType, Station

logger = logging.getLogger(__name__)

# Operator -> RGB display colour
OPERATOR_COLORS: Mapping[Operator, Tuple[int, int, int]] = MappingProxyType({
    Operator.CONNECT: (13, 105, 172),
    Operator.METRO: (163, 162, 165),
    Operator.WATERLINE: (13, 105, 172),
    Operator.AIRLINK: (245, 205, 48),
    Operator.EXPRESS: (75, 151, 75),
    Operator.TRAINING: (218, 133, 65),
})

_missing = set(Operator) - set(OPERATOR_COLORS)
if _missing:
    raise RuntimeError(f"No display colour for operator(s): {sorted(o.value for o in _missing)}")


def operator_color(operator: Operator) -> Tuple[int, int, int]:
    return OPERATOR_COLORS[operator]


def is_peak_hour(hour: int) -> bool:
    return any(start <= hour <= end for start, end in PEAK_HOURS)


class RouteCatalog:
    """Immutable table of routes keyed by route identifier."""

    def __init__(self, routes: Iterable[Route]):
        """
        Build the catalog.

        Args:
            routes: Route definitions. Later routes replace earlier ones
                with the same identifier.
        """
        table: Dict[str, Route] = {}
        for route in routes:
            table[route.route_id] = route
        self._routes = MappingProxyType(table)

        for route_id in self._routes:
            self.validate_route(route_id)

    @property
    def routes(self) -> Mapping[str, Route]:
        return self._routes

    def __contains__(self, route_id: str) -> bool:
        return route_id in self._routes

    def __len__(self) -> int:
        return len(self._routes)

    def route_ids(self) -> List[str]:
        return list(self._routes)

    def has_route(self, route_id: str) -> bool:
        return route_id in self._routes

    def get_route(self, route_id: str) -> Route:
        """
        Get a route by identifier.

        Raises:
            ValueError: If the route is not in the catalog.
        """
        if route_id not in self._routes:
            raise ValueError(f"Route {route_id} not found")
        return self._routes[route_id]

    def find_route(self, route_id: str) -> Optional[Route]:
        return self._routes.get(route_id)

    def available_routes(self, operator: Optional[Operator] = None) -> List[Route]:
        """All routes, optionally only those run by ``operator``."""
        routes = list(self._routes.values())
        if operator is not None:
            routes = [r for r in routes if r.operator == operator]
        return routes

    def is_operational(self, route_id: str, hour: int) -> bool:
        """True if ``hour`` (0-23) falls inside the route's operating window."""
        route = self._routes.get(route_id)
        if route is None:
            return False
        start, end = route.operating_hours
        return start <= hour <= end

    def frequency(self, route_id: str, is_peak: bool) -> float:
        """Minutes between trains on the route."""
        route = self._routes.get(route_id)
        if route is None:
            return 10.0
        if is_peak and route.peak_frequency:
            return route.peak_frequency
        return route.base_frequency

    def station_indices(self, route_id: str) -> Dict[str, int]:
        """Station name -> waypoint index for a route."""
        route = self.get_route(route_id)
        return {s.name: s.waypoint_index for s in route.stations}

    def validate_route(self, route_id: str) -> bool:
        """
        Check waypoint-count parity and station indices for a route.

        Problems are logged; nothing is raised.

        Returns:
            True if the route is consistent.
        """
        route = self._routes.get(route_id)
        if route is None:
            return False

        if len(route.world_waypoints) != len(route.ui_waypoints):
            logger.warning(
                f"Route {route_id}: mismatch between world ({len(route.world_waypoints)}) "
                f"and UI ({len(route.ui_waypoints)}) waypoints"
            )
            return False

        for station in route.stations:
            if not 0 <= station.waypoint_index < len(route.world_waypoints):
                logger.warning(
                    f"Route {route_id}: station '{station.name}' has invalid waypoint index "
                    f"{station.waypoint_index} (max: {len(route.world_waypoints) - 1})"
                )
                return False

        return True


def _timing(forward: Dict[int, float], reverse: Dict[int, float]) -> Dict[Direction, Dict[int, float]]:
    return {Direction.FORWARD: forward, Direction.REVERSE: reverse}


def default_catalog() -> RouteCatalog:
    """Catalog of the built-in routes."""
    return RouteCatalog([
        Route(
            route_id="Main",
            display_name="Legacy Main Line",
            world_waypoints=(
                (196.7, 0.5, 270.8),
                (-18.192, 0.5, -86.013),
                (-293.0, 0.5, -86.909),  # Station A
                (-565.855, 0.5, -86.909),
            ),
            ui_waypoints=((0.161, 0.8), (0.161, 0.6), (0.161, 0.4), (0.161, 0.2)),
            stations=(Station("StationA", 2, dwell_seconds=0),),
            allow_reverse=False,
            segment_durations=_timing({0: 14, 1: 13, 2: 9}, {0: 14, 1: 13, 2: 9}),
            journey_time={Direction.FORWARD: 1, Direction.REVERSE: 1},
        ),
        Route(
            route_id="R001",
            display_name="Stepford Central <> Airport Central",
            operator=Operator.CONNECT,
            line_id="T1",
            service_type=ServiceType.EXPRESS,
            world_waypoints=((0.0, 0.5, 0.0), (100.0, 0.5, 0.0), (200.0, 0.5, 0.0)),
            ui_waypoints=((0.3, 0.5), (0.5, 0.5), (0.7, 0.5)),
            depot_path=((-50.0, 0.5, -20.0), (-25.0, 0.5, -10.0), (0.0, 0.5, 0.0)),
            depot_spawn=(-50.0, 0.5, -25.0),
            merge_point=0,
            stations=(
                Station("Stepford Central", 0, dwell_seconds=1),
                Station("Airport Central", 2, dwell_seconds=1, is_terminus=True),
            ),
            allow_reverse=True,
            journey_time={Direction.FORWARD: 18, Direction.REVERSE: 18},
            segment_durations=_timing({0: 10, 1: 8}, {0: 8, 1: 10}),
            max_speed=40,
            points_per_minute=12,
            base_frequency=10,
            peak_frequency=5,
            operating_hours=(5, 24),
        ),
        Route(
            route_id="R029",
            display_name="Stepford Victoria <> Beechley",
            operator=Operator.METRO,
            line_id="Metro1",
            service_type=ServiceType.LOCAL,
            world_waypoints=((-100.0, 0.5, 100.0), (-50.0, 0.5, 150.0)),
            ui_waypoints=((0.2, 0.7), (0.4, 0.8)),
            depot_path=((-120.0, 0.5, 80.0), (-100.0, 0.5, 100.0)),
            depot_spawn=(-125.0, 0.5, 75.0),
            merge_point=0,
            stations=(
                Station("Stepford Victoria", 0, dwell_seconds=20),
                Station("Beechley", 1, dwell_seconds=20, is_terminus=True),
            ),
            allow_reverse=True,
            journey_time={Direction.FORWARD: 4, Direction.REVERSE: 4},
            segment_durations=_timing({0: 4}, {0: 4}),
            max_speed=25,
            points_per_minute=18,
            base_frequency=3,
            operating_hours=(6, 23),
        ),
        Route(
            route_id="R026",
            display_name="Stepford Victoria <> Llyn-by-the-Sea",
            operator=Operator.CONNECT,
            line_id="ConnectWest",
            service_type=ServiceType.EXPRESS,
            world_waypoints=(
                (-100.0, 0.5, 100.0),
                (-150.0, 0.5, 200.0),
                (-200.0, 0.5, 300.0),
                (-300.0, 0.5, 500.0),
            ),
            ui_waypoints=((0.25, 0.6), (0.15, 0.7), (0.1, 0.8), (0.05, 0.9)),
            depot_path=((-120.0, 0.5, 80.0), (-100.0, 0.5, 100.0)),
            depot_spawn=(-125.0, 0.5, 75.0),
            merge_point=0,
            stations=(
                Station("Stepford Victoria", 0, dwell_seconds=30),
                Station("Llyn-by-the-Sea", 3, dwell_seconds=30, is_terminus=True),
            ),
            allow_reverse=True,
            allowed_train_classes=("Class68", "Class444"),
            journey_time={Direction.FORWARD: 34, Direction.REVERSE: 42},
            segment_durations=_timing({0: 10, 1: 12, 2: 12}, {0: 14, 1: 14, 2: 14}),
            max_speed=50,
            points_per_minute=15,
            base_frequency=20,
            operating_hours=(6, 22),
        ),
        Route(
            route_id="R001X",
            display_name="Stepford Central <> Airport Central (Express)",
            operator=Operator.CONNECT,
            line_id="T1",
            service_type=ServiceType.EXPRESS,
            world_waypoints=((0.0, 0.5, 0.0), (100.0, 0.5, 0.0), (200.0, 0.5, 0.0)),
            ui_waypoints=((0.3, 0.5), (0.5, 0.5), (0.7, 0.5)),
            depot_path=((-50.0, 0.5, -20.0), (-25.0, 0.5, -10.0), (0.0, 0.5, 0.0)),
            depot_spawn=(-50.0, 0.5, -25.0),
            merge_point=0,
            stations=(
                Station("Stepford Central", 0, dwell_seconds=20),
                Station("Airport Central", 2, dwell_seconds=20, is_terminus=True),
            ),
            allow_reverse=True,
            journey_time={Direction.FORWARD: 12, Direction.REVERSE: 12},
            segment_durations=_timing({0: 8, 1: 6}, {0: 6, 1: 8}),
            max_speed=50,
            points_per_minute=15,
            base_frequency=15,
            operating_hours=(7, 22),
        ),
    ])
