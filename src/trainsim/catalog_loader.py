"""Route catalog loader for CSV route tables."""

import io
import logging
import os
import zipfile
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd
import requests

from .catalog import RouteCatalog
from .models import Direction, Operator, Route, ServiceType, Station, Vec2, Vec3

logger = logging.getLogger(__name__)

ROUTES_FILE = "routes.csv"
WAYPOINTS_FILE = "waypoints.csv"
STATIONS_FILE = "stations.csv"
SEGMENT_TIMES_FILE = "segment_times.csv"

_REQUIRED_COLUMNS = {
    ROUTES_FILE: {"route_id"},
    WAYPOINTS_FILE: {"route_id", "path", "seq", "x", "y"},
    STATIONS_FILE: {"route_id", "name", "waypoint_index"},
    SEGMENT_TIMES_FILE: {"route_id", "direction", "segment_index", "seconds"},
}


def _missing(value) -> bool:
    return value is None or (not isinstance(value, str) and pd.isna(value))


def _as_bool(value) -> bool:
    if _missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _opt_float(value) -> Optional[float]:
    return None if _missing(value) else float(value)


def _float_or(value, default: float) -> float:
    parsed = _opt_float(value)
    return default if parsed is None else parsed


class CatalogLoader:
    """
    Builds a :class:`RouteCatalog` from four tables.

    ``routes.csv`` has one row per route (only ``route_id`` is required).
    ``waypoints.csv`` lists points per route and ``path`` (``world``,
    ``ui`` or ``depot``) in ``seq`` order. ``stations.csv`` lists stops and
    the optional ``segment_times.csv`` gives seconds per segment and
    direction.
    """

    def __init__(self):
        self.routes: Dict[str, Route] = {}

    def load_from_files(self, routes_path: str, waypoints_path: str, stations_path: str,
                        segment_times_path: Optional[str] = None) -> RouteCatalog:
        """Load catalog tables from local CSV files."""
        logger.info("Loading route catalog from local files")
        segment_times = pd.read_csv(segment_times_path) if segment_times_path else None
        return self.load_frames(
            pd.read_csv(routes_path),
            pd.read_csv(waypoints_path),
            pd.read_csv(stations_path),
            segment_times,
        )

    def load_from_directory(self, directory: str) -> RouteCatalog:
        """Load the standard file names from ``directory``."""
        segment_times_path = os.path.join(directory, SEGMENT_TIMES_FILE)
        return self.load_from_files(
            os.path.join(directory, ROUTES_FILE),
            os.path.join(directory, WAYPOINTS_FILE),
            os.path.join(directory, STATIONS_FILE),
            segment_times_path if os.path.exists(segment_times_path) else None,
        )

    def load_from_zip(self, source: Union[str, bytes]) -> RouteCatalog:
        """Load the standard file names from a zip archive path or its bytes."""
        archive = io.BytesIO(source) if isinstance(source, bytes) else source
        with zipfile.ZipFile(archive) as zip_file:
            names = set(zip_file.namelist())

            def read(name: str) -> Optional[pd.DataFrame]:
                if name not in names:
                    return None
                return pd.read_csv(io.BytesIO(zip_file.read(name)))

            frames = [read(ROUTES_FILE), read(WAYPOINTS_FILE), read(STATIONS_FILE)]
            if any(frame is None for frame in frames):
                raise ValueError(f"Archive must contain {ROUTES_FILE}, {WAYPOINTS_FILE} and {STATIONS_FILE}")
            return self.load_frames(*frames, read(SEGMENT_TIMES_FILE))

    def load_from_url(self, url: str, timeout: float = 30) -> RouteCatalog:
        """Download a zipped catalog and load it."""
        logger.info(f"Downloading route catalog from {url}")
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to download route catalog: {e}")
            raise
        return self.load_from_zip(response.content)

    def load_frames(self, routes: pd.DataFrame, waypoints: pd.DataFrame, stations: pd.DataFrame,
                    segment_times: Optional[pd.DataFrame] = None) -> RouteCatalog:
        """
        Build the catalog from already-parsed tables.

        Raises:
            ValueError: If a table lacks a required column, or a route has no
                world waypoints.
        """
        routes, waypoints, stations = routes.copy(), waypoints.copy(), stations.copy()
        tables = {ROUTES_FILE: routes, WAYPOINTS_FILE: waypoints, STATIONS_FILE: stations}
        if segment_times is not None:
            segment_times = segment_times.copy()
            tables[SEGMENT_TIMES_FILE] = segment_times
        for name, frame in tables.items():
            missing = _REQUIRED_COLUMNS[name] - set(frame.columns)
            if missing:
                raise ValueError(f"{name} is missing column(s): {', '.join(sorted(missing))}")
            frame["route_id"] = frame["route_id"].astype(str)

        paths = self._load_waypoints(waypoints)
        station_map = self._load_stations(stations)
        timings = self._load_segment_times(segment_times) if segment_times is not None else {}

        self.routes = {}
        for row in routes.to_dict("records"):
            route_id = row["route_id"]
            route_paths = paths.get(route_id, {})
            world = route_paths.get("world", [])
            if len(world) < 2:
                raise ValueError(f"Route {route_id} needs at least two world waypoints")
            self.routes[route_id] = self._build_route(
                row,
                world=world,
                ui=[(p[0], p[1]) for p in route_paths.get("ui", [])],
                depot=route_paths.get("depot", []),
                stations=station_map.get(route_id, []),
                timing=timings.get(route_id, {}),
            )

        logger.info(f"Loaded {len(self.routes)} routes")
        return RouteCatalog(self.routes.values())

    @staticmethod
    def _load_waypoints(frame: pd.DataFrame) -> Dict[str, Dict[str, List[Vec3]]]:
        frame = frame.copy()
        if "z" not in frame.columns:
            frame["z"] = 0.0
        frame["path"] = frame["path"].astype(str).str.strip().str.lower()

        paths: Dict[str, Dict[str, List[Vec3]]] = {}
        for (route_id, path), group in frame.sort_values("seq").groupby(["route_id", "path"]):
            paths.setdefault(route_id, {})[path] = [
                (float(x), float(y), 0.0 if _missing(z) else float(z))
                for x, y, z in zip(group["x"], group["y"], group["z"])
            ]
        return paths

    @staticmethod
    def _load_stations(frame: pd.DataFrame) -> Dict[str, List[Station]]:
        stations: Dict[str, List[Station]] = {}
        for row in frame.to_dict("records"):
            stations.setdefault(row["route_id"], []).append(Station(
                name=str(row["name"]),
                waypoint_index=int(row["waypoint_index"]),
                dwell_seconds=_float_or(row.get("dwell_seconds"), 0.0),
                is_terminus=_as_bool(row.get("is_terminus")),
            ))
        return stations

    @staticmethod
    def _load_segment_times(frame: pd.DataFrame) -> Dict[str, Dict[Direction, Dict[int, float]]]:
        timings: Dict[str, Dict[Direction, Dict[int, float]]] = {}
        for row in frame.to_dict("records"):
            direction = Direction(str(row["direction"]).strip().lower())
            table = timings.setdefault(row["route_id"], {}).setdefault(direction, {})
            table[int(row["segment_index"])] = float(row["seconds"])
        return timings

    @staticmethod
    def _build_route(row: dict, world: List[Vec3], ui: List[Vec2], depot: List[Vec3],
                     stations: List[Station], timing: Dict[Direction, Dict[int, float]]) -> Route:
        journey: Dict[Direction, float] = {}
        for direction in Direction:
            minutes = _opt_float(row.get(f"journey_{direction.value}"))
            if minutes is not None:
                journey[direction] = minutes

        spawn = tuple(_opt_float(row.get(f"depot_spawn_{axis}")) for axis in "xyz")
        depot_spawn: Optional[Vec3] = None if None in spawn else spawn  # type: ignore[assignment]

        hours: Tuple[int, int] = (
            int(_float_or(row.get("start_hour"), 0)),
            int(_float_or(row.get("end_hour"), 24)),
        )
        operator = row.get("operator")
        service_type = row.get("service_type")

        return Route(
            route_id=row["route_id"],
            world_waypoints=tuple(world),
            ui_waypoints=tuple(ui),
            stations=tuple(sorted(stations, key=lambda s: s.waypoint_index)),
            allow_reverse=_as_bool(row.get("allow_reverse")),
            segment_durations=timing,
            journey_time=journey,
            display_name="" if _missing(row.get("display_name")) else str(row["display_name"]),
            operator=Operator.CONNECT if _missing(operator) else Operator(str(operator)),
            line_id="" if _missing(row.get("line_id")) else str(row["line_id"]),
            service_type=ServiceType.LOCAL if _missing(service_type) else ServiceType(str(service_type)),
            depot_path=tuple(depot),
            depot_spawn=depot_spawn,
            merge_point=int(_float_or(row.get("merge_point"), 0)),
            max_speed=_float_or(row.get("max_speed"), 40.0),
            points_per_minute=int(_float_or(row.get("points_per_minute"), 0)),
            base_frequency=_float_or(row.get("base_frequency"), 10.0),
            peak_frequency=_opt_float(row.get("peak_frequency")),
            operating_hours=hours,
        )
