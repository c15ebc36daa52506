"""Data models for the train route simulator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

Vec3 = Tuple[float, float, float]
Vec2 = Tuple[float, float]


class Direction(str, Enum):
    """Direction of travel along a route polyline."""
    FORWARD = "forward"
    REVERSE = "reverse"

    @property
    def opposite(self) -> "Direction":
        return Direction.REVERSE if self is Direction.FORWARD else Direction.FORWARD


class Phase(str, Enum):
    """Operating phase of a simulated train."""
    DEPOT = "depot"
    SERVICE = "service"
    RETURNING = "returning"


class Operator(str, Enum):
    """Train operating company."""
    CONNECT = "Connect"
    METRO = "Metro"
    WATERLINE = "Waterline"
    AIRLINK = "AirLink"
    EXPRESS = "Express"
    TRAINING = "Training"


class ServiceType(str, Enum):
    LOCAL = "Local"
    EXPRESS = "Express"
    NON_STOP = "Non-Stop"
    CIRCULAR = "Circular"


@dataclass(frozen=True)
class Station:
    """A station stop on a route."""
    name: str
    waypoint_index: int  # 0-based index into the route's world waypoints
    dwell_seconds: float = 0.0
    is_terminus: bool = False


@dataclass(frozen=True)
class Route:
    """
    Immutable route definition.

    Segment duration tables hold seconds per segment, one table per
    direction, keyed in traversal order: the forward table by the index of
    the segment's lower waypoint, the reverse table starting at 0 for the
    segment leaving the last waypoint.
    """
    route_id: str
    world_waypoints: Tuple[Vec3, ...]
    ui_waypoints: Tuple[Vec2, ...]
    stations: Tuple[Station, ...] = ()
    allow_reverse: bool = False
    segment_durations: Dict[Direction, Dict[int, float]] = field(default_factory=dict)
    journey_time: Dict[Direction, float] = field(default_factory=dict)  # minutes
    display_name: str = ""
    operator: Operator = Operator.CONNECT
    line_id: str = ""
    service_type: ServiceType = ServiceType.LOCAL
    depot_path: Tuple[Vec3, ...] = ()
    depot_spawn: Optional[Vec3] = None
    merge_point: int = 0
    max_speed: float = 40.0  # world units per second
    points_per_minute: int = 0
    base_frequency: float = 10.0  # minutes between trains
    peak_frequency: Optional[float] = None
    operating_hours: Tuple[int, int] = (0, 24)
    allowed_train_classes: Tuple[str, ...] = ()

    @property
    def segment_count(self) -> int:
        return max(len(self.world_waypoints) - 1, 0)

    def segment_duration(self, direction: Direction, index: int) -> Optional[float]:
        """Catalog duration in seconds for table entry ``index``, if known."""
        return self.segment_durations.get(direction, {}).get(index)

    def duration_from_waypoint(self, direction: Direction, waypoint_index: int) -> Optional[float]:
        """Catalog duration of the segment a train leaving ``waypoint_index`` travels."""
        if direction is Direction.FORWARD:
            return self.segment_duration(direction, waypoint_index)
        return self.segment_duration(direction, self.segment_count - waypoint_index)


@dataclass
class StationEntry:
    """Station name and waypoint index, as tracked for a sensed train."""
    name: str
    waypoint_index: int


@dataclass
class TrackState:
    """Map-matching state for one sensed train."""
    last_segment: int
    last_t: float
    departure_time: float
    direction: Direction
    station_list: List[StationEntry]
    station_pointer: int = 0  # 0-based index into station_list


@dataclass
class RouteTrainState:
    """Traversal state for one simulated train."""
    train_id: str
    route_id: str
    phase: Phase = Phase.DEPOT
    waypoint_index: int = 0
    t: float = 0.0
    direction: Direction = Direction.FORWARD
    next_station_index: int = 0
    dwell_start_time: Optional[float] = None


@dataclass
class SegmentHistoryEntry:
    """Moving average of observed transit time for one segment."""
    average_duration: float
    smoothing_factor: float
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    samples: int = 0


@dataclass
class SegmentTime:
    """Summary of observed transit times for one segment."""
    segment: int
    average: float
    minimum: float
    maximum: float
    confidence: float  # 0 for seeded values, approaches 1 with samples


@dataclass
class TrainEntity:
    """World entity backing a simulated train."""
    train_id: str
    label: str
    position: Vec3
    heading: Vec3 = (0.0, 0.0, 1.0)
    color: Tuple[int, int, int] = (163, 162, 165)


@dataclass
class Snapshot:
    """Per-tick state of one train, as delivered to observers."""
    train_id: str
    segment: int
    fraction: float
    station_etas: Dict[str, float]
    world_position: Vec3
    route_key: str
    direction: Direction
    phase: Optional[Phase] = None

    def as_dict(self) -> dict:
        """Message payload for the broadcaster."""
        return {
            "trainId": self.train_id,
            "segment": self.segment,
            "fraction": self.fraction,
            "stationETAs": dict(self.station_etas),
            "worldPosition": list(self.world_position),
            "routeKey": self.route_key,
            "direction": self.direction.value,
        }


@dataclass
class TripModification:
    """A detour, skip or delay applied to one train's trip."""
    trip_id: str
    train_id: str
    modification_type: str  # "detour", "skip" or "delay"
    trigger_type: str  # "station" or "segment"
    trigger_value: object  # station name or segment index
    shape_key: str
    direction: str = "both"  # "forward", "backward" or "both"
    expiry_time: Optional[float] = None  # Unix timestamp

    def as_dict(self) -> dict:
        return {
            "tripId": self.trip_id,
            "trainId": self.train_id,
            "modificationType": self.modification_type,
            "triggerType": self.trigger_type,
            "triggerValue": self.trigger_value,
            "shapeKey": self.shape_key,
            "direction": self.direction,
            "expiryTime": self.expiry_time,
        }
