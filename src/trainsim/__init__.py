"""TrainSim - Train route simulator with map matching and smoothed station ETAs."""

__version__ = "0.1.0"

from .models import Direction, Phase, Operator, Route, SegmentTime, Station, Snapshot, TripModification
from .catalog import RouteCatalog, default_catalog
from .catalog_loader import CatalogLoader
from .config import SimulationConfig
from .estimator import MotionEstimator, ScalarEstimator
from .history import SegmentHistory
from .eta import ETAPredictor
from .traversal import TraversalStateMachine
from .broadcaster import Broadcaster
from .simulation import Simulation, SimulationContext
from .feed import VehicleFeedClient

__all__ = [
    "Simulation",
    "SimulationContext",
    "SimulationConfig",
    "RouteCatalog",
    "CatalogLoader",
    "default_catalog",
    "ScalarEstimator",
    "MotionEstimator",
    "SegmentHistory",
    "ETAPredictor",
    "TraversalStateMachine",
    "Broadcaster",
    "VehicleFeedClient",
    "Direction",
    "Phase",
    "Operator",
    "Route",
    "SegmentTime",
    "Station",
    "Snapshot",
    "TripModification",
]
