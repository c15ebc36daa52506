"""Simulation configuration defaults."""

import os
from dataclasses import dataclass
from typing import Tuple

# Canonicalization tolerance at waypoints
CANONICAL_EPS = 1e-4

# Noise filter
MEASUREMENT_NOISE = 5.0  # R, measurement noise variance
INITIAL_UNCERTAINTY = 1e6

# Segment history smoothing factor
HISTORY_ALPHA = 0.2

# Seconds used when neither history nor the catalog knows a segment
DEFAULT_SEGMENT_SECONDS = 30.0

ARRIVAL_T_THRESHOLD = 0.99  # fraction at which a station counts as reached
REVERSE_T_THRESHOLD = 0.99  # fraction at which a sensed train flips at a terminus

STALE_TRACK_TICKS = 300
TICK_RATE_HZ = 20.0

# Peak windows, inclusive (hour ranges)
PEAK_HOURS: Tuple[Tuple[int, int], ...] = ((7, 9), (17, 19))

DEFAULT_ROUTE_KEY = "Main"
SIMULATED_PREFIX = "AI_"

# Vehicle feed client
FEED_CACHE_TTL = 30  # seconds
FEED_MAX_CACHE_SIZE = 10
FEED_TIMEOUT = 10  # seconds


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SimulationConfig:
    """Tunable parameters for a :class:`~trainsim.simulation.Simulation`."""
    eps: float = CANONICAL_EPS
    measurement_noise: float = MEASUREMENT_NOISE
    initial_uncertainty: float = INITIAL_UNCERTAINTY
    history_alpha: float = HISTORY_ALPHA
    default_segment_seconds: float = DEFAULT_SEGMENT_SECONDS
    arrival_threshold: float = ARRIVAL_T_THRESHOLD
    reverse_threshold: float = REVERSE_T_THRESHOLD
    stale_track_ticks: int = STALE_TRACK_TICKS
    tick_rate_hz: float = TICK_RATE_HZ
    auto_spawn: bool = False
    default_route_key: str = DEFAULT_ROUTE_KEY

    @classmethod
    def from_env(cls) -> "SimulationConfig":
        """
        Build a config, overriding defaults from ``TRAINSIM_*`` environment variables.

        Recognised variables: ``TRAINSIM_TICK_RATE_HZ``, ``TRAINSIM_STALE_TRACK_TICKS``,
        ``TRAINSIM_AUTO_SPAWN`` and ``TRAINSIM_DEFAULT_SEGMENT_SECONDS``.
        """
        config = cls()
        tick_rate = os.getenv("TRAINSIM_TICK_RATE_HZ")
        if tick_rate is not None:
            config.tick_rate_hz = float(tick_rate)
        stale_ticks = os.getenv("TRAINSIM_STALE_TRACK_TICKS")
        if stale_ticks is not None:
            config.stale_track_ticks = int(stale_ticks)
        auto_spawn = os.getenv("TRAINSIM_AUTO_SPAWN")
        if auto_spawn is not None:
            config.auto_spawn = _env_bool(auto_spawn)
        segment_seconds = os.getenv("TRAINSIM_DEFAULT_SEGMENT_SECONDS")
        if segment_seconds is not None:
            config.default_segment_seconds = float(segment_seconds)
        return config

    @property
    def tick_interval(self) -> float:
        """Seconds between ticks."""
        return 1.0 / self.tick_rate_hz if self.tick_rate_hz > 0 else 0.0
