"""Polyline projection and canonical segment locations."""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .config import CANONICAL_EPS
from .models import Direction, Vec2, Vec3


def _as_vec3(v) -> Vec3:
    return (float(v[0]), float(v[1]), float(v[2]))


def distance(a: Vec3, b: Vec3) -> float:
    return float(np.linalg.norm(np.asarray(b, dtype=float) - np.asarray(a, dtype=float)))


def lerp(a: Vec3, b: Vec3, t: float) -> Vec3:
    start = np.asarray(a, dtype=float)
    return _as_vec3(start + (np.asarray(b, dtype=float) - start) * t)


def heading(a: Vec3, b: Vec3) -> Vec3:
    """Unit vector from ``a`` towards ``b``; coincident points give the zero vector."""
    d = np.asarray(b, dtype=float) - np.asarray(a, dtype=float)
    length = np.linalg.norm(d)
    if length == 0:
        return (0.0, 0.0, 0.0)
    return _as_vec3(d / length)


def is_finite(p: Sequence[float]) -> bool:
    try:
        arr = np.asarray(p, dtype=float)
    except (TypeError, ValueError):
        return False
    return arr.shape == (3,) and bool(np.isfinite(arr).all())


def project_onto_segment(a: Vec3, b: Vec3, p: Vec3) -> Tuple[Vec3, float]:
    """
    Project point ``p`` onto segment ``ab``.

    Returns:
        (closest point, fraction along the segment in [0, 1]). A zero-length
        segment projects everything onto ``a`` with fraction 0.
    """
    start = np.asarray(a, dtype=float)
    ab = np.asarray(b, dtype=float) - start
    denom = float(np.dot(ab, ab))
    if denom == 0:
        return _as_vec3(start), 0.0
    t = float(np.clip(np.dot(np.asarray(p, dtype=float) - start, ab) / denom, 0.0, 1.0))
    return _as_vec3(start + ab * t), t


def match_position(waypoints: Sequence[Vec3], p: Vec3) -> Tuple[int, float, Vec3]:
    """
    Find the polyline segment nearest to ``p``.

    All segments are projected at once; ties go to the earliest segment.

    Args:
        waypoints: Route polyline, at least two points.
        p: Sensed world position.

    Returns:
        (1-based segment index, fraction along it, closest point on it).

    Raises:
        ValueError: If the polyline has fewer than two waypoints.
    """
    if len(waypoints) < 2:
        raise ValueError(f"Cannot match against a polyline of {len(waypoints)} waypoint(s)")

    pts = np.asarray(waypoints, dtype=float)
    point = np.asarray(p, dtype=float)
    starts = pts[:-1]
    ab = pts[1:] - starts
    denom = np.sum(ab * ab, axis=1)
    num = np.sum((point - starts) * ab, axis=1)
    t = np.divide(num, denom, out=np.zeros_like(num), where=denom > 0)
    t = np.clip(t, 0.0, 1.0)
    closest = starts + ab * t[:, None]
    i = int(np.argmin(np.linalg.norm(closest - point, axis=1)))
    return i + 1, float(t[i]), _as_vec3(closest[i])


def _terminus(segment: int, t: float, direction: Direction, max_segment: int,
              eps: float) -> Optional[Tuple[int, float]]:
    at_origin = segment == 1 and (
        (direction is Direction.FORWARD and t <= eps)
        or (direction is Direction.REVERSE and t >= 1 - eps)
    )
    if at_origin:
        return 1, 0.0
    at_end = segment == max_segment and (
        (direction is Direction.FORWARD and t >= 1 - eps)
        or (direction is Direction.REVERSE and t <= eps)
    )
    if at_end:
        return max_segment, 1.0
    return None


def canonicalize(segment: int, t: float, direction: Direction, max_segment: int,
                 eps: float = CANONICAL_EPS) -> Tuple[int, float]:
    """
    Resolve the waypoint ambiguity of a (segment, fraction) location.

    The start of segment k and the end of segment k-1 are the same point;
    this picks the end of the earlier segment, except at a route terminus,
    which is always reported as exactly ``(1, 0)`` or ``(max_segment, 1)``.
    Inputs are clamped into range first. A terminus snap is final, so
    canonicalizing an already canonical location leaves it unchanged.

    On a single-segment route both termini lie on segment 1, so the
    fraction is read geometrically: within ``eps`` of either end it snaps
    to that end whatever the direction of travel.
    """
    max_segment = max(int(max_segment), 1)
    seg = int(np.clip(int(segment), 1, max_segment))
    frac = float(np.clip(float(t), 0.0, 1.0))

    if max_segment == 1:
        if frac <= eps:
            return 1, 0.0
        if frac >= 1 - eps:
            return 1, 1.0
        return 1, frac

    snapped = _terminus(seg, frac, direction, max_segment, eps)
    if snapped is not None:
        return snapped
    if frac <= eps and seg > 1:
        seg, frac = seg - 1, 1.0
        # Stepping back can land on the origin terminus of a reverse train
        snapped = _terminus(seg, frac, direction, max_segment, eps)
        if snapped is not None:
            return snapped
    elif frac >= 1 - eps:
        frac = 1.0
    return seg, frac


def segment_from_waypoint(waypoint_index: int, t: float, direction: Direction,
                          waypoint_count: int, eps: float = CANONICAL_EPS) -> Tuple[int, float]:
    """
    Convert a traversal position to a raw 1-based (segment, fraction).

    A forward train between waypoints i and i+1 is on segment i+1; a reverse
    train between i and i-1 is on segment i. In both cases the fraction is
    progress in the direction of travel. A train standing on the last
    waypoint (forward) or the first one (reverse) is reported at the end of
    the boundary segment, and a reverse train standing on an intermediate
    waypoint at the end of the segment it just finished.

    On a single-segment route the fraction is geometric instead (0 at the
    first waypoint, 1 at the second), matching :func:`canonicalize`.
    """
    if waypoint_count <= 2:
        if direction is Direction.FORWARD:
            return 1, 1.0 if waypoint_index >= 1 else t
        return 1, 0.0 if waypoint_index <= 0 else 1.0 - t

    max_segment = waypoint_count - 1
    if direction is Direction.FORWARD:
        if waypoint_index >= waypoint_count - 1:
            return max_segment, 1.0
        return waypoint_index + 1, t
    if waypoint_index <= 0:
        return 1, 1.0
    if t <= eps and waypoint_index < max_segment:
        return waypoint_index + 1, 1.0
    return waypoint_index, t


@dataclass(frozen=True)
class MapBounds:
    min_x: float
    max_x: float
    min_z: float
    max_z: float


class WorldToUITransformer:
    """Linear mapping between world (x, z) and a UI rectangle."""

    def __init__(self, bounds: MapBounds, ui_width: float, ui_height: float):
        self.bounds = bounds
        self.ui_width = ui_width
        self.ui_height = ui_height

    def world_to_ui(self, world: Vec3) -> Vec2:
        b = self.bounds
        span_x = (b.max_x - b.min_x) or 1.0
        span_z = (b.max_z - b.min_z) or 1.0
        return (
            (world[0] - b.min_x) / span_x * self.ui_width,
            (world[2] - b.min_z) / span_z * self.ui_height,
        )

    def ui_to_world(self, ui: Vec2, ground: float = 0.5) -> Vec3:
        b = self.bounds
        return (
            b.min_x + ui[0] / self.ui_width * (b.max_x - b.min_x),
            ground,
            b.min_z + ui[1] / self.ui_height * (b.max_z - b.min_z),
        )

    @classmethod
    def fit(cls, points: Sequence[Vec3], ui_width: float, ui_height: float) -> "WorldToUITransformer":
        """Build a transformer whose bounds enclose ``points``."""
        if not points:
            raise ValueError("Cannot fit bounds to an empty point set")
        arr = np.asarray(points, dtype=float)
        lo, hi = arr.min(axis=0), arr.max(axis=0)
        return cls(MapBounds(float(lo[0]), float(hi[0]), float(lo[2]), float(hi[2])), ui_width, ui_height)
