"""Tests for segment projection and canonicalization."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import trainsim
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainsim.geometry import (
    MapBounds,
    WorldToUITransformer,
    canonicalize,
    distance,
    heading,
    is_finite,
    lerp,
    match_position,
    project_onto_segment,
    segment_from_waypoint,
)
from trainsim.models import Direction

FWD = Direction.FORWARD
REV = Direction.REVERSE


class TestProjection(unittest.TestCase):
    """Test projecting points onto polyline segments."""

    def test_project_midpoint(self):
        """Test projection of a point beside the middle of a segment."""
        point, t = project_onto_segment((0, 0, 0), (10, 0, 0), (5, 3, 0))
        self.assertAlmostEqual(t, 0.5)
        self.assertEqual(point, (5.0, 0.0, 0.0))

    def test_project_clamps_to_segment(self):
        """Test that points beyond either end clamp to the endpoints."""
        point, t = project_onto_segment((0, 0, 0), (10, 0, 0), (15, 0, 2))
        self.assertEqual(t, 1.0)
        self.assertEqual(point, (10.0, 0.0, 0.0))

        point, t = project_onto_segment((0, 0, 0), (10, 0, 0), (-5, 0, 0))
        self.assertEqual(t, 0.0)
        self.assertEqual(point, (0.0, 0.0, 0.0))

    def test_zero_length_segment(self):
        """Test that a degenerate segment reports t=0 without dividing by zero."""
        point, t = project_onto_segment((4, 1, 4), (4, 1, 4), (9, 9, 9))
        self.assertEqual(t, 0.0)
        self.assertEqual(point, (4, 1, 4))

    def test_match_position_picks_nearest_segment(self):
        """Test selecting the closest segment of an L-shaped polyline."""
        waypoints = [(0, 0, 0), (10, 0, 0), (10, 0, 10)]
        segment, t, point = match_position(waypoints, (10, 0, 4))
        self.assertEqual(segment, 2)
        self.assertAlmostEqual(t, 0.4)
        self.assertEqual(point, (10.0, 0.0, 4.0))

    def test_match_position_requires_two_waypoints(self):
        """Test error handling for a polyline without segments."""
        with self.assertRaises(ValueError):
            match_position([(0, 0, 0)], (1, 1, 1))


class TestCanonicalize(unittest.TestCase):
    """Test resolution of waypoint ambiguity."""

    def test_start_of_segment_becomes_end_of_previous(self):
        self.assertEqual(canonicalize(2, 0.0, FWD, 3), (1, 1.0))
        self.assertEqual(canonicalize(3, 0.00005, FWD, 3), (2, 1.0))

    def test_near_end_snaps_to_one(self):
        self.assertEqual(canonicalize(2, 0.99995, FWD, 3), (2, 1.0))

    def test_interior_fraction_unchanged(self):
        self.assertEqual(canonicalize(2, 0.4, FWD, 3), (2, 0.4))
        self.assertEqual(canonicalize(2, 0.4, REV, 3), (2, 0.4))

    def test_origin_terminus(self):
        """Test that the origin terminus is always exactly (1, 0)."""
        self.assertEqual(canonicalize(1, 0.00005, FWD, 3), (1, 0.0))
        self.assertEqual(canonicalize(1, 0.99995, REV, 3), (1, 0.0))
        self.assertEqual(canonicalize(1, 1.0, REV, 3), (1, 0.0))

    def test_end_terminus(self):
        """Test that the end terminus is always exactly (max, 1)."""
        self.assertEqual(canonicalize(3, 0.99995, FWD, 3), (3, 1.0))
        # Reverse train just leaving the end must not be pulled back a segment
        self.assertEqual(canonicalize(3, 0.0, REV, 3), (3, 1.0))

    def test_out_of_range_inputs_are_clamped(self):
        self.assertEqual(canonicalize(7, 0.5, FWD, 3), (3, 0.5))
        self.assertEqual(canonicalize(0, -0.5, FWD, 3), (1, 0.0))
        self.assertEqual(canonicalize(2, 1.5, FWD, 3), (2, 1.0))

    def test_single_segment_jitter_stays_at_nearest_end(self):
        """Test that both ends of a one-segment route snap within eps in either direction."""
        for direction in (FWD, REV):
            self.assertEqual(canonicalize(1, 0.99995, direction, 1), (1, 1.0))
            self.assertEqual(canonicalize(1, 1.0, direction, 1), (1, 1.0))
            self.assertEqual(canonicalize(1, 0.00005, direction, 1), (1, 0.0))
            self.assertEqual(canonicalize(1, 0.0, direction, 1), (1, 0.0))
            self.assertEqual(canonicalize(1, 0.9965, direction, 1), (1, 0.9965))

    def test_idempotent(self):
        """Test that canonicalizing twice gives the same location."""
        fractions = [0.0, 0.00005, 0.3, 0.99995, 1.0]
        for direction in (FWD, REV):
            for max_segment in (1, 2, 4):
                for segment in range(1, max_segment + 1):
                    for t in fractions:
                        once = canonicalize(segment, t, direction, max_segment)
                        twice = canonicalize(once[0], once[1], direction, max_segment)
                        self.assertEqual(once, twice, (segment, t, direction, max_segment))


class TestSegmentFromWaypoint(unittest.TestCase):
    """Test conversion of traversal positions to (segment, fraction)."""

    def test_forward(self):
        self.assertEqual(segment_from_waypoint(0, 0.25, FWD, 4), (1, 0.25))
        self.assertEqual(segment_from_waypoint(2, 0.5, FWD, 4), (3, 0.5))
        self.assertEqual(segment_from_waypoint(3, 0.0, FWD, 4), (3, 1.0))

    def test_reverse(self):
        self.assertEqual(segment_from_waypoint(3, 0.25, REV, 4), (3, 0.25))
        self.assertEqual(segment_from_waypoint(0, 0.0, REV, 4), (1, 1.0))

    def test_single_segment_is_geometric(self):
        """Test that a one-segment route reports distance from its first waypoint."""
        self.assertEqual(segment_from_waypoint(0, 0.25, FWD, 2), (1, 0.25))
        self.assertEqual(segment_from_waypoint(1, 0.0, FWD, 2), (1, 1.0))
        self.assertEqual(segment_from_waypoint(1, 0.0, REV, 2), (1, 1.0))
        self.assertEqual(segment_from_waypoint(1, 0.25, REV, 2), (1, 0.75))
        self.assertEqual(segment_from_waypoint(0, 0.0, REV, 2), (1, 0.0))

    def test_reverse_standing_on_intermediate_waypoint(self):
        """Test that a reverse train on waypoint 2 ends the segment it came along."""
        self.assertEqual(segment_from_waypoint(2, 0.0, REV, 4), (3, 1.0))


class TestVectorHelpers(unittest.TestCase):
    """Test point helpers used by traversal."""

    def test_distance_and_heading(self):
        self.assertEqual(distance((0, 0, 0), (3, 0, 4)), 5.0)
        self.assertEqual(heading((0, 0, 0), (0, 0, 5)), (0.0, 0.0, 1.0))
        self.assertEqual(heading((1, 1, 1), (1, 1, 1)), (0.0, 0.0, 0.0))

    def test_lerp(self):
        self.assertEqual(lerp((0, 0, 0), (10, 2, -4), 0.5), (5.0, 1.0, -2.0))

    def test_is_finite(self):
        self.assertTrue(is_finite((1, 2.5, 3)))
        self.assertFalse(is_finite((float("nan"), 0, 0)))
        self.assertFalse(is_finite((float("inf"), 0, 0)))
        self.assertFalse(is_finite((1, 2)))
        self.assertFalse(is_finite(("a", 0, 0)))
        self.assertFalse(is_finite((None, 0, 0)))


class TestWorldToUITransformer(unittest.TestCase):
    """Test world/UI coordinate mapping."""

    def test_round_trip(self):
        transformer = WorldToUITransformer(MapBounds(0, 100, 0, 50), 200, 100)
        self.assertEqual(transformer.world_to_ui((50, 3, 25)), (100.0, 50.0))
        self.assertEqual(transformer.ui_to_world((100, 50)), (50.0, 0.5, 25.0))

    def test_fit(self):
        transformer = WorldToUITransformer.fit([(-10, 0, 5), (30, 0, -15)], 1, 1)
        self.assertEqual(transformer.bounds, MapBounds(-10, 30, -15, 5))

    def test_fit_empty(self):
        with self.assertRaises(ValueError):
            WorldToUITransformer.fit([], 1, 1)


if __name__ == "__main__":
    unittest.main()
