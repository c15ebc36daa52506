"""Tests for TraversalStateMachine."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import trainsim
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainsim.models import Direction, Phase, Route, RouteTrainState, Station
from trainsim.traversal import TraversalStateMachine, next_station_index

WORLD = ((0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (20.0, 0.0, 0.0), (30.0, 0.0, 0.0))
UI = ((0.0, 0.0), (1.0, 0.0), (2.0, 0.0), (3.0, 0.0))
DURATIONS = {
    Direction.FORWARD: {0: 10.0, 1: 10.0, 2: 10.0},
    Direction.REVERSE: {0: 10.0, 1: 10.0, 2: 10.0},
}


def make_route(**overrides) -> Route:
    fields = dict(
        route_id="T",
        world_waypoints=WORLD,
        ui_waypoints=UI,
        stations=(Station("A", 0), Station("B", 3, dwell_seconds=2, is_terminus=True)),
        allow_reverse=True,
        segment_durations=DURATIONS,
    )
    fields.update(overrides)
    return Route(**fields)


def service_state(**overrides) -> RouteTrainState:
    fields = dict(train_id="T1", route_id="T", phase=Phase.SERVICE)
    fields.update(overrides)
    return RouteTrainState(**fields)


class TestNextStationIndex(unittest.TestCase):
    """Test the next-station search."""

    def setUp(self):
        self.route = make_route(stations=(Station("A", 0), Station("M", 2), Station("B", 3)))

    def test_forward(self):
        self.assertEqual(next_station_index(self.route, 0, Direction.FORWARD), 1)
        self.assertEqual(next_station_index(self.route, 2, Direction.FORWARD), 2)
        # Nothing ahead falls back to the far end
        self.assertEqual(next_station_index(self.route, 3, Direction.FORWARD), 2)

    def test_reverse(self):
        self.assertEqual(next_station_index(self.route, 3, Direction.REVERSE), 1)
        self.assertEqual(next_station_index(self.route, 2, Direction.REVERSE), 0)
        self.assertEqual(next_station_index(self.route, 0, Direction.REVERSE), 0)


class TestTraversal(unittest.TestCase):
    """Test simulated train movement."""

    def setUp(self):
        self.machine = TraversalStateMachine()

    def test_depot_to_service(self):
        """Test that reaching the end of the depot path joins the route at the merge point."""
        route = make_route(
            depot_path=((-20.0, 0.0, 0.0), (-10.0, 0.0, 0.0), (0.0, 0.0, 0.0)),
            max_speed=10.0,
            merge_point=1,
        )
        state = RouteTrainState(train_id="T1", route_id="T")

        self.machine.step(state, route, dt=1.0, now=0.0)
        self.assertEqual(state.phase, Phase.DEPOT)
        self.assertEqual(state.waypoint_index, 1)

        self.machine.step(state, route, dt=1.0, now=1.0)
        self.assertEqual(state.phase, Phase.SERVICE)
        self.assertEqual(state.direction, Direction.FORWARD)
        self.assertEqual(state.waypoint_index, 1)
        self.assertEqual(state.t, 0.0)
        self.assertEqual(state.next_station_index, 1)

    def test_no_depot_path_enters_service_directly(self):
        route = make_route(merge_point=2)
        state = RouteTrainState(train_id="T1", route_id="T")
        self.machine.step(state, route, dt=0.0, now=0.0)
        self.assertEqual(state.phase, Phase.SERVICE)
        self.assertEqual(state.waypoint_index, 2)

    def test_advance_and_pose(self):
        route = make_route(stations=())
        state = service_state()
        position, heading = self.machine.step(state, route, dt=2.5, now=0.0)
        self.assertAlmostEqual(state.t, 0.25)
        self.assertAlmostEqual(position[0], 2.5)
        self.assertEqual(heading, (1.0, 0.0, 0.0))

    def test_journey_time_fallback(self):
        """Test per-segment time from journey time when no table entry exists."""
        route = make_route(stations=(), segment_durations={},
                           journey_time={Direction.FORWARD: 1.5})
        state = service_state()
        self.machine.step(state, route, dt=3.0, now=0.0)
        # 90 seconds over 3 segments
        self.assertAlmostEqual(state.t, 0.1)

    def test_invalid_index_is_clamped(self):
        route = make_route(stations=(), allow_reverse=False)
        state = service_state(waypoint_index=10, t=0.5)
        with self.assertLogs("trainsim.traversal", level="WARNING"):
            self.machine.step(state, route, dt=1.0, now=0.0)
        self.assertEqual(state.waypoint_index, 3)
        self.assertEqual(state.t, 0.0)

    def test_reverse_at_boundary(self):
        """Test that a train at the route end flips without leaving the terminus."""
        route = make_route(stations=())
        state = service_state(waypoint_index=3)

        self.machine.step(state, route, dt=0.1, now=0.0)
        self.assertEqual(state.direction, Direction.REVERSE)
        self.assertEqual(state.phase, Phase.RETURNING)
        self.assertEqual(state.waypoint_index, 3)
        self.assertEqual(self.machine.location(state, route), (3, 1.0))

    def test_no_reverse_parks_at_end(self):
        route = make_route(stations=(), allow_reverse=False)
        state = service_state(waypoint_index=3)
        self.machine.step(state, route, dt=1.0, now=0.0)
        self.assertEqual(state.direction, Direction.FORWARD)
        self.assertEqual(state.waypoint_index, 3)
        self.assertEqual(self.machine.location(state, route), (3, 1.0))

    def test_dwell_holds_train(self):
        """Test that a train waits out the station dwell before moving on."""
        route = make_route(stations=(Station("A", 0, dwell_seconds=5),))
        state = service_state()

        self.machine.step(state, route, dt=1.0, now=0.0)
        self.assertEqual(state.dwell_start_time, 0.0)
        self.assertEqual(state.t, 0.0)

        self.machine.step(state, route, dt=1.0, now=3.0)
        self.assertEqual(state.t, 0.0)

        self.machine.step(state, route, dt=1.0, now=5.0)
        self.assertIsNone(state.dwell_start_time)
        self.assertAlmostEqual(state.t, 0.1)
        self.assertEqual(state.next_station_index, 1)

    def test_round_trip(self):
        """Test a full forward run, reversal at the terminus and return to the origin."""
        route = make_route()
        state = service_state()
        seen_reverse_at_end = False

        now = 0.0
        for _ in range(200):
            self.machine.step(state, route, dt=1.0, now=now)
            now += 1.0
            if state.direction is Direction.REVERSE and state.waypoint_index == 3:
                seen_reverse_at_end = True
            if seen_reverse_at_end and state.direction is Direction.FORWARD:
                break

        self.assertTrue(seen_reverse_at_end)
        self.assertEqual(state.direction, Direction.FORWARD)
        self.assertEqual(state.phase, Phase.SERVICE)
        self.assertEqual(state.waypoint_index, 0)
        self.assertEqual(self.machine.location(state, route), (1, 0.0))

    def test_reverse_location_is_canonical(self):
        """Test that reverse travel reports the segment being traversed."""
        route = make_route(stations=())
        state = service_state(direction=Direction.REVERSE, phase=Phase.RETURNING,
                              waypoint_index=2, t=0.5)
        self.assertEqual(self.machine.location(state, route), (2, 0.5))

        state.t = 0.0
        self.assertEqual(self.machine.location(state, route), (3, 1.0))

    def test_empty_waypoints(self):
        route = make_route(world_waypoints=(), ui_waypoints=(), stations=())
        state = service_state()
        with self.assertLogs("trainsim.traversal", level="WARNING"):
            self.assertIsNone(self.machine.step(state, route, dt=1.0, now=0.0))


if __name__ == "__main__":
    unittest.main()
