"""Tests for Broadcaster and TripModificationManager."""

import unittest
import sys
from pathlib import Path

# Add src to path so we can import trainsim
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from trainsim.broadcaster import MAP_UPDATE, SCHEDULE_UPDATE, Broadcaster
from trainsim.models import TripModification
from trainsim.trip_mods import TripModificationManager, TripModRule, TripStatus


class TestBroadcaster(unittest.TestCase):
    """Test fire-and-forget message delivery."""

    def setUp(self):
        self.broadcaster = Broadcaster(clock=lambda: 123.0)

    def test_subscribers_receive_messages(self):
        received = []
        self.broadcaster.subscribe(MAP_UPDATE, received.append)

        msg = self.broadcaster.publish(MAP_UPDATE, {"trainId": "T1"})

        self.assertEqual(received, [msg])
        self.assertEqual(msg.ts, 123.0)
        self.assertEqual(msg.payload["trainId"], "T1")

    def test_topics_are_separate(self):
        received = []
        self.broadcaster.subscribe(SCHEDULE_UPDATE, received.append)
        self.broadcaster.publish(MAP_UPDATE, {})
        self.assertEqual(received, [])

    def test_failing_subscriber_does_not_block(self):
        """Test that one broken subscriber neither raises nor starves the others."""
        received = []

        def broken(msg):
            raise RuntimeError("boom")

        self.broadcaster.subscribe(MAP_UPDATE, broken)
        self.broadcaster.subscribe(MAP_UPDATE, received.append)

        with self.assertLogs("trainsim.broadcaster", level="WARNING"):
            self.broadcaster.publish(MAP_UPDATE, {"trainId": "T1"})

        self.assertEqual(len(received), 1)
        self.assertEqual(self.broadcaster.report(), {"published": 1, "failed_deliveries": 1})

    def test_unsubscribe(self):
        received = []
        self.broadcaster.subscribe(MAP_UPDATE, received.append)
        self.broadcaster.unsubscribe(MAP_UPDATE, received.append)
        self.broadcaster.publish(MAP_UPDATE, {})
        self.assertEqual(received, [])

    def test_poll_drains_bounded_queue(self):
        broadcaster = Broadcaster(max_queue=2)
        for i in range(3):
            broadcaster.publish(MAP_UPDATE, {"n": i})

        msgs = broadcaster.poll(MAP_UPDATE)
        self.assertEqual([m.payload["n"] for m in msgs], [1, 2])
        self.assertEqual(broadcaster.poll(MAP_UPDATE), [])
        self.assertEqual(broadcaster.poll("unknown"), [])


class TestTripModifications(unittest.TestCase):
    """Test trip modification rules."""

    def setUp(self):
        self.manager = TripModificationManager()

    def _mod(self, **overrides) -> TripModification:
        fields = dict(
            trip_id="trip_001",
            train_id="Train1",
            modification_type="detour",
            trigger_type="station",
            trigger_value="Station A",
            shape_key="DetourRoute",
        )
        fields.update(overrides)
        return TripModification(**fields)

    def test_rule_triggers(self):
        station = TripModRule("station", "Station A", "D")
        self.assertTrue(station.applies("Station A", 1, False))
        self.assertFalse(station.applies("Station B", 1, False))

        segment = TripModRule("segment", 2, "D", direction="backward")
        self.assertTrue(segment.applies(None, 3, True))
        self.assertFalse(segment.applies(None, 3, False))
        self.assertFalse(segment.applies(None, 1, True))

    def test_shape_for(self):
        """Test that the last matching rule wins and unmatched trains keep their route."""
        self.manager.add_modification(self._mod())
        self.manager.add_modification(self._mod(trip_id="trip_002", trigger_type="segment",
                                                trigger_value=1, shape_key="Second"))

        self.assertEqual(self.manager.shape_for("Train1", "Station A", 2, False, "Main"), "Second")
        self.assertEqual(self.manager.shape_for("Train1", "Station A", 0, False, "Main"), "DetourRoute")
        self.assertEqual(self.manager.shape_for("Train2", "Station A", 2, False, "Main"), "Main")

    def test_status_and_expiry(self):
        self.assertEqual(self.manager.trip_status("Train1"), TripStatus.NORMAL)

        self.manager.add_modification(self._mod(expiry_time=100.0))
        self.manager.add_modification(self._mod(trip_id="trip_002"))
        self.assertEqual(self.manager.trip_status("Train1"), TripStatus.MODIFIED)

        self.assertEqual(self.manager.cleanup_expired(now=150.0), 1)
        self.assertEqual([m.trip_id for m in self.manager.active_modifications("Train1")], ["trip_002"])

        self.manager.clear("Train1")
        self.assertEqual(self.manager.trip_status("Train1"), TripStatus.NORMAL)

    def test_delay_status(self):
        """Test that the latest delay modification marks the trip delayed."""
        self.manager.add_modification(self._mod())
        self.manager.add_modification(self._mod(trip_id="trip_002", modification_type="delay",
                                                expiry_time=100.0))
        self.assertEqual(self.manager.trip_status("Train1"), TripStatus.DELAYED)

        self.manager.cleanup_expired(now=150.0)
        self.assertEqual(self.manager.trip_status("Train1"), TripStatus.MODIFIED)

    def test_payload(self):
        payload = self._mod(direction="forward").as_dict()
        self.assertEqual(payload["tripId"], "trip_001")
        self.assertEqual(payload["shapeKey"], "DetourRoute")
        self.assertEqual(payload["direction"], "forward")


if __name__ == "__main__":
    unittest.main()
