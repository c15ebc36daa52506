"""GTFS-Realtime encoding of train snapshots and vehicle-position feed fetching."""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import requests

from .config import FEED_CACHE_TTL, FEED_MAX_CACHE_SIZE, FEED_TIMEOUT
from .models import Direction, Snapshot, Vec3

logger = logging.getLogger(__name__)

ETA_ENTITY_SUFFIX = ":etas"


def _new_feed_message():
    try:
        from google.transit import gtfs_realtime_pb2
    except ImportError:
        logger.error("google.transit.gtfs_realtime_pb2 not installed")
        raise
    return gtfs_realtime_pb2.FeedMessage()


def encode_snapshots(snapshots: Iterable[Snapshot], timestamp: float) -> bytes:
    """
    Serialize snapshots as a GTFS-Realtime ``FeedMessage``.

    Each train becomes a vehicle entity: world x and z are carried as
    longitude and latitude, the segment as ``current_stop_sequence`` and the
    direction as ``direction_id`` (0 forward, 1 reverse). Station ETAs, when
    present, go in a separate trip-update entity as absolute arrival times.

    Args:
        snapshots: Snapshots to encode.
        timestamp: Feed timestamp (Unix seconds).

    Returns:
        Serialized protobuf bytes.
    """
    feed = _new_feed_message()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = int(timestamp)

    for snap in snapshots:
        entity = feed.entity.add()
        entity.id = snap.train_id
        vehicle = entity.vehicle
        vehicle.vehicle.id = snap.train_id
        vehicle.trip.route_id = snap.route_key
        vehicle.trip.direction_id = 0 if snap.direction is Direction.FORWARD else 1
        vehicle.position.longitude = snap.world_position[0]
        vehicle.position.latitude = snap.world_position[2]
        vehicle.current_stop_sequence = snap.segment
        vehicle.timestamp = int(timestamp)

        if snap.station_etas:
            eta_entity = feed.entity.add()
            eta_entity.id = snap.train_id + ETA_ENTITY_SUFFIX
            trip_update = eta_entity.trip_update
            trip_update.trip.route_id = snap.route_key
            trip_update.vehicle.id = snap.train_id
            for name, eta in snap.station_etas.items():
                stop_time = trip_update.stop_time_update.add()
                stop_time.stop_id = name
                stop_time.arrival.time = int(round(timestamp + eta))

    return feed.SerializeToString()


def parse_vehicle_positions(feed_data: bytes, ground: float = 0.0) -> Dict[str, Vec3]:
    """
    Extract world positions from a GTFS-Realtime vehicle-position feed.

    Args:
        feed_data: Raw protobuf bytes.
        ground: World y coordinate to assign.

    Returns:
        Train id -> (longitude, ground, latitude).
    """
    feed = _new_feed_message()
    feed.ParseFromString(feed_data)

    positions: Dict[str, Vec3] = {}
    for entity in feed.entity:
        if not entity.HasField("vehicle"):
            continue
        vehicle = entity.vehicle
        if not vehicle.HasField("position"):
            continue
        train_id = vehicle.vehicle.id or entity.id
        positions[train_id] = (vehicle.position.longitude, ground, vehicle.position.latitude)
    return positions


def parse_station_etas(feed_data: bytes) -> Dict[str, Dict[str, float]]:
    """
    Extract per-station ETAs (seconds after the feed timestamp) by train.
    """
    feed = _new_feed_message()
    feed.ParseFromString(feed_data)
    base = feed.header.timestamp

    etas: Dict[str, Dict[str, float]] = {}
    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue
        trip_update = entity.trip_update
        train_id = trip_update.vehicle.id or entity.id
        stations = etas.setdefault(train_id, {})
        for stop_time in trip_update.stop_time_update:
            if stop_time.HasField("arrival"):
                stations[stop_time.stop_id] = float(stop_time.arrival.time - base)
    return etas


class VehicleFeedClient:
    """Fetches vehicle-position feeds for the sensed tracking path."""

    def __init__(self, cache_ttl: float = FEED_CACHE_TTL, timeout: float = FEED_TIMEOUT,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the client.

        Args:
            cache_ttl: Seconds a fetched feed is reused.
            timeout: HTTP timeout in seconds.
            clock: Time source for cache expiry.
        """
        self._cache: Dict[str, Tuple[bytes, float]] = {}  # feed_url -> (data, timestamp)
        self._cache_ttl = cache_ttl
        self._max_cache_size = FEED_MAX_CACHE_SIZE
        self._timeout = timeout
        self._clock = clock

    def get_positions(self, feed_urls: List[str], ground: float = 0.0) -> Dict[str, Vec3]:
        """
        Merge vehicle positions from several feeds.

        Feeds that fail to download or parse are logged and skipped.
        """
        positions: Dict[str, Vec3] = {}
        for feed_url in feed_urls:
            try:
                positions.update(parse_vehicle_positions(self._fetch_feed(feed_url), ground))
            except Exception as e:
                logger.warning(f"Failed to read vehicle feed {feed_url}: {e}")
        return positions

    def _fetch_feed(self, feed_url: str) -> bytes:
        """
        Fetch and cache a feed.

        Raises:
            requests.RequestException: If the download fails.
        """
        now = self._clock()
        cached = self._cache.get(feed_url)
        if cached is not None and now - cached[1] < self._cache_ttl:
            logger.debug(f"Using cached data for {feed_url}")
            return cached[0]

        self._evict_expired_cache(now)
        if len(self._cache) >= self._max_cache_size:
            oldest_key = min(self._cache, key=lambda k: self._cache[k][1])
            del self._cache[oldest_key]

        logger.debug(f"Fetching {feed_url}")
        try:
            response = requests.get(feed_url, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to fetch {feed_url}: {e}")
            raise
        self._cache[feed_url] = (response.content, now)
        return response.content

    def _evict_expired_cache(self, current_time: float) -> None:
        expired = [
            url for url, (_, timestamp) in self._cache.items()
            if current_time - timestamp >= self._cache_ttl
        ]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")

    def cached_urls(self) -> List[str]:
        return list(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()


def encode_positions(positions: Dict[str, Vec3], timestamp: Optional[float] = None) -> bytes:
    """Vehicle-position feed for raw positions (no route or segment data)."""
    feed = _new_feed_message()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = int(timestamp if timestamp is not None else time.time())
    for train_id, position in positions.items():
        entity = feed.entity.add()
        entity.id = train_id
        entity.vehicle.vehicle.id = train_id
        entity.vehicle.position.longitude = position[0]
        entity.vehicle.position.latitude = position[2]
    return feed.SerializeToString()
