"""Async client for the GTFS-realtime vehicle-position feeds."""

import logging
import math
import time
from dataclasses import dataclass, field

import httpx
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from transitplan.config import settings
from transitplan.core.categories import FeedCategory
from transitplan.core.errors import UpstreamError
from transitplan.core.http import get_with_retry

logger = logging.getLogger(__name__)

_TripDescriptor = gtfs_realtime_pb2.TripDescriptor
_VehiclePosition = gtfs_realtime_pb2.VehiclePosition


@dataclass
class DecodedFeed:
    category: str
    feed_timestamp: int | None
    fetched: int  # entities in the feed
    records: list[dict] = field(default_factory=list)  # vehicle_positions rows
    skipped: int = 0


def _enum_name(enum_type, message, field_name: str) -> str | None:
    if not message.HasField(field_name):
        return None
    return enum_type.Name(getattr(message, field_name))


def _optional(message, field_name: str):
    return getattr(message, field_name) if message.HasField(field_name) else None


def entity_to_record(entity, now: int) -> dict | None:
    """Flatten one FeedEntity into a vehicle_positions row; None if unusable."""
    if not entity.HasField("vehicle") or not entity.vehicle.HasField("position"):
        return None
    vehicle = entity.vehicle
    position = vehicle.position
    lat, lon = position.latitude, position.longitude
    if not (math.isfinite(lat) and math.isfinite(lon)) or not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return None
    if not entity.id:
        return None
    trip = vehicle.trip
    desc = vehicle.vehicle
    return {
        "vehicle_id": entity.id,
        "trip_id": trip.trip_id or None,
        "route_id": trip.route_id or None,
        "trip_start_time": trip.start_time or None,
        "trip_start_date": trip.start_date or None,
        "direction_id": _optional(trip, "direction_id"),
        "schedule_relationship": _enum_name(_TripDescriptor.ScheduleRelationship, trip, "schedule_relationship"),
        "latitude": lat,
        "longitude": lon,
        "bearing": _optional(position, "bearing"),
        "odometer": _optional(position, "odometer"),
        "speed": _optional(position, "speed"),
        "current_stop_sequence": _optional(vehicle, "current_stop_sequence"),
        "stop_id": vehicle.stop_id or None,
        "current_status": _enum_name(_VehiclePosition.VehicleStopStatus, vehicle, "current_status"),
        "position_timestamp": vehicle.timestamp if vehicle.HasField("timestamp") else now,
        "congestion_level": _enum_name(_VehiclePosition.CongestionLevel, vehicle, "congestion_level"),
        "occupancy_status": _enum_name(_VehiclePosition.OccupancyStatus, vehicle, "occupancy_status"),
        "vehicle_label": desc.label or None,
        "vehicle_license_plate": desc.license_plate or None,
    }


def decode_feed(category: str, content: bytes) -> DecodedFeed:
    """Parse a FeedMessage, skipping and counting entities without a usable position."""
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(content)
    except DecodeError as e:
        raise UpstreamError(f"Malformed realtime feed for {category}: {e}", source=category) from e

    now = int(time.time())
    decoded = DecodedFeed(
        category=category,
        feed_timestamp=feed.header.timestamp if feed.header.HasField("timestamp") else None,
        fetched=len(feed.entity),
    )
    for entity in feed.entity:
        record = entity_to_record(entity, now)
        if record is None:
            decoded.skipped += 1
            continue
        decoded.records.append(record)
    if decoded.skipped:
        logger.warning("Skipped %d malformed entities in %s feed", decoded.skipped, category)
    return decoded


class FeedClient:
    """Fetches the binary vehicle-position feed of each realtime category."""

    def __init__(self, client: httpx.AsyncClient | None = None, retries: int = settings.http_max_retries) -> None:
        self.retries = retries
        self._client = client or httpx.AsyncClient(timeout=settings.realtime_fetch_timeout_seconds)

    async def close(self) -> None:
        await self._client.aclose()

    def feed_url(self, category: FeedCategory) -> tuple[str, dict | None]:
        if not category.realtime_provider:
            raise UpstreamError(f"Category {category.name} has no realtime feed", source=category.name)
        url = f"{settings.realtime_base_url}/{category.realtime_provider}"
        params = {"category": category.name} if category.realtime_query_category else None
        return url, params

    async def fetch(self, category: FeedCategory) -> DecodedFeed:
        url, params = self.feed_url(category)
        resp = await get_with_retry(
            self._client, url, f"{category.name} vehicle positions", self.retries, params=params,
        )
        decoded = decode_feed(category.name, resp.content)
        logger.info(
            "Fetched %d vehicle positions for %s (%d usable)",
            decoded.fetched, category.name, len(decoded.records),
        )
        return decoded
