import datetime

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from transitplan.models.base import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class RouteCacheEntry(Base):
    __tablename__ = "route_cache"
    __table_args__ = (
        UniqueConstraint("origin_lat", "origin_lon", "dest_lat", "dest_lon", "mode", name="uq_route_cache_key"),
        Index("ix_route_cache_expiry", "expires_at"),
        Index("ix_route_cache_hits", "hit_count"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Quantized to ~100m (3 decimals)
    origin_lat: Mapped[float] = mapped_column(Float, nullable=False)
    origin_lon: Mapped[float] = mapped_column(Float, nullable=False)
    dest_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dest_lon: Mapped[float] = mapped_column(Float, nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False)

    distance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # km
    duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # minutes
    emissions: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # kg CO2
    geometry: Mapped[str | None] = mapped_column(Text, nullable=True)  # encoded polyline
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)  # serialized itinerary set

    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def vehicle_positions_table(metadata: MetaData, suffix: str, schema: str | None) -> Table:
    """Realtime vehicle positions for one feed category."""
    return Table(
        f"vehicle_positions_{suffix}",
        metadata,
        Column("id", BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
        Column("vehicle_id", String(100), nullable=False),
        Column("trip_id", String(100)),
        Column("route_id", String(100)),
        Column("trip_start_time", String(20)),
        Column("trip_start_date", String(20)),
        Column("direction_id", Integer),
        Column("schedule_relationship", String(50)),
        Column("latitude", Float, nullable=False),
        Column("longitude", Float, nullable=False),
        Column("bearing", Float),
        Column("odometer", Float),
        Column("speed", Float),
        Column("current_stop_sequence", Integer),
        Column("stop_id", String(100)),
        Column("current_status", String(50)),
        Column("position_timestamp", BigInteger, nullable=False),
        Column("congestion_level", String(50)),
        Column("occupancy_status", String(50)),
        Column("vehicle_label", String(100)),
        Column("vehicle_license_plate", String(50)),
        Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
        Column("updated_at", DateTime(timezone=True), nullable=False, default=_utcnow),
        UniqueConstraint("vehicle_id", "position_timestamp", name=f"uq_vp_{suffix}_vehicle_ts"),
        Index(f"ix_vp_{suffix}_route", "route_id"),
        Index(f"ix_vp_{suffix}_created", "created_at"),
        Index(f"ix_vp_{suffix}_location", "latitude", "longitude"),
        schema=schema,
    )


def stops_table(metadata: MetaData, suffix: str, schema: str | None) -> Table:
    return Table(
        f"stops_{suffix}",
        metadata,
        Column("stop_id", String(50), primary_key=True),
        Column("stop_code", String(50)),
        Column("stop_name", String(255), nullable=False),
        Column("stop_lat", Float, nullable=False),
        Column("stop_lon", Float, nullable=False),
        schema=schema,
    )


def routes_table(metadata: MetaData, suffix: str, schema: str | None) -> Table:
    return Table(
        f"routes_{suffix}",
        metadata,
        Column("route_id", String(50), primary_key=True),
        Column("route_short_name", String(50)),
        Column("route_long_name", String(255)),
        Column("route_type", Integer, nullable=False),
        Column("route_color", String(6)),
        schema=schema,
    )


def trips_table(metadata: MetaData, suffix: str, schema: str | None) -> Table:
    return Table(
        f"trips_{suffix}",
        metadata,
        Column("trip_id", String(50), primary_key=True),
        Column("route_id", String(50), nullable=False),
        Column("trip_headsign", String(255)),
        Column("direction_id", Integer),
        Column("shape_id", String(50)),
        schema=schema,
    )


def stop_times_table(metadata: MetaData, suffix: str, schema: str | None) -> Table:
    return Table(
        f"stop_times_{suffix}",
        metadata,
        Column("trip_id", String(50), primary_key=True),
        Column("stop_sequence", Integer, primary_key=True),
        Column("stop_id", String(50), nullable=False),
        Column("arrival_time", String(8)),
        Column("departure_time", String(8)),
        Column("shape_dist_traveled", Float),
        schema=schema,
    )


def shapes_table(metadata: MetaData, suffix: str, schema: str | None) -> Table:
    return Table(
        f"shapes_{suffix}",
        metadata,
        Column("shape_id", String(50), primary_key=True),
        Column("shape_pt_sequence", Integer, primary_key=True),
        Column("shape_pt_lat", Float, nullable=False),
        Column("shape_pt_lon", Float, nullable=False),
        Column("shape_dist_traveled", Float),
        schema=schema,
    )
