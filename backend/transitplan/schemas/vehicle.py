from pydantic import BaseModel


class VehiclePositionOut(BaseModel):
    vehicle_id: str
    trip_id: str | None = None
    route_id: str | None = None
    direction_id: int | None = None
    latitude: float
    longitude: float
    bearing: float | None = None
    speed: float | None = None
    current_stop_sequence: int | None = None
    stop_id: str | None = None
    current_status: str | None = None
    position_timestamp: int
    vehicle_label: str | None = None
    vehicle_license_plate: str | None = None
    occupancy_status: str | None = None
    category: str | None = None
    distance_km: float | None = None
    created_at: str | None = None


class RouteVehicleQuery(BaseModel):
    category: str
    route_id: str
    minutes_old: int | None = None
    direction_id: int | None = None
    min_stop_sequence: int | None = None
    max_stop_sequence: int | None = None


class RefreshResult(BaseModel):
    success: bool
    category: str
    fetched: int = 0
    feed_timestamp: int | None = None
    deleted: int = 0
    inserted: int = 0
    skipped: int = 0
    error: str | None = None
    error_kind: str | None = None  # "upstream" | "persistence" | "validation"
    timestamp: str


class CategoryHealth(BaseModel):
    recent_vehicles: int = 0
    latest_update: str | None = None
    error: str | None = None


class ServiceHealth(BaseModel):
    status: str
    categories: dict[str, CategoryHealth]
    timestamp: str


class RouteVehicles(BaseModel):
    category: str
    route_id: str
    vehicles: list[VehiclePositionOut]
    count: int
    most_recent_data_timestamp: str | None = None
    error: str | None = None
