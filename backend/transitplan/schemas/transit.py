from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class Location(BaseModel):
    latitude: float
    longitude: float
    name: str | None = None
    stop_id: str | None = None


class NearbyStop(BaseModel):
    stop_id: str
    name: str
    code: str | None = None
    lat: float
    lon: float
    distance_km: float
    category: str


class RouteAtStop(BaseModel):
    route_id: str
    short_name: str | None = None
    long_name: str | None = None
    route_type: int
    color: str | None = None


class StopRef(BaseModel):
    stop_id: str
    name: str
    latitude: float
    longitude: float


class WalkLeg(BaseModel):
    type: Literal["walk"] = "walk"
    instruction: str
    distance: float  # km
    duration: float  # minutes
    emissions: float = 0.0
    start: Location
    end: Location


class TransitLeg(BaseModel):
    type: Literal["transit"] = "transit"
    mode: str
    instruction: str
    route_id: str
    route_name: str | None = None
    route_long_name: str | None = None
    trip_id: str | None = None
    headsign: str | None = None
    category: str
    board_stop: StopRef
    alight_stop: StopRef
    distance: float
    duration: float
    emissions: float
    geometry: str | None = None  # encoded polyline, None means straight line
    degraded: bool = False


class TransferLeg(BaseModel):
    type: Literal["transfer"] = "transfer"
    instruction: str
    distance: float
    duration: float
    emissions: float = 0.0
    at: Location
    to: Location | None = None  # connecting stop in another feed
    walking: bool = False


Leg = Annotated[Union[WalkLeg, TransitLeg, TransferLeg], Field(discriminator="type")]


class DirectItinerary(BaseModel):
    type: Literal["direct"] = "direct"
    category: str
    legs: list[Leg]
    total_distance: float
    total_duration: float
    total_emissions: float


class TransferItinerary(BaseModel):
    type: Literal["transfer"] = "transfer"
    category: str  # "mixed" when the legs come from different feeds
    transfer_point: str
    legs: list[Leg]
    total_distance: float
    total_duration: float
    total_emissions: float


Itinerary = Annotated[Union[DirectItinerary, TransferItinerary], Field(discriminator="type")]


class AccessOption(BaseModel):
    mode: str
    name: str
    duration: int  # minutes
    cost: float
    cost_display: str
    distance: float
    description: str
    emissions: float
    recommendation: str


class AccessAdvice(BaseModel):
    distance: float
    stop_name: str
    type: Literal["origin", "destination"]
    options: list[AccessOption]
    best_option: AccessOption
    recommendation: str


class RouteTypeCounts(BaseModel):
    direct: int = 0
    transfer: int = 0


class PlanResult(BaseModel):
    success: bool
    origin: Location | None = None
    destination: Location | None = None
    routes: list[Itinerary] = []
    direct_routes: list[DirectItinerary] = []
    transfer_routes: list[TransferItinerary] = []
    total_routes_found: int = 0
    best_route: Itinerary | None = None
    route_types: RouteTypeCounts = RouteTypeCounts()
    truncation: str | None = None
    error: str | None = None
    suggestion: str | None = None
    nearest_origin_stops: list[NearbyStop] = []
    nearest_dest_stops: list[NearbyStop] = []
    origin_stops: list[NearbyStop] = []
    dest_stops: list[NearbyStop] = []
    access_options: AccessAdvice | None = None
    cached: bool = False
    reversed: bool = False
    timestamp: str | None = None
