from pydantic import BaseModel


class SimpleRoute(BaseModel):
    distance: float  # km
    duration: float  # minutes
    emissions: float = 0.0
    geometry: str | None = None  # encoded polyline
    estimated: bool = False
    cached: bool = False
    reversed: bool = False


class ModeScenario(BaseModel):
    id: str
    mode: str
    name: str
    category: str  # private | public | active
    size: str | None = None
    fuel_type: str | None = None
    distance: float
    duration: float
    emissions: float
    emission_factor: float
    estimated: bool = False
    note: str | None = None
    rank: int = 0
    emissions_vs_worst: float = 0.0  # percent
    savings_vs_worst: float = 0.0  # kg CO2


class ModeComparison(BaseModel):
    success: bool
    direct_distance: float
    route_distance: float
    geometry: str | None = None
    scenarios: list[ModeScenario]
    best_option: ModeScenario | None = None
    worst_option: ModeScenario | None = None
    timestamp: str


class PrewarmItem(BaseModel):
    name: str
    origin_lat: float
    origin_lon: float
    dest_lat: float
    dest_lon: float
    mode: str = "transit"


class PrewarmItemResult(BaseModel):
    name: str
    mode: str
    status: str  # cached | skipped | error
    error: str | None = None


class PrewarmReport(BaseModel):
    total: int
    cached: int
    skipped: int
    errors: int
    items: list[PrewarmItemResult]
    elapsed_seconds: float


class CacheModeStats(BaseModel):
    mode: str
    total_routes: int
    total_hits: int
    avg_hits_per_route: float
    max_hits: int
    oldest_route: str | None = None
    newest_route: str | None = None


class CacheStats(BaseModel):
    by_mode: list[CacheModeStats]
    session_hits: int
    session_misses: int
    session_hit_rate: float  # percent
