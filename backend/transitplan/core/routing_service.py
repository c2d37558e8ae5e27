"""Point-to-point road routes and cross-mode emissions comparison."""

import datetime
import logging

import httpx

from transitplan.config import settings
from transitplan.core.emissions import (
    CAR_EMISSION_FACTORS,
    FUEL_LABELS,
    MOTORCYCLE_EMISSION_FACTORS,
    TRANSIT_EMISSION_FACTORS,
    simple_mode_emission_factor,
)
from transitplan.core.errors import UpstreamError, ValidationError
from transitplan.core.geo import decode_polyline, encode_polyline, haversine_km, validate_coordinates
from transitplan.core.http import get_with_retry
from transitplan.core.route_cache import RouteCache
from transitplan.schemas.routing import ModeComparison, ModeScenario, SimpleRoute

logger = logging.getLogger(__name__)

# Travel mode -> OSRM profile
MODE_PROFILES = {
    "car": "driving",
    "motorcycle": "driving",
    "bicycle": "bike",
    "walking": "foot",
}

ROAD_FACTOR = 1.3  # straight line to road distance
ESTIMATE_SPEED_KMH = 30.0
MOTORCYCLE_DURATION_FACTOR = 0.9
MAX_ACTIVE_DISTANCE_KM = 15.0

# (mode, label, duration factor vs driving)
PUBLIC_MODES = [
    ("bus", "Bus", 1.5),
    ("mrt", "MRT", 1.2),
    ("lrt", "LRT", 1.3),
    ("train", "Train", 1.2),
]

# (mode, label, average speed km/h)
ACTIVE_MODES = [
    ("bicycle", "Bicycle", 15.0),
    ("walking", "Walking", 5.0),
]


class RoutingService:
    """Road routing through OSRM, with a straight-line estimate when it is unreachable."""

    def __init__(
        self,
        cache: RouteCache | None = None,
        client: httpx.AsyncClient | None = None,
        retries: int = settings.http_max_retries,
    ) -> None:
        self.cache = cache
        self.retries = retries
        self._client = client or httpx.AsyncClient(
            base_url=settings.osrm_base_url,
            timeout=settings.osrm_timeout_seconds,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_route(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float, mode: str,
    ) -> SimpleRoute:
        """Live route for one mode, never cached."""
        profile = MODE_PROFILES.get(mode)
        if profile is None:
            raise ValidationError(f"Unsupported travel mode: {mode}. Available: {', '.join(MODE_PROFILES)}")
        try:
            resp = await get_with_retry(
                self._client,
                f"/route/v1/{profile}/{origin_lon},{origin_lat};{dest_lon},{dest_lat}",
                f"OSRM {profile} route",
                self.retries,
                params={"overview": "full", "geometries": "geojson"},
            )
            data = resp.json()
            if data.get("code") != "Ok" or not data.get("routes"):
                raise UpstreamError(f"OSRM found no route ({data.get('code')})", source="osrm")
            best = data["routes"][0]
            distance = best["distance"] / 1000
            duration = best["duration"] / 60
            coords = [(lat, lon) for lon, lat in best["geometry"]["coordinates"]]
            estimated = False
        except (UpstreamError, ValueError, KeyError, TypeError) as e:
            logger.warning("OSRM %s route unavailable (%s), using straight-line estimate", profile, e)
            distance = haversine_km(origin_lat, origin_lon, dest_lat, dest_lon) * ROAD_FACTOR
            duration = distance / ESTIMATE_SPEED_KMH * 60
            coords = [(origin_lat, origin_lon), (dest_lat, dest_lon)]
            estimated = True

        return SimpleRoute(
            distance=distance,
            duration=duration,
            emissions=distance * simple_mode_emission_factor(mode),
            geometry=encode_polyline(coords),
            estimated=estimated,
        )

    async def get_route(
        self, origin_lat: float, origin_lon: float, dest_lat: float, dest_lon: float, mode: str = "car",
    ) -> SimpleRoute:
        """Cache-backed route. A reverse cache hit has its geometry flipped to match the request."""
        if not (validate_coordinates(origin_lat, origin_lon) and validate_coordinates(dest_lat, dest_lon)):
            raise ValidationError("Invalid coordinates")
        if mode not in MODE_PROFILES:
            raise ValidationError(f"Unsupported travel mode: {mode}. Available: {', '.join(MODE_PROFILES)}")

        if self.cache is not None:
            hit = await self.cache.get(origin_lat, origin_lon, dest_lat, dest_lon, mode)
            if hit is not None:
                geometry = hit.payload.get("geometry")
                if hit.reversed and geometry:
                    geometry = encode_polyline(list(reversed(decode_polyline(geometry))))
                return SimpleRoute(
                    distance=hit.payload["distance"],
                    duration=hit.payload["duration"],
                    emissions=hit.payload["emissions"],
                    geometry=geometry,
                    cached=True,
                    reversed=hit.reversed,
                )

        route = await self.fetch_route(origin_lat, origin_lon, dest_lat, dest_lon, mode)
        # Estimates are not worth keeping for 30 days
        if self.cache is not None and not route.estimated:
            await self.cache.set(
                origin_lat, origin_lon, dest_lat, dest_lon, mode,
                route.model_dump(include={"distance", "duration", "emissions", "geometry"}),
            )
        return route

    async def compare_transport_modes(
        self,
        origin_lat: float,
        origin_lon: float,
        dest_lat: float,
        dest_lon: float,
        exclude_private: bool = False,
        exclude_public: bool = False,
        exclude_active: bool = False,
        vehicle_sizes: list[str] | None = None,
        fuel_types: list[str] | None = None,
    ) -> ModeComparison:
        """Every mode scenario for the trip, lowest emissions first."""
        driving = await self.get_route(origin_lat, origin_lon, dest_lat, dest_lon, "car")
        distance = driving.distance
        scenarios: list[ModeScenario] = []

        if not exclude_private:
            for size in vehicle_sizes or list(CAR_EMISSION_FACTORS):
                for fuel in fuel_types or list(FUEL_LABELS):
                    factor = CAR_EMISSION_FACTORS.get(size, {}).get(fuel)
                    if factor is None:
                        raise ValidationError(f"Unknown car size/fuel: {size}/{fuel}")
                    scenarios.append(ModeScenario(
                        id=f"car_{size}_{fuel}",
                        mode="car",
                        name=f"Car ({size.capitalize()}, {FUEL_LABELS[fuel]})",
                        category="private",
                        size=size,
                        fuel_type=fuel,
                        distance=distance,
                        duration=driving.duration,
                        emissions=distance * factor,
                        emission_factor=factor,
                        estimated=driving.estimated,
                    ))
            for size, factor in MOTORCYCLE_EMISSION_FACTORS.items():
                scenarios.append(ModeScenario(
                    id=f"motorcycle_{size}",
                    mode="motorcycle",
                    name=f"Motorcycle ({size.capitalize()})",
                    category="private",
                    size=size,
                    distance=distance,
                    duration=driving.duration * MOTORCYCLE_DURATION_FACTOR,
                    emissions=distance * factor,
                    emission_factor=factor,
                    estimated=driving.estimated,
                ))

        if not exclude_public:
            for mode, label, slowdown in PUBLIC_MODES:
                factor = TRANSIT_EMISSION_FACTORS[mode]
                scenarios.append(ModeScenario(
                    id=mode,
                    mode=mode,
                    name=label,
                    category="public",
                    distance=distance,
                    duration=driving.duration * slowdown,
                    emissions=distance * factor,
                    emission_factor=factor,
                    estimated=True,
                    note="Estimated route and duration - actual public transport routes may vary",
                ))

        if not exclude_active and distance <= MAX_ACTIVE_DISTANCE_KM:
            for mode, label, speed in ACTIVE_MODES:
                scenarios.append(ModeScenario(
                    id=mode,
                    mode=mode,
                    name=label,
                    category="active",
                    distance=distance,
                    duration=distance / speed * 60,
                    emissions=0.0,
                    emission_factor=0.0,
                    estimated=True,
                ))

        scenarios.sort(key=lambda s: s.emissions)
        worst = max((s.emissions for s in scenarios), default=0.0)
        for rank, scenario in enumerate(scenarios, start=1):
            scenario.rank = rank
            scenario.emissions_vs_worst = round(scenario.emissions / worst * 100, 1) if worst > 0 else 0.0
            scenario.savings_vs_worst = worst - scenario.emissions

        return ModeComparison(
            success=True,
            direct_distance=haversine_km(origin_lat, origin_lon, dest_lat, dest_lon),
            route_distance=distance,
            geometry=driving.geometry,
            scenarios=scenarios,
            best_option=scenarios[0] if scenarios else None,
            worst_option=scenarios[-1] if scenarios else None,
            timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )
