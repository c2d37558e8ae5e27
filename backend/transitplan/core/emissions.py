"""Transit mode mapping, average speeds and emission factors."""

# GTFS route_type -> display mode
ROUTE_TYPE_MODES = {
    0: "lrt",
    1: "mrt",
    2: "train",
    3: "bus",
    4: "ferry",
    5: "train",
    6: "lrt",
    7: "monorail",
}

# kg CO2 per passenger-km
TRANSIT_EMISSION_FACTORS = {
    "bus": 0.089,
    "mrt": 0.023,
    "lrt": 0.023,
    "monorail": 0.023,
    "train": 0.041,
}

BUS_SPEED_KMH = 30.0
RAIL_SPEED_KMH = 50.0

# Private vehicle factors, kg CO2/km by size and fuel type
CAR_EMISSION_FACTORS = {
    "small": {"petrol": 0.142, "diesel": 0.125, "hybrid": 0.097, "phev": 0.050, "bev": 0.0},
    "medium": {"petrol": 0.192, "diesel": 0.171, "hybrid": 0.121, "phev": 0.067, "bev": 0.0},
    "large": {"petrol": 0.282, "diesel": 0.251, "hybrid": 0.178, "phev": 0.103, "bev": 0.0},
}

MOTORCYCLE_EMISSION_FACTORS = {"small": 0.084, "medium": 0.103, "large": 0.134}

# Ride-hailing and taxi use the medium diesel car factor
HAILED_CAR_FACTOR = 0.171

FUEL_LABELS = {
    "petrol": "Petrol",
    "diesel": "Diesel",
    "hybrid": "Hybrid",
    "phev": "Plug-in Hybrid",
    "bev": "Electric",
}


def mode_for_route_type(route_type: int | None) -> str:
    return ROUTE_TYPE_MODES.get(route_type, "bus")


def transit_speed_kmh(mode: str) -> float:
    return BUS_SPEED_KMH if mode == "bus" else RAIL_SPEED_KMH


def transit_emission_factor(mode: str) -> float:
    return TRANSIT_EMISSION_FACTORS.get(mode, TRANSIT_EMISSION_FACTORS["bus"])


def transit_leg_metrics(mode: str, distance_km: float) -> tuple[float, float]:
    """(duration minutes, emissions kg) for a transit ride of ``distance_km``."""
    duration = distance_km / transit_speed_kmh(mode) * 60
    emissions = distance_km * transit_emission_factor(mode)
    return duration, emissions


def simple_mode_emission_factor(mode: str) -> float:
    """Factor for the point-to-point modes served by the road router."""
    if mode == "car":
        return CAR_EMISSION_FACTORS["medium"]["petrol"]
    if mode == "motorcycle":
        return MOTORCYCLE_EMISSION_FACTORS["medium"]
    return TRANSIT_EMISSION_FACTORS.get(mode, 0.0)
