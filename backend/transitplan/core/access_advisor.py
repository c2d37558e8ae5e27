"""Rank ways of reaching a stop that is beyond walking range."""

import logging

from transitplan.config import settings
from transitplan.core.emissions import HAILED_CAR_FACTOR
from transitplan.schemas.transit import AccessAdvice, AccessOption

logger = logging.getLogger(__name__)

CYCLING_SPEED_KMH = 15.0
ROAD_SPEED_KMH = 30.0
MAX_WALK_OPTION_KM = 5.0
MAX_CYCLE_OPTION_KM = 10.0
BIKE_SHARE_UNLOCK_MINUTES = 5
BIKE_SHARE_COST = 2.0
EHAIL_BOOKING_MINUTES = 5
TAXI_WAIT_MINUTES = 3

# Weighted score: cost (RM) + emissions (kg) * 10 + duration (min) / 10
EMISSIONS_WEIGHT = 10.0
DURATION_WEIGHT = 0.1


def _score(option: AccessOption) -> float:
    return option.cost + option.emissions * EMISSIONS_WEIGHT + option.duration * DURATION_WEIGHT


def access_options(distance_km: float, kind: str, stop_name: str) -> AccessAdvice:
    """Estimate access modes for a stop ``distance_km`` away.

    ``kind`` is ``origin`` (getting to the stop) or ``destination`` (getting
    from it). E-hailing and taxi are always offered, so the list is never empty.
    """
    direction = "to" if kind == "origin" else "from"
    walk_min = round(distance_km / settings.walking_speed_kmh * 60)
    cycle_min = round(distance_km / CYCLING_SPEED_KMH * 60)
    road_min = round(distance_km / ROAD_SPEED_KMH * 60)
    grab_cost = float(max(5, round(5 + distance_km * 1.8)))
    taxi_cost = float(max(4, round(4 + distance_km * 2)))

    options: list[AccessOption] = []
    if settings.max_walking_distance_km < distance_km <= MAX_WALK_OPTION_KM:
        options.append(AccessOption(
            mode="walking", name="Walk", duration=walk_min, cost=0.0, cost_display="Free",
            distance=distance_km,
            description=f"{walk_min} min walk {direction} {stop_name}",
            emissions=0.0,
            recommendation="Good exercise!" if distance_km < 2.5 else "Quite far, consider alternatives",
        ))
    if distance_km <= MAX_CYCLE_OPTION_KM:
        options.append(AccessOption(
            mode="cycling", name="Cycle (own bike)", duration=cycle_min, cost=0.0, cost_display="Free",
            distance=distance_km,
            description=f"{cycle_min} min cycle {direction} {stop_name}",
            emissions=0.0, recommendation="Healthy and eco-friendly",
        ))
        share_min = cycle_min + BIKE_SHARE_UNLOCK_MINUTES
        options.append(AccessOption(
            mode="bike-sharing", name="Bike Sharing", duration=share_min,
            cost=BIKE_SHARE_COST, cost_display=f"~RM{BIKE_SHARE_COST:g}",
            distance=distance_km,
            description=f"{share_min} min (incl. finding bike) {direction} {stop_name}",
            emissions=0.0, recommendation="Quick and affordable",
        ))
    grab_min = road_min + EHAIL_BOOKING_MINUTES
    options.append(AccessOption(
        mode="grab", name="Grab/MyCar", duration=grab_min,
        cost=grab_cost, cost_display=f"~RM{grab_cost:g}",
        distance=distance_km,
        description=f"{grab_min} min ride {direction} {stop_name} (incl. booking)",
        emissions=distance_km * HAILED_CAR_FACTOR,
        recommendation="Most convenient option" if distance_km < 3 else "Fast but adds cost",
    ))
    taxi_min = road_min + TAXI_WAIT_MINUTES
    options.append(AccessOption(
        mode="taxi", name="Taxi", duration=taxi_min,
        cost=taxi_cost, cost_display=f"~RM{taxi_cost:g}",
        distance=distance_km,
        description=f"{taxi_min} min ride {direction} {stop_name}",
        emissions=distance_km * HAILED_CAR_FACTOR,
        recommendation="Available at stands or by call",
    ))

    options.sort(key=_score)
    best = options[0]
    text = f'Nearest stop is "{stop_name}" ({distance_km:.2f}km away). '
    if best.cost == 0:
        text += f"Recommended: {best.name} ({best.duration} min, free, zero emissions)"
    else:
        text += f"Recommended: {best.name} ({best.duration} min, {best.cost_display})"

    return AccessAdvice(
        distance=distance_km, stop_name=stop_name, type=kind,
        options=options, best_option=best, recommendation=text,
    )
