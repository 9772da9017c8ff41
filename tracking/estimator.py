#Purpose: Distance + ETA estimation policy.
#Straight-line (haversine) distance between the runner and the anchor that matters for
#the errand's current status, converted into an ETA with a fixed average speed.
#Typical consumers:
#customer-facing "arrives in X" on the tracking display
#runner's "errands near me" list
#No turn-by-turn routing: this is a great-circle approximation.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import math

from errands.exceptions import ValidationError
from errands.models import ActorPosition, Coordinates, Errand, ErrandStatus, Place

EARTH_RADIUS_KM = 6371.0
DEFAULT_AVG_SPEED_KMH = 20.0


def deg2rad(deg: float) -> float:
    return deg * (math.pi / 180)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def distance_km(a: Coordinates, b: Coordinates) -> float:
    """
    Haversine great-circle distance in km.
    """
    d_lat = deg2rad(b.latitude - a.latitude)
    d_lon = deg2rad(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(deg2rad(a.latitude)) * math.cos(deg2rad(b.latitude)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def current_anchor(errand: Errand) -> Place:
    """
    Dropoff once the goods are with the runner, pickup before that.
    """
    if errand.status in (ErrandStatus.PICKED_UP, ErrandStatus.ON_THE_WAY):
        return errand.dropoff
    return errand.pickup


def eta_minutes(distance: float, avg_speed_kmh: float = DEFAULT_AVG_SPEED_KMH) -> int:
    if avg_speed_kmh <= 0:
        raise ValidationError(f"Average speed must be positive, got {avg_speed_kmh}")
    if distance < 0:
        raise ValidationError(f"Distance cannot be negative, got {distance}")
    return _round_half_up(distance / avg_speed_kmh * 60)


def format_distance(distance: float) -> str:
    """
    Under 1 km in whole meters ("500 m"), otherwise km to one decimal ("1.2 km").
    """
    if distance < 1:
        return f"{_round_half_up(distance * 1000)} m"
    return f"{_round_half_up(distance * 10) / 10:.1f} km"


def format_eta(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    return f"{hours} hr {mins} min"


@dataclass(frozen=True)
class EtaEstimate:
    """
    One recomputation for one errand: where the runner is heading and how long it should take.
    """
    errand_id: str
    status: ErrandStatus
    anchor: Place
    distance_km: float
    eta_minutes: int
    sampled_at: datetime

    @property
    def distance_label(self) -> str:
        return format_distance(self.distance_km)

    @property
    def eta_label(self) -> str:
        return format_eta(self.eta_minutes)


class DistanceEtaEstimator:
    def __init__(self, avg_speed_kmh: float = DEFAULT_AVG_SPEED_KMH):
        if avg_speed_kmh <= 0:
            raise ValidationError(f"Average speed must be positive, got {avg_speed_kmh}")
        self.avg_speed_kmh = avg_speed_kmh

    def distance_km(self, a: Coordinates, b: Coordinates) -> float:
        return distance_km(a, b)

    def current_anchor(self, errand: Errand) -> Place:
        return current_anchor(errand)

    def eta_minutes(self, distance: float) -> int:
        return eta_minutes(distance, self.avg_speed_kmh)

    def estimate(self, errand: Errand, position: ActorPosition) -> EtaEstimate:
        anchor = current_anchor(errand)
        distance = distance_km(position.coordinates, anchor.coordinates)
        return EtaEstimate(
            errand_id=errand.id,
            status=errand.status,
            anchor=anchor,
            distance_km=distance,
            eta_minutes=self.eta_minutes(distance),
            sampled_at=position.sampled_at,
        )
