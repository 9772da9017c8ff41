"""
Purpose: Domain models for the Errands capability.
What it does:
- Defines core data structures:
- Errand (id, requester/runner ids, pickup + dropoff places, transaction code, status, timestamps)
- Place (address + coordinates), Coordinates (lat/lon)
- ActorPosition (latest sampled position of an actor, no history)
- StatusChange (audit record written on every committed transition)

Defines enums/constants:
- ErrandStatus = PENDING | ACCEPTED | PICKED_UP | ON_THE_WAY | DELIVERED | COMPLETED | CANCELLED
- ActorRole = REQUESTER | RUNNER
- ErrandAction = ACCEPT | MARK_PICKED_UP | START_DELIVERY | MARK_DELIVERED | COMPLETE | CANCEL

Rule: No persistence, no transition logic. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Optional
import uuid

from .exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrandStatus(str, Enum):
    """
    The one canonical status vocabulary.
    The legacy "in_progress"/"started" values are not accepted: they do not map
    cleanly onto picked_up or on_the_way.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: str | ErrandStatus) -> ErrandStatus:
        if isinstance(value, ErrandStatus):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown errand status: {value!r}") from None

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES: FrozenSet[ErrandStatus] = frozenset(
    {ErrandStatus.COMPLETED, ErrandStatus.CANCELLED}
)

# statuses during which the runner is moving and gets tracked
ACTIVE_STATUSES: FrozenSet[ErrandStatus] = frozenset(
    {ErrandStatus.ACCEPTED, ErrandStatus.PICKED_UP, ErrandStatus.ON_THE_WAY}
)

NON_TERMINAL_STATUSES: FrozenSet[ErrandStatus] = frozenset(ErrandStatus) - TERMINAL_STATUSES


class ActorRole(str, Enum):
    REQUESTER = "requester"
    RUNNER = "runner"


class ErrandAction(str, Enum):
    ACCEPT = "accept"
    MARK_PICKED_UP = "mark_picked_up"
    START_DELIVERY = "start_delivery"
    MARK_DELIVERED = "mark_delivered"
    COMPLETE = "complete"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    @classmethod
    def of(cls, latitude, longitude) -> Coordinates:
        """
        Validating constructor. Raises ValidationError for missing,
        non-numeric or out of range values.
        """
        if latitude is None or longitude is None:
            raise ValidationError("Coordinates require both latitude and longitude")
        try:
            lat = float(latitude)
            lon = float(longitude)
        except (TypeError, ValueError):
            raise ValidationError(f"Coordinates must be numeric, got ({latitude!r}, {longitude!r})") from None

        if not -90.0 <= lat <= 90.0:
            raise ValidationError(f"Latitude out of range: {lat}")
        if not -180.0 <= lon <= 180.0:
            raise ValidationError(f"Longitude out of range: {lon}")
        return cls(latitude=lat, longitude=lon)

    def as_tuple(self):
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class Place:
    """
    An address string plus the coordinates it resolves to.
    """
    address: str
    coordinates: Coordinates

    @classmethod
    def of(cls, address: str, latitude, longitude) -> Place:
        return cls(address=address, coordinates=Coordinates.of(latitude, longitude))


@dataclass(frozen=True)
class Errand:
    """
    The central entity. Frozen: every update returns a new instance via `evolve`,
    the repository is the only owner of the authoritative copy.
    """
    id: str
    requester_id: str
    pickup: Place
    dropoff: Place
    transaction_code: str

    status: ErrandStatus = ErrandStatus.PENDING
    runner_id: Optional[str] = None

    errand_type: str = ""
    description: str = ""
    price_estimate: float = 0.0
    distance_km: Optional[float] = None  # last computed, derived

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @staticmethod
    def new(
        requester_id: str,
        pickup: Place,
        dropoff: Place,
        transaction_code: str,
        *,
        errand_type: str = "",
        description: str = "",
        price_estimate: float = 0.0,
        now: Optional[datetime] = None,
    ) -> Errand:
        if not requester_id:
            raise ValidationError("An errand needs a requester")
        if pickup is None or dropoff is None:
            raise ValidationError("An errand needs both a pickup and a dropoff")
        now = now or utcnow()
        return Errand(
            id=str(uuid.uuid4()),
            requester_id=requester_id,
            pickup=pickup,
            dropoff=dropoff,
            transaction_code=transaction_code,
            errand_type=errand_type,
            description=description,
            price_estimate=price_estimate,
            created_at=now,
            updated_at=now,
        )

    def counterpart_of(self, actor_id: str) -> Optional[str]:
        """
        requester <-> runner. None when the other side does not exist yet
        (e.g. a pending errand has no runner).
        """
        if actor_id == self.requester_id:
            return self.runner_id
        if self.runner_id is not None and actor_id == self.runner_id:
            return self.requester_id
        return None

    def evolve(self, **changes) -> Errand:
        return replace(self, **changes)


@dataclass(frozen=True)
class ActorPosition:
    actor_id: str
    coordinates: Coordinates
    sampled_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class StatusChange:
    errand_id: str
    from_status: ErrandStatus
    to_status: ErrandStatus
    changed_by: str
    changed_at: datetime = field(default_factory=utcnow)
