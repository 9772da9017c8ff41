"""
Shared store for the latest position of each actor.

Latest-write-wins, no path history. A stale sample (older than the stored one)
never overwrites a newer one, so a slow publish cannot move a runner backwards.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

from errands.models import ActorPosition, Coordinates

from .estimator import distance_km


class LocationStore(Protocol):
    async def set_actor_location(
        self, actor_id: str, coords: Coordinates, sampled_at: datetime
    ) -> ActorPosition:
        ...

    async def get_actor_location(self, actor_id: str) -> Optional[ActorPosition]:
        ...


class InMemoryLocationStore:
    def __init__(self):
        self._positions: Dict[str, ActorPosition] = {}

    async def set_actor_location(
        self, actor_id: str, coords: Coordinates, sampled_at: datetime
    ) -> ActorPosition:
        position = ActorPosition(actor_id=actor_id, coordinates=coords, sampled_at=sampled_at)
        current = self._positions.get(actor_id)
        if current is not None and current.sampled_at > sampled_at:
            return current
        self._positions[actor_id] = position
        return position

    async def get_actor_location(self, actor_id: str) -> Optional[ActorPosition]:
        return self._positions.get(actor_id)

    async def nearby_actors(
        self, center: Coordinates, radius_km: float, *, exclude: Optional[str] = None
    ) -> List[Tuple[ActorPosition, float]]:
        """
        (position, distance_km) pairs within radius, closest first.
        """
        found = []
        for actor_id, position in self._positions.items():
            if actor_id == exclude:
                continue
            distance = distance_km(center, position.coordinates)
            if distance <= radius_km:
                found.append((position, distance))
        found.sort(key=lambda pair: pair[1])
        return found
