"""
Purpose: Periodic position sampling for actors with an active errand.
What it does:
- start(actor_id, interval_ms): one PeriodicJob per actor that reads the device position
  and publishes {actor_id, coordinates, sampled_at} to the LocationStore.
- stop(actor_id): cancels that job.
- Every tick is fire-and-forget: a failed read or publish drops the sample. No queue,
  no retry, only the newest successfully published position counts.
- Listeners (e.g. EtaFeed) are told about every successful publish.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from errands.models import ActorPosition, Coordinates, utcnow

from .location_store import LocationStore
from .scheduler import PeriodicJob

logger = logging.getLogger(__name__)

PublishListener = Callable[[ActorPosition], Awaitable[None]]

# while an errand is active; ambient checks run slower (see LifecyclePolicy)
DEFAULT_ACTIVE_INTERVAL_MS = 10_000


class PositionSource(Protocol):
    async def current_position(self, actor_id: str) -> Coordinates:
        ...


class LocationTracker:
    def __init__(
        self,
        position_source: PositionSource,
        location_store: LocationStore,
        *,
        default_interval_ms: int = DEFAULT_ACTIVE_INTERVAL_MS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.position_source = position_source
        self.location_store = location_store
        self.default_interval_ms = default_interval_ms
        self.clock = clock
        self._jobs: Dict[str, PeriodicJob] = {}
        self._listeners: List[PublishListener] = []
        self.dropped_samples = 0

    def add_listener(self, listener: PublishListener) -> None:
        self._listeners.append(listener)

    def is_tracking(self, actor_id: str) -> bool:
        job = self._jobs.get(actor_id)
        return job is not None and job.running

    def interval_of(self, actor_id: str) -> Optional[int]:
        job = self._jobs.get(actor_id)
        return job.interval_ms if job is not None and job.running else None

    @property
    def tracked_actors(self) -> List[str]:
        return sorted(actor_id for actor_id in self._jobs if self.is_tracking(actor_id))

    def start(self, actor_id: str, interval_ms: Optional[int] = None) -> None:
        """
        Begin sampling `actor_id`. Restarting an already tracked actor with a new
        interval replaces the running job.
        """
        interval_ms = interval_ms or self.default_interval_ms
        current = self._jobs.get(actor_id)
        if current is not None and current.running:
            if current.interval_ms == interval_ms:
                return
            current.stop()

        job = PeriodicJob(f"location:{actor_id}", interval_ms, lambda: self.tick(actor_id))
        self._jobs[actor_id] = job
        job.start()
        logger.info("Tracking %s every %d ms", actor_id, interval_ms)

    def stop(self, actor_id: str) -> None:
        job = self._jobs.pop(actor_id, None)
        if job is None:
            return
        job.stop()
        logger.info("Stopped tracking %s", actor_id)

    async def aclose(self) -> None:
        """
        Component teardown: cancel and await every job.
        """
        jobs, self._jobs = self._jobs, {}
        for job in jobs.values():
            await job.aclose()

    async def tick(self, actor_id: str) -> Optional[ActorPosition]:
        """
        Take and publish one sample. Returns the published position, or None if the
        sample was dropped.
        """
        try:
            coords = await self.position_source.current_position(actor_id)
            position = await self.location_store.set_actor_location(actor_id, coords, self.clock())
        except Exception as exc:
            self.dropped_samples += 1
            logger.warning("Dropped position sample for %s: %s", actor_id, exc)
            return None

        for listener in list(self._listeners):
            try:
                await listener(position)
            except Exception:
                logger.exception("Position listener failed for %s", actor_id)
        return position
