"""
Live distance/ETA updates for watched errands.

The feed is registered as a LocationTracker listener: every published position of a
runner recomputes the estimate for each watched errand that runner holds, and pushes
it to that errand's subscribers. Displays subscribe instead of polling the estimator.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from errands.models import ActorPosition, Errand

from .estimator import DistanceEtaEstimator, EtaEstimate

logger = logging.getLogger(__name__)

Subscriber = Callable[[EtaEstimate], Union[None, Awaitable[None]]]


class EtaFeed:
    def __init__(self, estimator: Optional[DistanceEtaEstimator] = None):
        self.estimator = estimator or DistanceEtaEstimator()
        self._errands: Dict[str, Errand] = {}
        self._latest: Dict[str, EtaEstimate] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}

    def watch(self, errand: Errand) -> None:
        """
        Start (or refresh) watching an errand. Call again after every status change
        so the anchor follows the status.
        """
        self._errands[errand.id] = errand

    def unwatch(self, errand_id: str) -> None:
        self._errands.pop(errand_id, None)
        self._subscribers.pop(errand_id, None)
        self._latest.pop(errand_id, None)

    def watching(self, errand_id: str) -> bool:
        return errand_id in self._errands

    def subscribe(self, errand_id: str, callback: Subscriber) -> Callable[[], None]:
        """
        Returns an unsubscribe function.
        """
        self._subscribers.setdefault(errand_id, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(errand_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def latest(self, errand_id: str) -> Optional[EtaEstimate]:
        return self._latest.get(errand_id)

    async def on_position(self, position: ActorPosition) -> List[EtaEstimate]:
        """
        LocationTracker listener.
        """
        estimates = []
        for errand in list(self._errands.values()):
            if errand.runner_id != position.actor_id:
                continue
            estimates.append(await self.recompute(errand, position))
        return estimates

    async def recompute(self, errand: Errand, position: ActorPosition) -> EtaEstimate:
        self._errands[errand.id] = errand
        estimate = self.estimator.estimate(errand, position)
        self._latest[errand.id] = estimate
        await self._publish(estimate)
        return estimate

    async def _publish(self, estimate: EtaEstimate) -> None:
        for callback in list(self._subscribers.get(estimate.errand_id, [])):
            try:
                result = callback(estimate)
                if result is not None:
                    await result
            except Exception:
                logger.exception("ETA subscriber for errand %s failed", estimate.errand_id)
