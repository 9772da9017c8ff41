"""
Purpose: Orchestrator for the errand lifecycle (the "glue").
What it does:
Takes an actor's requested action, validates it through the state machine, commits it
with a conditional write, then runs the post-commit work:
- ETA recomputation against the anchor for the new status
- tracking session start/stop (runner position + status refresh on one scheduler)
- notification fan-out to the counterparty (best effort)

Every collaborator is injected. Nothing here reads global state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from errands.exceptions import (
    ErrandError,
    InvalidTransitionError,
    NetworkError,
    NotFoundError,
    TransactionCodeError,
)
from errands.models import (
    ACTIVE_STATUSES,
    ActorRole,
    Coordinates,
    Errand,
    ErrandAction,
    ErrandStatus,
    Place,
    StatusChange,
)
from errands.repository import ErrandRepository
from notifications.dispatcher import DispatchReceipt, NotificationDispatcher
from notifications.models import TransitionEvent
from tracking.estimator import DistanceEtaEstimator, EtaEstimate, distance_km
from tracking.eta_feed import EtaFeed
from tracking.location_store import LocationStore
from tracking.location_tracker import LocationTracker
from tracking.scheduler import ErrandScheduler

from .policy import LifecyclePolicy, default_lifecycle_policy
from .state_machines.errand_state import transition
from .transaction_code import TransactionCodeMatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionOutcome:
    """
    What a committed action produced. `eta` is None when no runner position is known yet;
    `receipt` is None when the notification step failed (the transition still stands).
    """
    errand: Errand
    previous_status: Optional[ErrandStatus]
    eta: Optional[EtaEstimate] = None
    receipt: Optional[DispatchReceipt] = None

    @property
    def status(self) -> ErrandStatus:
        return self.errand.status


class ErrandLifecycleCoordinator:
    def __init__(
        self,
        repository: ErrandRepository,
        dispatcher: NotificationDispatcher,
        *,
        code_matcher: Optional[TransactionCodeMatcher] = None,
        tracker: Optional[LocationTracker] = None,
        location_store: Optional[LocationStore] = None,
        eta_feed: Optional[EtaFeed] = None,
        policy: Optional[LifecyclePolicy] = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.policy = policy or default_lifecycle_policy()
        self.code_matcher = code_matcher or TransactionCodeMatcher(repository, policy=self.policy)
        self.tracker = tracker
        self.location_store = location_store or (tracker.location_store if tracker else None)
        self.eta_feed = eta_feed or EtaFeed(DistanceEtaEstimator(self.policy.avg_speed_kmh))
        self._sessions: Dict[str, ErrandScheduler] = {}

        if tracker is not None:
            tracker.add_listener(self.eta_feed.on_position)

    # --- Queries ---

    async def get(self, errand_id: str) -> Errand:
        errand = await self._call(self.repository.get_by_id(errand_id))
        if errand is None:
            raise NotFoundError(f"Errand {errand_id} not found")
        return errand

    async def status_history(self, errand_id: str) -> List[StatusChange]:
        return await self._call(self.repository.status_history(errand_id))

    async def available_errands(
        self, position: Coordinates, radius_km: Optional[float] = None
    ) -> List[Tuple[Errand, float]]:
        """
        Pending, unclaimed errands whose pickup is within `radius_km` of `position`,
        closest first, as (errand, distance_km) pairs.
        """
        if radius_km is None:
            radius_km = self.policy.nearby_radius_km
        pending = await self._call(self.repository.list_by_status([ErrandStatus.PENDING]))

        nearby = []
        for errand in pending:
            if errand.runner_id is not None:
                continue
            distance = distance_km(position, errand.pickup.coordinates)
            if distance <= radius_km:
                nearby.append((errand, distance))
        nearby.sort(key=lambda pair: pair[1])
        return nearby

    def session_open(self, errand_id: str) -> bool:
        return errand_id in self._sessions

    def track_nearby(self, runner_id: str) -> None:
        """
        Ambient sampling for a runner browsing available errands, at the slower cadence.
        Claiming an errand switches the runner to the active cadence.
        """
        if self.tracker is None or self.tracker.is_tracking(runner_id):
            return
        self.tracker.start(runner_id, self.policy.ambient_interval_ms)

    # --- Creation ---

    async def create_errand(
        self,
        requester_id: str,
        pickup: Place,
        dropoff: Place,
        *,
        errand_type: str = "",
        description: str = "",
        price_estimate: float = 0.0,
        transaction_code: Optional[str] = None,
    ) -> Errand:
        """
        Create a PENDING errand with a fresh transaction code. A code that collides on
        write (another errand took it between generate and create) is regenerated.
        """
        attempts = 1 if transaction_code else self.policy.max_code_attempts
        for _ in range(attempts):
            code = (
                self.code_matcher.normalize(transaction_code)
                if transaction_code
                else await self._call(self.code_matcher.generate())
            )
            errand = Errand.new(
                requester_id,
                pickup,
                dropoff,
                code,
                errand_type=errand_type,
                description=description,
                price_estimate=price_estimate,
            )
            try:
                created = await self._call(self.repository.create(errand))
            except TransactionCodeError:
                if transaction_code:
                    raise
                logger.debug("Code %s taken on create, regenerating", code)
                continue
            logger.info("Errand %s created by %s with code %s", created.id, requester_id, code)
            return created

        raise TransactionCodeError(f"Could not reserve a transaction code after {attempts} attempts")

    # --- Actions ---

    async def claim_by_code(self, code: str, runner_id: str) -> TransitionOutcome:
        errand = await self._call(self.code_matcher.lookup(code))
        return await self._claim(errand, runner_id, ActorRole.RUNNER)

    async def accept(self, errand_id: str, runner_id: str) -> TransitionOutcome:
        return await self.perform(errand_id, ErrandAction.ACCEPT, ActorRole.RUNNER, runner_id)

    async def mark_picked_up(self, errand_id: str, runner_id: str) -> TransitionOutcome:
        return await self.perform(errand_id, ErrandAction.MARK_PICKED_UP, ActorRole.RUNNER, runner_id)

    async def start_delivery(self, errand_id: str, runner_id: str) -> TransitionOutcome:
        return await self.perform(errand_id, ErrandAction.START_DELIVERY, ActorRole.RUNNER, runner_id)

    async def mark_delivered(self, errand_id: str, runner_id: str) -> TransitionOutcome:
        return await self.perform(errand_id, ErrandAction.MARK_DELIVERED, ActorRole.RUNNER, runner_id)

    async def complete(self, errand_id: str, requester_id: str) -> TransitionOutcome:
        return await self.perform(errand_id, ErrandAction.COMPLETE, ActorRole.REQUESTER, requester_id)

    async def cancel(self, errand_id: str, requester_id: str) -> TransitionOutcome:
        return await self.perform(errand_id, ErrandAction.CANCEL, ActorRole.REQUESTER, requester_id)

    async def perform(
        self, errand_id: str, action: ErrandAction, role: ActorRole, actor_id: str
    ) -> TransitionOutcome:
        """
        validate -> conditional write -> post-commit work.

        State machine errors and lost races propagate to the caller. A NetworkError from
        the write is checked against a re-read: if the write committed anyway the post-commit
        work runs as usual, otherwise the error propagates and the errand is as it was.
        """
        errand = await self.get(errand_id)

        if action == ErrandAction.ACCEPT:
            return await self._claim(errand, actor_id, role)

        result = transition(errand.status, action, role, actor_id, errand)
        try:
            updated = await self._call(
                self.repository.update_status(errand.id, errand.status, result.next_status, actor_id)
            )
        except NetworkError:
            updated = await self._committed_anyway(errand_id, lambda current: current.status == result.next_status)
            if updated is None:
                raise
        if updated is None:
            # someone else's write landed first, caller must re-fetch
            current = await self.get(errand_id)
            raise InvalidTransitionError(
                f"Errand {errand_id} moved to {current.status.value} before {action.value} landed",
                status=current.status,
                action=action,
            )

        outcome = await self._after_commit(updated, errand.status, actor_id)

        if updated.status == ErrandStatus.DELIVERED and self.policy.auto_complete_on_delivery:
            logger.info("Auto-completing delivered errand %s", errand_id)
            return await self.perform(errand_id, ErrandAction.COMPLETE, ActorRole.REQUESTER, updated.requester_id)

        return outcome

    async def _claim(self, errand: Errand, runner_id: str, role: ActorRole) -> TransitionOutcome:
        try:
            claimed, claimed_now = await self._call(self.code_matcher.claim_errand(errand, runner_id, role))
        except NetworkError:
            claimed = await self._committed_anyway(
                errand.id,
                lambda current: current.runner_id == runner_id and current.status == ErrandStatus.ACCEPTED,
            )
            if claimed is None:
                raise
            claimed_now = True

        if not claimed_now:
            # same runner again, e.g. retrying after a lost response
            self._open_session(claimed)
            return TransitionOutcome(errand=claimed, previous_status=claimed.status, eta=self.eta_feed.latest(claimed.id))
        return await self._after_commit(claimed, errand.status, runner_id)

    async def _committed_anyway(self, errand_id: str, landed) -> Optional[Errand]:
        """
        A conditional write failed with a NetworkError, but a timed-out write may still have
        committed. Returns the committed errand if `landed(current)` holds, else None.
        """
        current = await self.get(errand_id)
        if not landed(current):
            return None
        logger.warning("Write on errand %s failed in flight but committed, finishing it", errand_id)
        return current

    async def refresh(self, errand_id: str) -> Errand:
        """
        Re-read the authoritative errand. Picks up writes made by other devices and
        closes the tracking session once the errand is terminal.
        """
        errand = await self.get(errand_id)
        if errand.status.is_terminal:
            await self._close_session(errand)
        elif self.eta_feed.watching(errand.id):
            self.eta_feed.watch(errand)
        return errand

    async def shutdown(self) -> None:
        """
        Component teardown: stop every session and the tracker.
        """
        sessions, self._sessions = self._sessions, {}
        for scheduler in sessions.values():
            await scheduler.aclose()
        if self.tracker is not None:
            await self.tracker.aclose()

    # --- Post-commit ---

    async def _after_commit(
        self, errand: Errand, previous_status: Optional[ErrandStatus], initiator_id: str
    ) -> TransitionOutcome:
        logger.info(
            "Errand %s: %s -> %s by %s",
            errand.id,
            previous_status.value if previous_status else None,
            errand.status.value,
            initiator_id,
        )

        eta = None
        if errand.status in ACTIVE_STATUSES:
            eta = await self._recompute_eta(errand)
            if eta is not None:
                errand = errand.evolve(distance_km=eta.distance_km)
            self._open_session(errand)
        elif errand.status.is_terminal:
            await self._close_session(errand)

        receipt = None
        event = TransitionEvent(
            errand_id=errand.id,
            from_status=previous_status,
            to_status=errand.status,
            initiator_id=initiator_id,
        )
        try:
            receipt = await self.dispatcher.on_transition(event, errand)
        except Exception:
            logger.exception("Notification for errand %s -> %s failed", errand.id, errand.status.value)

        return TransitionOutcome(errand=errand, previous_status=previous_status, eta=eta, receipt=receipt)

    async def _recompute_eta(self, errand: Errand) -> Optional[EtaEstimate]:
        self.eta_feed.watch(errand)
        if self.location_store is None or errand.runner_id is None:
            return None
        try:
            position = await self._call(self.location_store.get_actor_location(errand.runner_id))
        except ErrandError as exc:
            logger.warning("No runner position for errand %s: %s", errand.id, exc)
            return None
        if position is None:
            return None
        return await self.eta_feed.recompute(errand, position)

    def _open_session(self, errand: Errand) -> None:
        if errand.id in self._sessions:
            return
        scheduler = ErrandScheduler(errand.id)
        scheduler.every("status", self.policy.status_refresh_interval_ms, lambda: self.refresh(errand.id))
        self._sessions[errand.id] = scheduler
        scheduler.start()
        if self.tracker is not None and errand.runner_id is not None:
            self.tracker.start(errand.runner_id, self.policy.active_interval_ms)

    async def _close_session(self, errand: Errand) -> None:
        self.eta_feed.unwatch(errand.id)
        scheduler = self._sessions.pop(errand.id, None)

        if self.tracker is not None and errand.runner_id is not None:
            try:
                still_active = await self._call(
                    self.repository.list_by_role(errand.runner_id, ActorRole.RUNNER, ACTIVE_STATUSES)
                )
            except ErrandError as exc:
                logger.warning("Keeping %s tracked, active errands unknown: %s", errand.runner_id, exc)
            else:
                if not any(other.id != errand.id for other in still_active):
                    self.tracker.stop(errand.runner_id)

        # last: this may cancel the task we are running in (status refresh)
        if scheduler is not None:
            scheduler.stop()

    async def _call(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.policy.call_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                f"Collaborator call timed out after {self.policy.call_timeout_seconds}s"
            ) from exc
