"""
Provisional local state for a screen showing one errand.

A tap updates the view immediately (`propose`), the coordinator then does the
authoritative conditional write. If that write is rejected the provisional status is
thrown away and the view re-reads the errand, so the screen never keeps showing a
status the store refused.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from errands.exceptions import ErrandError
from errands.models import ActorRole, Errand, ErrandAction

from .state_machines.errand_state import apply as apply_transition

if TYPE_CHECKING:
    from .coordinator import ErrandLifecycleCoordinator, TransitionOutcome

logger = logging.getLogger(__name__)


class OptimisticErrandView:
    def __init__(self, coordinator: ErrandLifecycleCoordinator, errand: Errand):
        self.coordinator = coordinator
        self.confirmed = errand
        self.provisional: Optional[Errand] = None

    @property
    def current(self) -> Errand:
        return self.provisional or self.confirmed

    @property
    def is_provisional(self) -> bool:
        return self.provisional is not None

    def propose(self, action: ErrandAction, role: ActorRole, actor_id: str) -> Errand:
        """
        Show the expected result right away. Raises the state machine's error if the
        action is not even locally valid; nothing is proposed then.
        """
        self.provisional = apply_transition(self.confirmed, action, role, actor_id)
        return self.provisional

    async def apply(self, action: ErrandAction, role: ActorRole, actor_id: str) -> TransitionOutcome:
        self.propose(action, role, actor_id)
        try:
            outcome = await self.coordinator.perform(self.confirmed.id, action, role, actor_id)
        except ErrandError:
            self.provisional = None
            await self.reload()
            raise

        self.confirmed = outcome.errand
        self.provisional = None
        return outcome

    async def reload(self) -> Errand:
        try:
            self.confirmed = await self.coordinator.get(self.confirmed.id)
        except ErrandError as exc:
            logger.warning("Could not reload errand %s: %s", self.confirmed.id, exc)
        return self.confirmed
