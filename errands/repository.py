"""
Purpose: Persistence contract for errands + an in-memory implementation.
What it does:
- ErrandRepository: the collaborator the lifecycle core talks to. In production it is
  backed by a remote document store; the only hard requirement is that writes touching
  `runner_id` and `status` are conditional (compare-and-set).
- InMemoryErrandRepository: owns errands, the code index and the status history in
  process. Conditional writes run under one asyncio.Lock, which stands in for the
  store's transaction primitive.

Rule: Repository owns atomicity, the state machine owns legality.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Protocol

from .exceptions import NotFoundError, TransactionCodeError
from .models import (
    ActorRole,
    Errand,
    ErrandStatus,
    NON_TERMINAL_STATUSES,
    StatusChange,
    utcnow,
)

logger = logging.getLogger(__name__)


class ErrandRepository(Protocol):
    async def get_by_id(self, errand_id: str) -> Optional[Errand]:
        ...

    async def get_by_transaction_code(self, code: str) -> Optional[Errand]:
        """Only non-terminal errands are matched: codes recycle once terminal."""
        ...

    async def create(self, errand: Errand) -> Errand:
        ...

    async def compare_and_set_runner(self, errand_id: str, runner_id: str) -> Optional[Errand]:
        """
        Set runner_id and move to ACCEPTED only if the errand is still PENDING
        and unclaimed. Returns None when the condition no longer holds.
        """
        ...

    async def update_status(
        self,
        errand_id: str,
        expected_status: ErrandStatus,
        new_status: ErrandStatus,
        actor_id: str,
    ) -> Optional[Errand]:
        """Write new_status only if the stored status still equals expected_status."""
        ...

    async def list_by_role(
        self,
        actor_id: str,
        role: ActorRole,
        status_filter: Optional[Iterable[ErrandStatus]] = None,
    ) -> List[Errand]:
        ...

    async def list_by_status(self, statuses: Iterable[ErrandStatus]) -> List[Errand]:
        ...

    async def status_history(self, errand_id: str) -> List[StatusChange]:
        ...


class InMemoryErrandRepository:
    """
    In-process repository. Errands are frozen so callers always hold snapshots;
    the stored copy only changes inside the lock.
    """

    def __init__(self):
        self._errands: Dict[str, Errand] = {}
        self._history: Dict[str, List[StatusChange]] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, errand_id: str) -> Optional[Errand]:
        return self._errands.get(errand_id)

    async def get_by_transaction_code(self, code: str) -> Optional[Errand]:
        for errand in self._errands.values():
            if errand.transaction_code == code and errand.status in NON_TERMINAL_STATUSES:
                return errand
        return None

    async def create(self, errand: Errand) -> Errand:
        async with self._lock:
            if errand.id in self._errands:
                raise ValueError(f"Errand {errand.id} already exists")
            #unique among non-terminal errands
            for existing in self._errands.values():
                if (
                    existing.transaction_code == errand.transaction_code
                    and existing.status in NON_TERMINAL_STATUSES
                ):
                    raise TransactionCodeError(
                        f"Transaction code {errand.transaction_code} is held by a live errand"
                    )
            self._errands[errand.id] = errand
            self._history[errand.id] = []
            return errand

    async def compare_and_set_runner(self, errand_id: str, runner_id: str) -> Optional[Errand]:
        async with self._lock:
            current = self._require(errand_id)
            if current.runner_id is not None or current.status != ErrandStatus.PENDING:
                return None

            now = utcnow()
            updated = current.evolve(
                runner_id=runner_id,
                status=ErrandStatus.ACCEPTED,
                updated_at=now,
            )
            self._errands[errand_id] = updated
            self._history[errand_id].append(
                StatusChange(errand_id, current.status, updated.status, runner_id, now)
            )
            return updated

    async def update_status(
        self,
        errand_id: str,
        expected_status: ErrandStatus,
        new_status: ErrandStatus,
        actor_id: str,
    ) -> Optional[Errand]:
        async with self._lock:
            current = self._require(errand_id)
            if current.status != expected_status:
                logger.debug(
                    "Conditional write on %s rejected: expected %s, found %s",
                    errand_id, expected_status.value, current.status.value,
                )
                return None

            now = utcnow()
            changes = {"status": new_status, "updated_at": now}
            if new_status == ErrandStatus.COMPLETED:
                changes["completed_at"] = now
            updated = current.evolve(**changes)
            self._errands[errand_id] = updated
            self._history[errand_id].append(
                StatusChange(errand_id, current.status, new_status, actor_id, now)
            )
            return updated

    async def list_by_role(
        self,
        actor_id: str,
        role: ActorRole,
        status_filter: Optional[Iterable[ErrandStatus]] = None,
    ) -> List[Errand]:
        statuses = set(status_filter) if status_filter is not None else None
        found = []
        for errand in self._errands.values():
            owner = errand.requester_id if role == ActorRole.REQUESTER else errand.runner_id
            if owner != actor_id:
                continue
            if statuses is not None and errand.status not in statuses:
                continue
            found.append(errand)
        # newest first
        found.sort(key=lambda errand: errand.created_at, reverse=True)
        return found

    async def list_by_status(self, statuses: Iterable[ErrandStatus]) -> List[Errand]:
        wanted = set(statuses)
        return [errand for errand in self._errands.values() if errand.status in wanted]

    async def status_history(self, errand_id: str) -> List[StatusChange]:
        self._require(errand_id)
        return list(self._history.get(errand_id, []))

    def _require(self, errand_id: str) -> Errand:
        errand = self._errands.get(errand_id)
        if errand is None:
            raise NotFoundError(f"Errand {errand_id} not found")
        return errand
