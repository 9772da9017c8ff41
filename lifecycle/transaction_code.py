"""
Purpose: Transaction-code generation and the "first claim wins" handshake.
What it does:
- generate(): short, human-enterable code (6 uppercase alphanumerics by default),
  retried until no live errand holds it.
- claim(code, runner_id): resolve the code to its live errand and take ownership through
  the repository's compare-and-set. Two runners racing on one code: exactly one wins,
  the other gets AlreadyClaimedError.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import Callable, Optional, Tuple

from errands.exceptions import (
    AlreadyClaimedError,
    InvalidTransitionError,
    NotFoundError,
    TransactionCodeError,
    ValidationError,
)
from errands.models import ActorRole, Errand, ErrandAction, ErrandStatus
from errands.repository import ErrandRepository

from .policy import LifecyclePolicy, default_lifecycle_policy
from .state_machines.errand_state import transition

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


class TransactionCodeMatcher:
    def __init__(
        self,
        repository: ErrandRepository,
        *,
        policy: Optional[LifecyclePolicy] = None,
        choice: Callable[[str], str] = secrets.choice,
    ):
        self.repository = repository
        self.policy = policy or default_lifecycle_policy()
        self._choice = choice

    def normalize(self, code: str) -> str:
        """
        Strip and upper-case user input, then check it looks like a code.
        """
        if code is None:
            raise ValidationError("Transaction code is required")
        normalized = str(code).strip().upper()
        if len(normalized) != self.policy.code_length or any(c not in CODE_ALPHABET for c in normalized):
            raise ValidationError(
                f"Transaction code must be {self.policy.code_length} letters or digits, got {code!r}"
            )
        return normalized

    def random_code(self) -> str:
        return "".join(self._choice(CODE_ALPHABET) for _ in range(self.policy.code_length))

    async def generate(self) -> str:
        """
        Produce a code no live errand holds. Codes of completed/cancelled errands
        are free again, the repository lookup only matches non-terminal errands.
        """
        for attempt in range(1, self.policy.max_code_attempts + 1):
            code = self.random_code()
            if await self.repository.get_by_transaction_code(code) is None:
                return code
            logger.debug("Transaction code collision on attempt %d", attempt)

        raise TransactionCodeError(
            f"No free transaction code after {self.policy.max_code_attempts} attempts"
        )

    async def claim(self, code: str, runner_id: str) -> Errand:
        """
        Take ownership of the pending errand behind `code`.

        Raises:
            ValidationError: malformed code.
            NotFoundError: no live errand holds the code.
            AlreadyClaimedError: another runner holds it, or won the race.
            InvalidTransitionError: the errand can no longer be accepted (e.g. cancelled meanwhile).
        """
        errand, _ = await self.try_claim(code, runner_id)
        return errand

    async def try_claim(self, code: str, runner_id: str) -> Tuple[Errand, bool]:
        """
        Same as claim, but also reports whether this call did the claiming
        (False when the runner already held the errand).
        """
        errand = await self.lookup(code)
        return await self.claim_errand(errand, runner_id)

    async def lookup(self, code: str) -> Errand:
        """
        The live errand behind `code`. Raises ValidationError or NotFoundError.
        """
        normalized = self.normalize(code)
        errand = await self.repository.get_by_transaction_code(normalized)
        if errand is None:
            raise NotFoundError(f"No open errand for transaction code {normalized}")
        return errand

    async def claim_errand(
        self, errand: Errand, runner_id: str, role: ActorRole = ActorRole.RUNNER
    ) -> Tuple[Errand, bool]:
        """
        The compare-and-set handshake on an errand the caller already looked up.
        """
        if errand.runner_id is not None:
            if errand.runner_id == runner_id and errand.status == ErrandStatus.ACCEPTED:
                # same runner submitting twice
                return errand, False
            if errand.runner_id != runner_id and not errand.status.is_terminal:
                raise AlreadyClaimedError(
                    f"Errand {errand.id} has already been claimed", errand_id=errand.id
                )
            # anything else is simply not acceptable any more, the state machine says why

        result = transition(errand.status, ErrandAction.ACCEPT, role, runner_id, errand)

        claimed = await self.repository.compare_and_set_runner(errand.id, result.runner_id_to_set)
        if claimed is not None:
            logger.info("Runner %s claimed errand %s (%s)", runner_id, errand.id, errand.transaction_code)
            return claimed, True

        # lost the compare-and-set: find out to whom
        current = await self.repository.get_by_id(errand.id)
        if current is not None and current.status == ErrandStatus.CANCELLED:
            raise InvalidTransitionError(
                f"Errand {errand.id} was cancelled before the claim landed",
                status=current.status,
                action=ErrandAction.ACCEPT,
            )
        if current is not None and current.runner_id == runner_id:
            return current, False
        raise AlreadyClaimedError(
            f"Errand {errand.id} was claimed by another runner first", errand_id=errand.id
        )
