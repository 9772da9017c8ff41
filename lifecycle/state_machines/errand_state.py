from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from errands.exceptions import InvalidTransitionError, UnauthorizedRoleError
from errands.models import ActorRole, Errand, ErrandAction, ErrandStatus


@dataclass(frozen=True)
class TransitionRule:
    role: ActorRole
    to_status: ErrandStatus
    # runner actions past acceptance must come from the assigned runner
    assigned_runner_only: bool = False


# (from_status, action) -> rule. Anything missing is an illegal transition.
TRANSITIONS: Dict[Tuple[ErrandStatus, ErrandAction], TransitionRule] = {
    (ErrandStatus.PENDING, ErrandAction.ACCEPT): TransitionRule(ActorRole.RUNNER, ErrandStatus.ACCEPTED),
    (ErrandStatus.PENDING, ErrandAction.CANCEL): TransitionRule(ActorRole.REQUESTER, ErrandStatus.CANCELLED),
    (ErrandStatus.ACCEPTED, ErrandAction.MARK_PICKED_UP): TransitionRule(
        ActorRole.RUNNER, ErrandStatus.PICKED_UP, assigned_runner_only=True
    ),
    (ErrandStatus.PICKED_UP, ErrandAction.START_DELIVERY): TransitionRule(
        ActorRole.RUNNER, ErrandStatus.ON_THE_WAY, assigned_runner_only=True
    ),
    (ErrandStatus.ON_THE_WAY, ErrandAction.MARK_DELIVERED): TransitionRule(
        ActorRole.RUNNER, ErrandStatus.DELIVERED, assigned_runner_only=True
    ),
    (ErrandStatus.DELIVERED, ErrandAction.COMPLETE): TransitionRule(ActorRole.REQUESTER, ErrandStatus.COMPLETED),
}


@dataclass(frozen=True)
class TransitionResult:
    next_status: ErrandStatus
    runner_id_to_set: Optional[str] = None


def transition(
    current_status: ErrandStatus,
    action: ErrandAction,
    actor_role: ActorRole,
    actor_id: str,
    errand: Errand,
) -> TransitionResult:
    """
    Validate an actor's action against the transition table and compute the next status.

    Pure: nothing is persisted or sent here, the coordinator does that.

    Raises:
        InvalidTransitionError: (current_status, action) is not in the table.
        UnauthorizedRoleError: the pair is legal but the actor's role or identity is not.
    """
    rule = TRANSITIONS.get((current_status, action))
    if rule is None:
        raise InvalidTransitionError(
            f"Cannot {action.value} errand {errand.id} while it is {current_status.value}",
            status=current_status,
            action=action,
        )

    if actor_role != rule.role:
        raise UnauthorizedRoleError(
            f"Only a {rule.role.value} may {action.value} errand {errand.id}, got {actor_role.value}",
            status=current_status,
            action=action,
        )

    if rule.role == ActorRole.REQUESTER and actor_id != errand.requester_id:
        raise UnauthorizedRoleError(
            f"Actor {actor_id} is not the requester of errand {errand.id}",
            status=current_status,
            action=action,
        )

    if action == ErrandAction.ACCEPT:
        if actor_id == errand.requester_id:
            raise UnauthorizedRoleError(
                f"Requester {actor_id} cannot run their own errand {errand.id}",
                status=current_status,
                action=action,
            )
        return TransitionResult(next_status=rule.to_status, runner_id_to_set=actor_id)

    if rule.assigned_runner_only and actor_id != errand.runner_id:
        raise UnauthorizedRoleError(
            f"Runner {actor_id} is not assigned to errand {errand.id}",
            status=current_status,
            action=action,
        )

    return TransitionResult(next_status=rule.to_status)


def allowed_actions(status: ErrandStatus, role: Optional[ActorRole] = None) -> List[ErrandAction]:
    """
    Actions the table allows from `status`, optionally narrowed to one role.
    Used by screens to decide which buttons to show.
    """
    return [
        action
        for (from_status, action), rule in TRANSITIONS.items()
        if from_status == status and (role is None or rule.role == role)
    ]


def apply(errand: Errand, action: ErrandAction, actor_role: ActorRole, actor_id: str) -> Errand:
    """
    Return the errand as it would look after the transition. Not persisted.
    """
    result = transition(errand.status, action, actor_role, actor_id, errand)
    changes = {"status": result.next_status}
    if result.runner_id_to_set is not None:
        changes["runner_id"] = result.runner_id_to_set
    return errand.evolve(**changes)
