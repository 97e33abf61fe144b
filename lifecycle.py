"""
Item request status machine.

    (new) -> draft | pending
    draft -> pending              submit   (owner, admin, manager)
    pending -> approved           approve  (admin, manager)
    pending -> rejected           reject   (admin, manager, reason required)
    approved -> fulfilled         fulfill  (admin, manager)

rejected and fulfilled are terminal. transition() only computes the field
changes; persisting them is the caller's job.
"""
from typing import Any, Dict, Optional

import permissions
from domain import (
    APPROVED,
    DRAFT,
    FULFILLED,
    PENDING,
    REJECTED,
    TERMINAL_STATUSES,
    now_iso,
)
from errors import PermissionDenied, StateError, ValidationError

TRANSITIONS = {
    "submit": (DRAFT, PENDING),
    "approve": (PENDING, APPROVED),
    "reject": (PENDING, REJECTED),
    "fulfill": (APPROVED, FULFILLED),
}

INITIAL_STATUSES = frozenset({DRAFT, PENDING})

NOTIFICATION_TYPES = {
    "approve": "request_approved",
    "reject": "request_rejected",
    "fulfill": "request_fulfilled",
}

PAST_TENSE = {
    "submit": "submitted",
    "approve": "approved",
    "reject": "rejected",
    "fulfill": "fulfilled",
}


def initial_status(requested: Optional[str]) -> str:
    """Status for a brand new request: pending unless explicitly saved as draft."""
    if requested is None:
        return PENDING
    if requested in INITIAL_STATUSES:
        return requested
    raise StateError(f"A new request cannot start in status '{requested}'")


def action_for(current: str, target: str) -> str:
    """Name the transition that moves a request from current to target."""
    for action, (source, destination) in TRANSITIONS.items():
        if source == current and destination == target:
            return action
    if current in TERMINAL_STATUSES:
        raise StateError(f"Request is already {current}; no further transitions are allowed")
    raise StateError(f"Cannot move a request from '{current}' to '{target}'")


def transition(
    request: Any,
    action: str,
    actor: Any,
    reason: Optional[str] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Validate a lifecycle action and return the fields it changes.

    Checks run in order: the actor's role, the request's current status,
    then the rejection reason. Nothing is mutated.
    """
    if action not in TRANSITIONS:
        raise StateError(f"Unknown lifecycle action '{action}'")
    if not permissions.role_allows(actor, action, permissions.ITEM_REQUEST):
        raise PermissionDenied(permissions.describe_requirement(action, permissions.ITEM_REQUEST))

    source, destination = TRANSITIONS[action]
    current = getattr(request, "status", None)
    if current != source:
        if current in TERMINAL_STATUSES:
            raise StateError(
                f"Cannot {action} a request that is already {current}"
            )
        raise StateError(
            f"Cannot {action} a request in status '{current}'; it must be '{source}'"
        )

    if action == "submit" and not permissions.can_perform(
        actor, "submit", permissions.ITEM_REQUEST, request
    ):
        raise PermissionDenied("Only the owner of a draft can submit it")

    if action == "reject" and not (reason or "").strip():
        raise ValidationError("A rejection reason is required")

    stamp = now or now_iso()
    actor_id = getattr(actor, "id", None)
    changes: Dict[str, Any] = {"status": destination, "updated_at": stamp}
    if action == "submit":
        if not getattr(request, "created_at", None):
            changes["created_at"] = stamp
    elif action == "approve":
        changes["approved_at"] = stamp
        changes["approved_by"] = actor_id
    elif action == "reject":
        changes["rejected_at"] = stamp
        changes["rejected_by"] = actor_id
        changes["rejection_reason"] = reason.strip()
    elif action == "fulfill":
        changes["fulfillment_date"] = stamp
    return changes
