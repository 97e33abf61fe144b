"""
Role-based authorization predicate.

can_perform() is a pure function of the actor, the action, the entity kind
and (optionally) the target record. It is consulted by the client containers
before any network call and again by the backend routers before any write.
Actors and targets only need attribute access, so SQLModel rows and domain
models can both be passed in.
"""
from typing import Any, Optional

from domain import APPROVED, DRAFT, PENDING, normalize_role
from errors import PermissionDenied

CATEGORY = "category"
INVENTORY_ITEM = "inventory_item"
ITEM_REQUEST = "item_request"
USER = "user"
NOTIFICATION = "notification"

STAFF = frozenset({"admin", "manager"})
ANY_ROLE = frozenset({"admin", "manager", "user"})

_LABELS = {
    CATEGORY: "categories",
    INVENTORY_ITEM: "inventory items",
    ITEM_REQUEST: "item requests",
    USER: "users",
    NOTIFICATION: "notifications",
}

# (kind, action) -> roles allowed before any target-specific rule is applied
_ROLE_RULES = {
    (CATEGORY, "view"): ANY_ROLE,
    (CATEGORY, "create"): STAFF,
    (CATEGORY, "update"): STAFF,
    (CATEGORY, "delete"): STAFF,
    (INVENTORY_ITEM, "view"): ANY_ROLE,
    (INVENTORY_ITEM, "create"): STAFF,
    (INVENTORY_ITEM, "update"): STAFF,
    (INVENTORY_ITEM, "delete"): STAFF,
    (ITEM_REQUEST, "view"): ANY_ROLE,
    (ITEM_REQUEST, "create"): ANY_ROLE,
    (ITEM_REQUEST, "comment"): ANY_ROLE,
    (ITEM_REQUEST, "update"): ANY_ROLE,
    (ITEM_REQUEST, "submit"): ANY_ROLE,
    (ITEM_REQUEST, "approve"): STAFF,
    (ITEM_REQUEST, "reject"): STAFF,
    (ITEM_REQUEST, "fulfill"): STAFF,
    (ITEM_REQUEST, "delete"): frozenset({"admin"}),
    (USER, "view"): ANY_ROLE,
    (USER, "create"): frozenset({"manager"}),
    (USER, "update"): ANY_ROLE,
    (NOTIFICATION, "view"): ANY_ROLE,
    (NOTIFICATION, "create"): ANY_ROLE,
    (NOTIFICATION, "update"): ANY_ROLE,
}

# status a target request must be in for the transition to be offered
_REQUIRED_STATUS = {
    "approve": PENDING,
    "reject": PENDING,
    "fulfill": APPROVED,
    "submit": DRAFT,
}

OWNER_EDITABLE = frozenset({DRAFT, PENDING})


def role_of(user: Any) -> Optional[str]:
    if user is None:
        return None
    return normalize_role(getattr(user, "role", None))


def is_manager(user: Any) -> bool:
    return role_of(user) == "manager"


def is_staff(user: Any) -> bool:
    return role_of(user) in STAFF


def _same_id(left: Any, right: Any) -> bool:
    return left is not None and right is not None and str(left) == str(right)


def role_allows(user: Any, action: str, kind: str) -> bool:
    """Role-only part of the predicate, ignoring any target record."""
    role = role_of(user)
    if role is None:
        return False
    allowed = _ROLE_RULES.get((kind, action))
    return allowed is not None and role in allowed


def can_perform(user: Any, action: str, kind: str, target: Any = None) -> bool:
    if not role_allows(user, action, kind):
        return False
    user_id = getattr(user, "id", None)

    if kind == ITEM_REQUEST:
        if action == "update":
            if is_staff(user):
                return True
            if target is None:
                return False
            return (
                _same_id(getattr(target, "user_id", None), user_id)
                and getattr(target, "status", None) in OWNER_EDITABLE
            )
        if action == "submit" and target is not None:
            if not (is_staff(user) or _same_id(getattr(target, "user_id", None), user_id)):
                return False
        if action in _REQUIRED_STATUS and target is not None:
            return getattr(target, "status", None) == _REQUIRED_STATUS[action]
        return True

    if kind == USER and action == "update":
        if is_manager(user):
            return True
        return target is not None and _same_id(getattr(target, "id", None), user_id)

    if kind == NOTIFICATION and action == "update":
        return target is not None and _same_id(getattr(target, "user_id", None), user_id)

    return True


def describe_requirement(action: str, kind: str) -> str:
    label = _LABELS.get(kind, kind)
    allowed = _ROLE_RULES.get((kind, action))
    if kind == ITEM_REQUEST and action == "update":
        return f"Only an admin, a manager or the owner of a draft or pending request can update {label}"
    if kind == USER and action == "update":
        return "Only a manager can update other users' profiles"
    if kind == NOTIFICATION and action == "update":
        return "Only the recipient can update a notification"
    if not allowed:
        return f"Action '{action}' is not permitted on {label}"
    if allowed == ANY_ROLE:
        return f"A signed-in user with a known role is required to {action} {label}"
    roles = " or ".join(sorted(allowed))
    return f"Only {roles} can {action} {label}"


def require(user: Any, action: str, kind: str, target: Any = None) -> None:
    """Raise PermissionDenied unless can_perform() allows the action."""
    if not can_perform(user, action, kind, target):
        raise PermissionDenied(describe_requirement(action, kind))
