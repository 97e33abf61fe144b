"""
Domain types shared by the backend and the client core.

Attributes are snake_case; serialization with by_alias=True gives the
camelCase shape the client hands to its callers.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ROLES = ("admin", "manager", "user")

DRAFT = "draft"
PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
FULFILLED = "fulfilled"
TERMINAL_STATUSES = frozenset({REJECTED, FULFILLED})

Role = Literal["admin", "manager", "user"]
Priority = Literal["low", "medium", "high", "critical"]
Status = Literal["draft", "pending", "approved", "rejected", "fulfilled"]
NotificationType = Literal[
    "request_submitted",
    "request_approved",
    "request_rejected",
    "request_fulfilled",
    "comment_added",
]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_role(role: Optional[str]) -> Optional[str]:
    """Lower-case a role string, returning None for anything unknown."""
    if not isinstance(role, str):
        return None
    value = role.strip().lower()
    return value if value in ROLES else None


class DomainModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_camel(self) -> dict:
        return self.model_dump(by_alias=True)


class User(DomainModel):
    id: str
    name: str
    email: str
    role: str = "user"
    department: Optional[str] = None
    avatar_url: Optional[str] = None


class UserSummary(DomainModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    avatar_url: Optional[str] = None


class Category(DomainModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[str] = None


class CategoryRef(DomainModel):
    id: str
    name: Optional[str] = None


class InventoryItem(DomainModel):
    id: str
    name: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    category: Optional[CategoryRef] = None
    sku: Optional[str] = None
    quantity_available: int = Field(default=0, ge=0)
    quantity_reserved: int = Field(default=0, ge=0)
    location: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def total_stock(self) -> int:
        return self.quantity_available + self.quantity_reserved


class Comment(DomainModel):
    id: str
    request_id: str
    user_id: str
    content: str
    created_at: Optional[str] = None
    user: Optional[UserSummary] = None


class ItemRequest(DomainModel):
    id: str
    title: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    category: Optional[CategoryRef] = None
    inventory_item_id: Optional[str] = None
    priority: Priority = "medium"
    status: Status = PENDING
    user_id: str
    user: Optional[UserSummary] = None
    quantity: int = Field(default=1, gt=0)
    total_cost: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    fulfillment_date: Optional[str] = None
    comments: List[Comment] = Field(default_factory=list)


class Notification(DomainModel):
    id: str
    user_id: str
    type: NotificationType
    message: str
    read: bool = False
    created_at: Optional[str] = None
    related_item_id: Optional[str] = None
