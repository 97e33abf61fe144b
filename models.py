import uuid
from typing import Optional

from sqlmodel import Field, SQLModel

from domain import now_iso


def new_id() -> str:
    return str(uuid.uuid4())


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    role: str = "user"  # admin | manager | user
    department: Optional[str] = None
    avatar_url: Optional[str] = None
    password_hash: str = ""
    created_at: str = Field(default_factory=now_iso)


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    description: Optional[str] = None
    created_at: str = Field(default_factory=now_iso)


class InventoryItem(SQLModel, table=True):
    __tablename__ = "inventory_items"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    description: Optional[str] = None
    category_id: Optional[str] = Field(default=None, foreign_key="categories.id")
    sku: Optional[str] = None
    quantity_available: int = 0
    quantity_reserved: int = 0
    location: Optional[str] = None
    image_url: Optional[str] = None
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class ItemRequest(SQLModel, table=True):
    __tablename__ = "item_requests"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str
    description: Optional[str] = None
    category_id: Optional[str] = Field(default=None, foreign_key="categories.id")
    inventory_item_id: Optional[str] = Field(default=None, foreign_key="inventory_items.id")
    priority: str = "medium"  # low | medium | high | critical
    status: str = "pending"  # draft | pending | approved | rejected | fulfilled
    user_id: str = Field(foreign_key="users.id", index=True)
    quantity: int = 1
    total_cost: Optional[float] = None
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    fulfillment_date: Optional[str] = None


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: str = Field(default_factory=new_id, primary_key=True)
    request_id: str = Field(foreign_key="item_requests.id", index=True)
    user_id: str = Field(foreign_key="users.id")
    content: str
    created_at: str = Field(default_factory=now_iso)


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    type: str
    message: str
    read: bool = False
    created_at: str = Field(default_factory=now_iso)
    related_item_id: Optional[str] = None
