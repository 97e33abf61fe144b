from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from domain import NotificationType, Priority, Role, Status


class ActionBody(BaseModel):
    """Every entity endpoint receives {"action": <verb>, ...fields}."""

    model_config = ConfigDict(extra="allow")

    action: str

    def fields(self) -> dict:
        return dict(self.model_extra or {})


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class IdPayload(Payload):
    id: str = Field(min_length=1)


class CategoryCreate(Payload):
    name: str = Field(min_length=1)
    description: Optional[str] = None


class CategoryUpdate(IdPayload):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None


class ItemCreate(Payload):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = None
    sku: Optional[str] = None
    quantity_available: int = Field(default=0, ge=0)
    quantity_reserved: int = Field(default=0, ge=0)
    location: Optional[str] = None
    image_url: Optional[str] = None


class ItemUpdate(IdPayload):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = None
    sku: Optional[str] = None
    quantity_available: Optional[int] = Field(default=None, ge=0)
    quantity_reserved: Optional[int] = Field(default=None, ge=0)
    location: Optional[str] = None
    image_url: Optional[str] = None


class RequestFilter(Payload):
    user_id: Optional[str] = None
    status: Optional[Status] = None


class RequestCreate(Payload):
    id: Optional[str] = None
    title: str = Field(min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    priority: Priority = "medium"
    status: Optional[Status] = None
    user_id: str = Field(min_length=1)
    quantity: int = Field(default=1, gt=0)
    total_cost: Optional[float] = None
    created_at: Optional[str] = None


class RequestUpdate(IdPayload):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[Status] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    total_cost: Optional[float] = None
    approved_at: Optional[str] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    fulfillment_date: Optional[str] = None


class CommentCreate(Payload):
    request_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class UserCreate(BaseModel):
    email: EmailStr
    name: str
    password: str
    role: Role = "user"
    department: Optional[str] = None
    avatar_url: Optional[str] = None


class UserUpdate(IdPayload):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    department: Optional[str] = None
    avatar_url: Optional[str] = None


class UserRead(BaseModel):
    id: str
    email: EmailStr
    name: str
    role: str
    department: Optional[str] = None
    avatar_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LoginData(BaseModel):
    email: EmailStr
    password: str


class NotificationFilter(Payload):
    user_id: Optional[str] = None
    unread_only: bool = False


class NotificationCreate(Payload):
    id: Optional[str] = None
    user_id: str = Field(min_length=1)
    type: NotificationType
    message: str = Field(min_length=1)
    read: bool = False
    created_at: Optional[str] = None
    related_item_id: Optional[str] = None


class NotificationUpdate(IdPayload):
    read: Literal[True] = True
