"""
Per-entity state containers.

A container owns the in-memory list for one entity type for the lifetime
of a client session. Reads go through refresh(), which retries transient
failures and tags every fetch with a sequence number so that a slow,
older response never overwrites a newer list. Writes are authorized
locally first, then sent, then followed by a delayed full re-fetch.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, Generic, List, Optional, Set, Type, TypeVar

import lifecycle
import permissions
from domain import (
    Category,
    Comment,
    DomainModel,
    InventoryItem,
    ItemRequest,
    Notification,
    User,
    now_iso,
)
from errors import IntegrationError, PermissionDenied, ValidationError
from .results import Confirmed, CreateResult, PendingSync
from .settings import Settings
from .transport import (
    CATEGORIES,
    INVENTORY,
    NOTIFICATIONS,
    REQUESTS,
    USERS,
    ActionClient,
    to_wire,
    validate_payload,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainModel)

LOW_STOCK_THRESHOLD = 5
CRITICAL_STOCK_THRESHOLD = 3

# written only through RequestContainer.transition()
STAMP_FIELDS = (
    "status",
    "approved_at",
    "approved_by",
    "rejected_at",
    "rejected_by",
    "rejection_reason",
    "fulfillment_date",
)


class EntityContainer(Generic[T]):
    entity: str
    kind: str
    model: Type[T]

    def __init__(self, api: ActionClient, actor: Optional[User], settings: Settings) -> None:
        self.api = api
        self.actor = actor
        self.settings = settings
        self.items: List[T] = []
        self.error: Optional[IntegrationError] = None
        self._issued = 0
        self._applied = 0
        self._tasks: Set[asyncio.Task] = set()
        self._poller: Optional[asyncio.Task] = None

    # -- reads ---------------------------------------------------------------

    @property
    def loaded(self) -> bool:
        return self._applied > 0

    def list(self) -> List[T]:
        return list(self.items)

    def find(self, entity_id: str) -> Optional[T]:
        for item in self.items:
            if item.id == entity_id:
                return item
        return None

    def _filters(self) -> Dict[str, Any]:
        return {}

    def _merge(self, fetched: List[T]) -> List[T]:
        return fetched

    def _next_seq(self) -> int:
        self._issued += 1
        return self._issued

    def _apply(self, seq: int, items: List[T]) -> bool:
        if seq <= self._applied:
            logger.debug("Dropping stale %s response #%d (have #%d)", self.entity, seq, self._applied)
            return False
        self._applied = seq
        self.items = items
        return True

    def _mutate_local(self, change: Callable[[List[T]], List[T]]) -> None:
        """Apply a local change and invalidate every fetch already in flight."""
        self._applied = self._next_seq()
        self.items = change(list(self.items))

    async def refresh(self) -> List[T]:
        """
        Re-fetch the whole list. Transient failures are retried with a fixed
        backoff; after the last attempt the list is emptied and error is set.
        """
        seq = self._next_seq()
        attempts = 1 + max(0, self.settings.fetch_retries)
        for attempt in range(1, attempts + 1):
            try:
                fetched = await self.api.call(self.entity, "getAll", self._filters(), model=self.model)
            except IntegrationError as exc:
                if exc.retryable and attempt < attempts:
                    logger.warning(
                        "Fetching %s failed (attempt %d/%d): %s",
                        self.entity, attempt, attempts, exc.message,
                    )
                    await asyncio.sleep(self.settings.retry_backoff)
                    continue
                logger.error("Giving up fetching %s: %s", self.entity, exc.message)
                if self._apply(seq, self._merge([])):
                    self.error = exc
                return self.list()
            if self._apply(seq, self._merge(fetched)):
                self.error = None
            return self.list()
        return self.list()

    async def ensure_loaded(self) -> List[T]:
        if not self.loaded:
            await self.refresh()
        return self.list()

    async def get_by_id(self, entity_id: str) -> T:
        entity = await self.api.call(self.entity, "getById", {"id": entity_id}, model=self.model)
        self._replace_local(entity)
        return entity

    def _replace_local(self, entity: T) -> None:
        def change(items: List[T]) -> List[T]:
            replaced = [entity if item.id == entity.id else item for item in items]
            if not any(item.id == entity.id for item in items):
                replaced.append(entity)
            return replaced

        self._mutate_local(change)

    # -- writes --------------------------------------------------------------

    def authorize(self, action: str, target: Any = None) -> None:
        permissions.require(self.actor, action, self.kind, target)

    def _authorize_role(self, action: str) -> None:
        """Role-only check, made before the target is looked up."""
        if not permissions.role_allows(self.actor, action, self.kind):
            raise PermissionDenied(permissions.describe_requirement(action, self.kind))

    async def _target(self, entity_id: str) -> T:
        return self.find(entity_id) or await self.get_by_id(entity_id)

    async def create(self, entity: Any) -> T:
        self.authorize("create")
        created = await self.api.call(self.entity, "create", entity, model=self.model)
        self._mutate_local(lambda items: items + [created])
        self.schedule_refresh()
        return created

    async def update(self, entity: Any) -> T:
        fields = to_wire(entity)
        entity_id = fields.get("id")
        self.authorize("update", self.find(entity_id) if entity_id else None)
        updated = await self.api.call(self.entity, "update", fields, model=self.model)
        self._replace_local(updated)
        self.schedule_refresh()
        return updated

    async def delete(self, entity_id: str) -> None:
        self.authorize("delete", self.find(entity_id))
        await self.api.call(self.entity, "delete", {"id": entity_id})
        self._mutate_local(lambda items: [item for item in items if item.id != entity_id])
        self.schedule_refresh()

    # -- background work -----------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _refresh_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.refresh()

    def schedule_refresh(self, delay: Optional[float] = None) -> asyncio.Task:
        """Re-fetch after the backend has had time to settle."""
        if delay is None:
            delay = self.settings.settle_delay
        return self._spawn(self._refresh_later(delay))

    async def _poll(self, interval: float) -> None:
        while True:
            # ticks do not wait for each other; the sequence guard orders them
            self._spawn(self.refresh())
            await asyncio.sleep(interval)

    def start_polling(self, interval: Optional[float] = None) -> None:
        if self._poller is not None and not self._poller.done():
            return
        self._poller = asyncio.create_task(self._poll(interval or self.settings.poll_interval))

    async def stop_polling(self) -> None:
        if self._poller is None:
            return
        self._poller.cancel()
        try:
            await self._poller
        except asyncio.CancelledError:
            pass
        self._poller = None

    async def drain(self) -> None:
        """Wait for the refreshes that are currently scheduled."""
        pending = list(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        await self.stop_polling()
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
        self.items = []


class RequestContainer(EntityContainer[ItemRequest]):
    entity = REQUESTS
    kind = permissions.ITEM_REQUEST
    model = ItemRequest

    def __init__(self, api: ActionClient, actor: Optional[User], settings: Settings) -> None:
        super().__init__(api, actor, settings)
        self._unconfirmed: Dict[str, ItemRequest] = {}

    def for_user(self, user_id: str) -> List[ItemRequest]:
        return [r for r in self.items if r.user_id == user_id]

    def by_status(self, status: str) -> List[ItemRequest]:
        return [r for r in self.items if r.status == status]

    @property
    def unconfirmed(self) -> List[ItemRequest]:
        return list(self._unconfirmed.values())

    def _merge(self, fetched: List[ItemRequest]) -> List[ItemRequest]:
        known = {r.id for r in fetched}
        return fetched + [r for r in self._unconfirmed.values() if r.id not in known]

    def _prepare(self, entity: Any) -> Dict[str, Any]:
        fields = to_wire(entity)
        if self.actor is not None:
            fields.setdefault("user_id", self.actor.id)
        fields["status"] = lifecycle.initial_status(fields.get("status"))
        fields.setdefault("priority", "medium")
        fields.setdefault("quantity", 1)
        validate_payload(REQUESTS, "create", fields)
        return fields

    async def create(self, entity: Any) -> CreateResult:
        """
        Create a request. If the backend cannot be reached the record is
        stamped locally and returned as PendingSync instead of failing.
        """
        self.authorize("create")
        fields = self._prepare(entity)
        if fields["user_id"] != self.actor.id and not permissions.is_staff(self.actor):
            raise PermissionDenied("You can only create requests for yourself")
        try:
            created = await self.api.call(REQUESTS, "create", fields, model=ItemRequest)
        except IntegrationError as exc:
            if not exc.retryable:
                raise
            stamp = now_iso()
            local = ItemRequest.model_validate({
                **fields,
                "id": fields.get("id") or str(uuid.uuid4()),
                "created_at": stamp,
                "updated_at": stamp,
            })
            self._unconfirmed[local.id] = local
            self._mutate_local(lambda items: items + [local])
            result = PendingSync(local, exc)
            logger.warning("Request %s kept locally: %s", local.id, result.warning)
            return result
        self._mutate_local(lambda items: items + [created])
        self.schedule_refresh()
        return Confirmed(created)

    async def retry_pending(self) -> List[CreateResult]:
        """Re-send every unconfirmed record under its local id."""
        results: List[CreateResult] = []
        for local in list(self._unconfirmed.values()):
            fields = local.model_dump(exclude_none=True, exclude={"comments", "updated_at"})
            try:
                created = await self.api.call(REQUESTS, "create", fields, model=ItemRequest)
            except IntegrationError as exc:
                if not exc.retryable:
                    raise
                results.append(PendingSync(local, exc))
                continue
            del self._unconfirmed[local.id]
            self._replace_local(created)
            results.append(Confirmed(created))
        if any(r.confirmed for r in results):
            self.schedule_refresh()
        return results

    async def update(self, entity: Any) -> ItemRequest:
        fields = to_wire(entity)
        validate_payload(REQUESTS, "update", fields)
        self._authorize_role("update")
        self.authorize("update", await self._target(fields["id"]))
        for key in STAMP_FIELDS:
            fields.pop(key, None)
        updated = await self.api.call(REQUESTS, "update", fields, model=ItemRequest)
        self._replace_local(updated)
        self.schedule_refresh()
        return updated

    async def transition(self, request_id: str, action: str, reason: Optional[str] = None) -> ItemRequest:
        """
        Move a request through the lifecycle. The current state is re-read
        from the backend and re-validated whatever the caller believed it was.
        """
        current = await self.get_by_id(request_id)
        changes = lifecycle.transition(current, action, self.actor, reason=reason)
        wire = {k: v for k, v in changes.items() if k not in ("updated_at", "created_at")}
        updated = await self.api.call(REQUESTS, "update", {"id": request_id, **wire}, model=ItemRequest)
        self._replace_local(updated)
        self.schedule_refresh()
        return updated

    async def delete(self, entity_id: str) -> None:
        """Admin-only removal; bypasses the lifecycle entirely."""
        self._unconfirmed.pop(entity_id, None)
        await super().delete(entity_id)

    async def add_comment(self, request_id: str, content: str) -> Comment:
        self.authorize("comment")
        comment = await self.api.call(
            REQUESTS,
            "addComment",
            {"request_id": request_id, "user_id": self.actor.id, "content": content},
            model=Comment,
        )

        def change(items: List[ItemRequest]) -> List[ItemRequest]:
            return [
                r.model_copy(update={"comments": r.comments + [comment], "updated_at": comment.created_at})
                if r.id == request_id else r
                for r in items
            ]

        self._mutate_local(change)
        self.schedule_refresh()
        return comment


class InventoryContainer(EntityContainer[InventoryItem]):
    entity = INVENTORY
    kind = permissions.INVENTORY_ITEM
    model = InventoryItem

    def by_category(self, category_id: str) -> List[InventoryItem]:
        return [item for item in self.items if item.category_id == category_id]

    def count_in_category(self, category_id: str) -> int:
        return len(self.by_category(category_id))

    def low_stock(self, threshold: int = LOW_STOCK_THRESHOLD) -> List[InventoryItem]:
        items = [item for item in self.items if item.quantity_available < threshold]
        return sorted(items, key=lambda item: item.quantity_available)

    @staticmethod
    def is_critical(item: InventoryItem) -> bool:
        return item.quantity_available < CRITICAL_STOCK_THRESHOLD


class CategoryContainer(EntityContainer[Category]):
    entity = CATEGORIES
    kind = permissions.CATEGORY
    model = Category

    def __init__(
        self,
        api: ActionClient,
        actor: Optional[User],
        settings: Settings,
        inventory: InventoryContainer,
    ) -> None:
        super().__init__(api, actor, settings)
        self.inventory = inventory

    async def delete(self, entity_id: str) -> None:
        """Refuse while any inventory item still points at the category."""
        self.authorize("delete", self.find(entity_id))
        await self.inventory.refresh()
        in_use = self.inventory.count_in_category(entity_id)
        if in_use:
            category = self.find(entity_id)
            name = f"'{category.name}'" if category else entity_id
            raise ValidationError(
                f"Cannot delete category {name}: {in_use} inventory item(s) still use it"
            )
        await super().delete(entity_id)


class UserContainer(EntityContainer[User]):
    entity = USERS
    kind = permissions.USER
    model = User

    def with_role(self, role: str, exclude_user_id: Optional[str] = None) -> List[User]:
        wanted = (role or "").strip().lower()
        return [
            user for user in self.items
            if permissions.role_of(user) == wanted and user.id != exclude_user_id
        ]

    def name_of(self, user_id: str, default: str = "User") -> str:
        user = self.find(user_id)
        return user.name if user else default

    async def update(self, entity: Any) -> User:
        fields = to_wire(entity)
        validate_payload(USERS, "update", fields)
        self._authorize_role("update")
        target = await self._target(fields["id"])
        self.authorize("update", target)
        if fields.get("role") not in (None, target.role) and not permissions.is_manager(self.actor):
            raise PermissionDenied("Only a manager can change a user's role")
        updated = await self.api.call(USERS, "update", fields, model=User)
        self._replace_local(updated)
        if self.actor is not None and updated.id == self.actor.id:
            self.actor = updated
        self.schedule_refresh()
        return updated


class NotificationContainer(EntityContainer[Notification]):
    """
    The session user's notifications, persisted by the backend.

    Also serves as a notification log for NotificationCenter: append()
    stores a record for any recipient.
    """

    entity = NOTIFICATIONS
    kind = permissions.NOTIFICATION
    model = Notification

    def _filters(self) -> Dict[str, Any]:
        return {"user_id": self.actor.id} if self.actor is not None else {}

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.items if not n.read)

    async def append(self, notification: Notification) -> None:
        self.authorize("create")
        stored = await self.api.call(NOTIFICATIONS, "create", notification, model=Notification)
        if self.actor is not None and stored.user_id == self.actor.id:
            self._replace_local(stored)

    async def for_user(self, user_id: str) -> List[Notification]:
        return await self.api.call(NOTIFICATIONS, "getAll", {"user_id": user_id}, model=Notification)

    async def mark_read(self, notification_id: str) -> None:
        await self.mark_as_read(notification_id)

    async def mark_as_read(self, notification_id: str) -> Notification:
        self._authorize_role("update")
        current = await self._target(notification_id)
        self.authorize("update", current)
        if current.read:
            return current
        updated = await self.api.call(
            NOTIFICATIONS, "update", {"id": notification_id, "read": True}, model=Notification
        )
        self._replace_local(updated)
        return updated

    async def mark_all_as_read(self) -> int:
        self.authorize("view")
        result = await self.api.call(NOTIFICATIONS, "markAllAsRead", {})
        self._mutate_local(lambda items: [n.model_copy(update={"read": True}) for n in items])
        return int((result or {}).get("updated", 0))
