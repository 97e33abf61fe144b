"""
Notification fan-out.

NotificationCenter writes one record per recipient into a NotificationLog
and keeps the session user's inbox in memory. A failing log never breaks the
action that triggered the notification: the failure is logged and dropped.
"""
import asyncio
import json
import logging
import os
import uuid
from typing import List, Optional, Protocol

from domain import Notification, User, now_iso
from errors import IntegrationError, InventoryError, ValidationError
from .containers import UserContainer

logger = logging.getLogger(__name__)


class NotificationLog(Protocol):
    async def append(self, notification: Notification) -> None: ...

    async def mark_read(self, notification_id: str) -> None: ...

    async def for_user(self, user_id: str) -> List[Notification]: ...


class FileNotificationLog:
    """Notifications kept in a JSON file on the local disk."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    def _read(self) -> List[Notification]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as fh:
            content = fh.read().strip()
        if not content:
            return []
        try:
            return [Notification.model_validate(record) for record in json.loads(content)]
        except (ValueError, TypeError) as exc:
            raise IntegrationError(
                f"Notification log {self.path} is unreadable: {exc}", IntegrationError.PARSE
            ) from exc

    def _write(self, notifications: List[Notification]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump([n.to_camel() for n in notifications], fh, indent=2)
        os.replace(tmp_path, self.path)

    async def append(self, notification: Notification) -> None:
        async with self._lock:
            notifications = await asyncio.to_thread(self._read)
            if any(n.id == notification.id for n in notifications):
                return
            notifications.append(notification)
            await asyncio.to_thread(self._write, notifications)

    async def mark_read(self, notification_id: str) -> None:
        async with self._lock:
            notifications = await asyncio.to_thread(self._read)
            changed = False
            for index, n in enumerate(notifications):
                if n.id == notification_id and not n.read:
                    notifications[index] = n.model_copy(update={"read": True})
                    changed = True
            if changed:
                await asyncio.to_thread(self._write, notifications)

    async def for_user(self, user_id: str) -> List[Notification]:
        async with self._lock:
            notifications = [n for n in await asyncio.to_thread(self._read) if n.user_id == user_id]
        return sorted(notifications, key=lambda n: n.created_at or "", reverse=True)


class NotificationCenter:
    def __init__(self, log: NotificationLog, users: UserContainer, session_user: User) -> None:
        self.log = log
        self.users = users
        self.session_user = session_user
        self.inbox: List[Notification] = []

    async def load(self) -> List[Notification]:
        """Fill the inbox from the log."""
        try:
            self.inbox = await self.log.for_user(self.session_user.id)
        except InventoryError as exc:
            logger.error("Could not load notifications for %s: %s", self.session_user.id, exc.message)
        return list(self.inbox)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.inbox if not n.read)

    async def notify_user(
        self,
        user_id: str,
        type: str,
        message: str,
        related_item_id: Optional[str] = None,
    ) -> Optional[Notification]:
        if not user_id:
            raise ValidationError("A notification needs a recipient")
        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=type,
            message=message,
            read=False,
            created_at=now_iso(),
            related_item_id=related_item_id,
        )
        try:
            await self.log.append(notification)
        except (InventoryError, OSError) as exc:
            logger.error("Dropping %s notification for %s: %s", type, user_id, exc)
            return None
        if user_id == self.session_user.id:
            self.inbox.insert(0, notification)
        return notification

    async def notify_role(
        self,
        role: str,
        type: str,
        message: str,
        related_item_id: Optional[str] = None,
        exclude_user_id: Optional[str] = None,
    ) -> List[Notification]:
        """Notify every known user holding role, except exclude_user_id."""
        try:
            await self.users.ensure_loaded()
        except InventoryError as exc:
            logger.error("Could not list users for %s notification: %s", type, exc.message)
            return []
        sent = []
        for user in self.users.with_role(role, exclude_user_id=exclude_user_id):
            notification = await self.notify_user(user.id, type, message, related_item_id)
            if notification is not None:
                sent.append(notification)
        logger.debug("Sent %d %s notification(s) to role %s", len(sent), type, role)
        return sent

    async def notify_staff(
        self,
        type: str,
        message: str,
        related_item_id: Optional[str] = None,
        exclude_user_id: Optional[str] = None,
    ) -> List[Notification]:
        sent = await self.notify_role("admin", type, message, related_item_id, exclude_user_id)
        sent += await self.notify_role("manager", type, message, related_item_id, exclude_user_id)
        return sent

    async def mark_as_read(self, notification_id: str) -> None:
        for index, n in enumerate(self.inbox):
            if n.id == notification_id:
                if n.read:
                    return
                await self.log.mark_read(notification_id)
                self.inbox[index] = n.model_copy(update={"read": True})
                return
        await self.log.mark_read(notification_id)

    async def mark_all_as_read(self) -> int:
        count = 0
        for n in list(self.inbox):
            if n.user_id == self.session_user.id and not n.read:
                await self.mark_as_read(n.id)
                count += 1
        return count

    def clear(self) -> None:
        self.inbox = []
