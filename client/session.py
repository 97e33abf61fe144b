"""
Signed-in client session.

Owns the HTTP client, the per-entity containers, the notification center
and the request workflow. Everything is built at login and torn down at
logout, so nothing user-specific outlives the session.
"""
import asyncio
import logging
from typing import Optional

import httpx

from casing import camelize
from domain import User
from errors import ValidationError
from .containers import (
    CategoryContainer,
    InventoryContainer,
    NotificationContainer,
    RequestContainer,
    UserContainer,
)
from .notifications import FileNotificationLog, NotificationCenter, NotificationLog
from .settings import Settings
from .transport import ActionClient
from .workflow import RequestWorkflow

logger = logging.getLogger(__name__)


class Session:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
        log: Optional[NotificationLog] = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient()
        self.api = ActionClient(
            self.http,
            self.settings.endpoints,
            read_timeout=self.settings.read_timeout,
            write_timeout=self.settings.write_timeout,
        )
        self._log = log
        self.user: Optional[User] = None
        self.requests: Optional[RequestContainer] = None
        self.inventory: Optional[InventoryContainer] = None
        self.categories: Optional[CategoryContainer] = None
        self.users: Optional[UserContainer] = None
        self.notifications: Optional[NotificationContainer] = None
        self.center: Optional[NotificationCenter] = None
        self.workflow: Optional[RequestWorkflow] = None

    @property
    def containers(self) -> list:
        return [
            c for c in (self.requests, self.inventory, self.categories, self.users, self.notifications)
            if c is not None
        ]

    def _open(self, user: User) -> User:
        self.user = user
        settings = self.settings
        self.requests = RequestContainer(self.api, user, settings)
        self.inventory = InventoryContainer(self.api, user, settings)
        self.categories = CategoryContainer(self.api, user, settings, self.inventory)
        self.users = UserContainer(self.api, user, settings)
        self.notifications = NotificationContainer(self.api, user, settings)

        log = self._log
        if log is None and settings.notification_log:
            log = FileNotificationLog(settings.notification_log)
        self.center = NotificationCenter(log or self.notifications, self.users, user)
        self.workflow = RequestWorkflow(self.requests, self.users, self.center, user)
        logger.info("Session opened for %s (%s)", user.id, user.role)
        return user

    async def login(self, email: str, password: str) -> User:
        if not email or not password:
            raise ValidationError("Email and password are required")
        data = await self.api.post(
            "auth/login", {"email": email, "password": password}, timeout=self.settings.read_timeout
        )
        return self._open(ActionClient.to_models(camelize(data), User))

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        role: str = "user",
        department: Optional[str] = None,
    ) -> User:
        body = {"name": name, "email": email, "password": password, "role": role}
        if department:
            body["department"] = department
        data = await self.api.post("auth/register", body)
        return self._open(ActionClient.to_models(camelize(data), User))

    async def start(self) -> None:
        """Load every container, then the notification inbox."""
        await asyncio.gather(*(c.refresh() for c in self.containers))
        await self.center.load()

    def start_polling(self, interval: Optional[float] = None) -> None:
        for container in self.containers:
            container.start_polling(interval)

    async def _teardown(self) -> None:
        for container in self.containers:
            await container.close()
        if self.center is not None:
            self.center.clear()
        self.requests = self.inventory = self.categories = None
        self.users = self.notifications = None
        self.center = None
        self.workflow = None
        self.user = None

    async def logout(self) -> None:
        if self.user is None:
            return
        user_id = self.user.id
        try:
            await self.api.post("auth/logout", {})
        finally:
            await self._teardown()
        logger.info("Session closed for %s", user_id)

    async def close(self) -> None:
        await self._teardown()
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
