import logging
from typing import Any, List, Optional

import lifecycle
from domain import Comment, ItemRequest, User
from .containers import RequestContainer, UserContainer
from .notifications import NotificationCenter
from .results import CreateResult
from .transport import to_wire

logger = logging.getLogger(__name__)

COMMENT_PREVIEW = 30


class RequestWorkflow:
    """
    Request lifecycle actions for one signed-in user.

    Every action goes through the request container, which re-validates the
    transition against the backend's current state, and then tells the
    people involved.
    """

    def __init__(
        self,
        requests: RequestContainer,
        users: UserContainer,
        center: NotificationCenter,
        actor: User,
    ) -> None:
        self.requests = requests
        self.users = users
        self.center = center
        self.actor = actor

    async def _owner_name(self, request: ItemRequest) -> str:
        if request.user is not None and request.user.name:
            return request.user.name
        await self.users.ensure_loaded()
        return self.users.name_of(request.user_id)

    async def _announce_submission(self, request: ItemRequest) -> None:
        await self.center.notify_user(
            request.user_id,
            "request_submitted",
            f'Your request for "{request.title}" has been submitted',
            request.id,
        )
        await self.center.notify_staff(
            "request_submitted",
            f'New request: "{request.title}" from {self.actor.name} requires your review',
            request.id,
            exclude_user_id=self.actor.id,
        )

    async def submit(self, fields: Any, draft: bool = False) -> CreateResult:
        """Create a request; unless it is a draft, staff hear about it."""
        if draft:
            fields = {**to_wire(fields), "status": "draft"}
        result = await self.requests.create(fields)
        if result.confirmed and result.entity.status == "pending":
            await self._announce_submission(result.entity)
        return result

    async def retry_pending(self) -> List[CreateResult]:
        """Re-send requests kept locally; the ones that now land are announced."""
        results = await self.requests.retry_pending()
        for result in results:
            if result.confirmed and result.entity.status == "pending":
                await self._announce_submission(result.entity)
        return results

    async def submit_draft(self, request_id: str) -> ItemRequest:
        updated = await self.requests.transition(request_id, "submit")
        await self._announce_submission(updated)
        return updated

    async def _decide(self, request_id: str, action: str, reason: Optional[str] = None) -> ItemRequest:
        updated = await self.requests.transition(request_id, action, reason=reason)
        verb = lifecycle.PAST_TENSE[action]
        kind = lifecycle.NOTIFICATION_TYPES[action]
        logger.info("Request %s %s by %s", request_id, verb, self.actor.id)

        await self.center.notify_user(
            updated.user_id,
            kind,
            f'Your request for "{updated.title}" has been {verb} by {self.actor.name or "Admin"}',
            updated.id,
        )
        owner = await self._owner_name(updated)
        await self.center.notify_staff(
            kind,
            f'Request "{updated.title}" from {owner} was {verb} by {self.actor.name}',
            updated.id,
            exclude_user_id=self.actor.id,
        )
        return updated

    async def approve(self, request_id: str) -> ItemRequest:
        return await self._decide(request_id, "approve")

    async def reject(self, request_id: str, reason: str) -> ItemRequest:
        return await self._decide(request_id, "reject", reason=reason)

    async def fulfill(self, request_id: str) -> ItemRequest:
        return await self._decide(request_id, "fulfill")

    async def comment(self, request_id: str, content: str) -> Comment:
        """
        Post a comment. The owner's comments go to staff; staff comments go
        to the owner and to the other staff members.
        """
        comment = await self.requests.add_comment(request_id, content)
        request = self.requests.find(request_id) or await self.requests.get_by_id(request_id)
        name = self.actor.name
        role = self.actor.role.lower()

        if self.actor.id == request.user_id:
            await self.center.notify_staff(
                "comment_added",
                f'{name} added a comment to their request "{request.title}"',
                request_id,
                exclude_user_id=self.actor.id,
            )
        elif role in ("admin", "manager"):
            preview = content[:COMMENT_PREVIEW] + ("..." if len(content) > COMMENT_PREVIEW else "")
            await self.center.notify_user(
                request.user_id,
                "comment_added",
                f'{name} ({role}) commented on your request "{request.title}": "{preview}"',
                request_id,
            )
            owner = await self._owner_name(request)
            other = "manager" if role == "admin" else "admin"
            await self.center.notify_role(
                role,
                "comment_added",
                f'{name} commented on {owner}\'s request "{request.title}"',
                request_id,
                exclude_user_id=self.actor.id,
            )
            await self.center.notify_role(
                other,
                "comment_added",
                f'{name} ({role}) commented on {owner}\'s request "{request.title}"',
                request_id,
                exclude_user_id=self.actor.id,
            )
        return comment
