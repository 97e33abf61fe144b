import logging

from fastapi import APIRouter
from sqlmodel import select

import permissions
from db import SessionDep
from errors import PermissionDenied
from models import Notification
from schemas import ActionBody, IdPayload, NotificationCreate, NotificationFilter, NotificationUpdate
from .auth import OptionalUserDep
from .common import authorize, created, dispatch, not_found, parse, row

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


@router.post("")
def notifications_action(body: ActionBody, session: SessionDep, user: OptionalUserDep):
    fields = body.fields()

    def readable(user_id):
        """Staff may read anyone's notifications; everyone else only their own."""
        if user_id != user.id and not permissions.is_staff(user):
            raise PermissionDenied("You can only read your own notifications")

    def get_all():
        authorize(user, "view", permissions.NOTIFICATION)
        filters = parse(NotificationFilter, fields)
        if filters.user_id is None and not permissions.is_staff(user):
            filters.user_id = user.id
        query = select(Notification).order_by(Notification.created_at.desc())
        if filters.user_id is not None:
            readable(filters.user_id)
            query = query.where(Notification.user_id == filters.user_id)
        if filters.unread_only:
            query = query.where(Notification.read == False)  # noqa: E712
        return [row(n) for n in session.exec(query).all()]

    def get_by_id():
        authorize(user, "view", permissions.NOTIFICATION)
        payload = parse(IdPayload, fields)
        notification = session.get(Notification, payload.id)
        if notification is None:
            raise not_found("Notification")
        readable(notification.user_id)
        return row(notification)

    def create():
        authorize(user, "create", permissions.NOTIFICATION)
        payload = parse(NotificationCreate, fields)
        if payload.id and session.get(Notification, payload.id) is not None:
            return row(session.get(Notification, payload.id))
        notification = Notification(**payload.model_dump(exclude_none=True))
        session.add(notification)
        session.commit()
        session.refresh(notification)
        return created(row(notification))

    def update():
        """Mark one notification read. Repeating it changes nothing."""
        payload = parse(NotificationUpdate, fields)
        notification = session.get(Notification, payload.id)
        if notification is None:
            raise not_found("Notification")
        authorize(user, "update", permissions.NOTIFICATION, notification)
        if not notification.read:
            notification.read = True
            session.add(notification)
            session.commit()
            session.refresh(notification)
        return row(notification)

    def mark_all_as_read():
        authorize(user, "view", permissions.NOTIFICATION)
        unread = session.exec(
            select(Notification).where(
                Notification.user_id == user.id,
                Notification.read == False,  # noqa: E712
            )
        ).all()
        for notification in unread:
            notification.read = True
            session.add(notification)
        session.commit()
        logger.info("Marked %d notification(s) read for %s", len(unread), user.id)
        return {"updated": len(unread)}

    return dispatch(
        body.action,
        {
            "getAll": get_all,
            "getById": get_by_id,
            "create": create,
            "update": update,
            "markAllAsRead": mark_all_as_read,
        },
    )
