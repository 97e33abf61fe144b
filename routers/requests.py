import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from sqlmodel import select

import lifecycle
import permissions
from db import SessionDep
from domain import now_iso
from errors import PermissionDenied
from models import Category, Comment, ItemRequest, User
from schemas import ActionBody, CommentCreate, IdPayload, RequestCreate, RequestFilter, RequestUpdate
from .auth import OptionalUserDep
from .common import apply_changes, authorize, created, dispatch, not_found, parse, row

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])

# only ever written by a lifecycle transition
STAMP_FIELDS = frozenset({
    "status",
    "approved_at",
    "approved_by",
    "rejected_at",
    "rejected_by",
    "rejection_reason",
    "fulfillment_date",
})


def _user_summary(session: SessionDep, user_id: Optional[str]) -> Optional[dict]:
    user = session.get(User, user_id) if user_id else None
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "department": user.department,
        "avatar_url": user.avatar_url,
    }


def _category_ref(session: SessionDep, category_id: Optional[str]) -> Optional[dict]:
    category = session.get(Category, category_id) if category_id else None
    if category is None:
        return None
    return {"id": category.id, "name": category.name}


def _comment_row(session: SessionDep, comment: Comment) -> dict:
    data = row(comment)
    data["user"] = _user_summary(session, comment.user_id)
    return data


def _load_comments(session: SessionDep, request_id: str) -> List[dict]:
    comments = session.exec(
        select(Comment)
        .where(Comment.request_id == request_id)
        .order_by(Comment.created_at)
    ).all()
    return [_comment_row(session, c) for c in comments]


def _request_row(session: SessionDep, request: ItemRequest, with_comments: bool = False) -> dict:
    data = row(request)
    data["user"] = _user_summary(session, request.user_id)
    data["category"] = _category_ref(session, request.category_id)
    if with_comments:
        data["comments"] = _load_comments(session, request.id)
    return data


@router.post("")
def item_requests_action(body: ActionBody, session: SessionDep, user: OptionalUserDep):
    fields = body.fields()

    def get_all():
        filters = parse(RequestFilter, fields)
        query = select(ItemRequest).order_by(ItemRequest.created_at.desc())
        if filters.user_id is not None:
            query = query.where(ItemRequest.user_id == filters.user_id)
        if filters.status is not None:
            query = query.where(ItemRequest.status == filters.status)
        return [_request_row(session, r) for r in session.exec(query).all()]

    def get_by_id():
        payload = parse(IdPayload, fields)
        request = session.get(ItemRequest, payload.id)
        if request is None:
            raise not_found("Item request")
        return _request_row(session, request, with_comments=True)

    def create():
        authorize(user, "create", permissions.ITEM_REQUEST)
        payload = parse(RequestCreate, fields)
        if payload.user_id != user.id and not permissions.is_staff(user):
            raise PermissionDenied("You can only create requests for yourself")
        if payload.id:
            existing = session.get(ItemRequest, payload.id)
            if existing is not None:
                # a client re-sending an unconfirmed record
                if existing.user_id != payload.user_id:
                    raise HTTPException(status_code=400, detail="Request id already in use")
                return _request_row(session, existing)
        if session.get(User, payload.user_id) is None:
            raise HTTPException(status_code=404, detail="Requester not found")
        if payload.category_id and session.get(Category, payload.category_id) is None:
            raise HTTPException(status_code=400, detail="Unknown category_id")

        values = payload.model_dump(exclude_none=True)
        values["status"] = lifecycle.initial_status(payload.status)
        request = ItemRequest(**values)
        request.updated_at = request.created_at
        session.add(request)
        session.commit()
        session.refresh(request)
        logger.info("Item request %s created by %s as %s", request.id, user.id, request.status)
        return created(_request_row(session, request))

    def update():
        authorize(user, "view", permissions.ITEM_REQUEST)
        payload = parse(RequestUpdate, fields)
        request = session.get(ItemRequest, payload.id)
        if request is None:
            raise not_found("Item request")

        submitted = payload.model_dump(exclude={"id"}, exclude_unset=True)
        edits = {k: v for k, v in submitted.items() if k not in STAMP_FIELDS and v is not None}
        if edits:
            permissions.require(user, "update", permissions.ITEM_REQUEST, request)

        changes = dict(edits)
        new_status = submitted.get("status")
        if new_status and new_status != request.status:
            action = lifecycle.action_for(request.status, new_status)
            changes.update(
                lifecycle.transition(
                    request,
                    action,
                    user,
                    reason=submitted.get("rejection_reason"),
                )
            )
            logger.info(
                "Item request %s %s by %s",
                request.id,
                lifecycle.PAST_TENSE[action],
                user.id,
            )

        if not changes:
            return _request_row(session, request)

        changes.setdefault("updated_at", now_iso())
        apply_changes(request, changes)
        session.add(request)
        session.commit()
        session.refresh(request)
        return _request_row(session, request)

    def delete():
        authorize(user, "delete", permissions.ITEM_REQUEST)
        payload = parse(IdPayload, fields)
        request = session.get(ItemRequest, payload.id)
        if request is None:
            raise not_found("Item request")
        for comment in session.exec(
            select(Comment).where(Comment.request_id == request.id)
        ).all():
            session.delete(comment)
        session.delete(request)
        session.commit()
        logger.info("Item request %s deleted by %s", payload.id, user.id)
        return {"message": "Item request deleted successfully", "id": payload.id}

    def add_comment():
        authorize(user, "comment", permissions.ITEM_REQUEST)
        payload = parse(CommentCreate, fields)
        if payload.user_id != user.id:
            raise PermissionDenied("Comments can only be posted as yourself")
        request = session.get(ItemRequest, payload.request_id)
        if request is None:
            raise not_found("Item request")
        comment = Comment(
            request_id=request.id,
            user_id=payload.user_id,
            content=payload.content.strip(),
        )
        request.updated_at = comment.created_at
        session.add(comment)
        session.add(request)
        session.commit()
        session.refresh(comment)
        return created(_comment_row(session, comment))

    return dispatch(
        body.action,
        {
            "getAll": get_all,
            "getById": get_by_id,
            "create": create,
            "update": update,
            "delete": delete,
            "addComment": add_comment,
        },
    )
