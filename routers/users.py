import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from sqlmodel import select

import permissions
from db import SessionDep
from errors import PermissionDenied
from models import User
from schemas import ActionBody, IdPayload, Payload, UserCreate, UserRead, UserUpdate
from .auth import OptionalUserDep, hash_password
from .common import apply_changes, authorize, created, dispatch, not_found, parse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


class UserFilter(Payload):
    role: Optional[str] = None


def _public(user: User) -> dict:
    return UserRead.model_validate(user).model_dump()


@router.post("")
def users_action(body: ActionBody, session: SessionDep, user: OptionalUserDep):
    fields = body.fields()

    def get_all():
        """
        List users, optionally only those holding a role.
        """
        filters = parse(UserFilter, fields)
        query = select(User).order_by(User.name)
        users = session.exec(query).all()
        if filters.role:
            wanted = filters.role.strip().lower()
            users = [u for u in users if (u.role or "").lower() == wanted]
        return [_public(u) for u in users]

    def get_by_id():
        payload = parse(IdPayload, fields)
        target = session.get(User, payload.id)
        if target is None:
            raise not_found("User")
        return _public(target)

    def create():
        authorize(user, "create", permissions.USER)
        payload = parse(UserCreate, fields)
        if session.exec(select(User).where(User.email == payload.email)).first():
            raise HTTPException(status_code=400, detail="Email already registered")
        new_user = User(
            email=payload.email,
            name=payload.name,
            role=payload.role,
            department=payload.department,
            avatar_url=payload.avatar_url,
            password_hash=hash_password(payload.password),
        )
        session.add(new_user)
        session.commit()
        session.refresh(new_user)
        logger.info("User %s created by %s", new_user.id, user.id)
        return created(_public(new_user))

    def update():
        payload = parse(UserUpdate, fields)
        target = session.get(User, payload.id)
        if target is None:
            raise not_found("User")
        authorize(user, "update", permissions.USER, target)
        changes = payload.model_dump(exclude={"id"}, exclude_unset=True)
        if "role" in changes and changes["role"] != target.role and not permissions.is_manager(user):
            raise PermissionDenied("Only a manager can change a user's role")
        if "email" in changes and changes["email"] != target.email:
            clash = session.exec(select(User).where(User.email == changes["email"])).first()
            if clash is not None:
                raise HTTPException(status_code=400, detail="Email already registered")
        for key in ("name", "email", "role"):
            if changes.get(key) is None:
                changes.pop(key, None)
        apply_changes(target, changes)
        session.add(target)
        session.commit()
        session.refresh(target)
        return _public(target)

    return dispatch(
        body.action,
        {
            "getAll": get_all,
            "getById": get_by_id,
            "create": create,
            "update": update,
        },
    )
