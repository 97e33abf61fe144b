import logging

from fastapi import APIRouter
from sqlmodel import func, select

import permissions
from db import SessionDep
from errors import ValidationError
from models import Category, InventoryItem, ItemRequest
from schemas import ActionBody, CategoryCreate, CategoryUpdate, IdPayload
from .auth import OptionalUserDep
from .common import apply_changes, authorize, created, dispatch, not_found, parse, row

logger = logging.getLogger(__name__)

router = APIRouter(tags=["categories"])


def count_items_in_category(session: SessionDep, category_id: str) -> int:
    return session.exec(
        select(func.count()).select_from(InventoryItem).where(
            InventoryItem.category_id == category_id
        )
    ).one()


@router.post("")
def categories_action(body: ActionBody, session: SessionDep, user: OptionalUserDep):
    fields = body.fields()

    def get_all():
        categories = session.exec(select(Category).order_by(Category.name)).all()
        return [row(c) for c in categories]

    def get_by_id():
        payload = parse(IdPayload, fields)
        category = session.get(Category, payload.id)
        if category is None:
            raise not_found("Category")
        return row(category)

    def create():
        authorize(user, "create", permissions.CATEGORY)
        payload = parse(CategoryCreate, fields)
        category = Category(name=payload.name.strip(), description=payload.description)
        session.add(category)
        session.commit()
        session.refresh(category)
        logger.info("Category %s created by %s", category.id, user.id)
        return created(row(category))

    def update():
        authorize(user, "update", permissions.CATEGORY)
        payload = parse(CategoryUpdate, fields)
        category = session.get(Category, payload.id)
        if category is None:
            raise not_found("Category")
        apply_changes(category, payload.model_dump(exclude={"id"}, exclude_unset=True))
        session.add(category)
        session.commit()
        session.refresh(category)
        return row(category)

    def delete():
        authorize(user, "delete", permissions.CATEGORY)
        payload = parse(IdPayload, fields)
        category = session.get(Category, payload.id)
        if category is None:
            raise not_found("Category")
        in_use = count_items_in_category(session, category.id)
        if in_use:
            raise ValidationError(
                f"Cannot delete category '{category.name}': "
                f"{in_use} inventory item(s) still reference it"
            )
        # requests keep their history but lose the dangling reference
        for request in session.exec(
            select(ItemRequest).where(ItemRequest.category_id == category.id)
        ).all():
            request.category_id = None
            session.add(request)
        session.delete(category)
        session.commit()
        logger.info("Category %s deleted by %s", payload.id, user.id)
        return {"message": "Category deleted successfully", "id": payload.id}

    return dispatch(
        body.action,
        {
            "getAll": get_all,
            "getById": get_by_id,
            "create": create,
            "update": update,
            "delete": delete,
        },
    )
