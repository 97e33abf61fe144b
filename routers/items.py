import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from sqlmodel import select

import permissions
from db import SessionDep
from domain import now_iso
from models import Category, InventoryItem, ItemRequest
from schemas import ActionBody, IdPayload, ItemCreate, ItemUpdate, Payload
from .auth import OptionalUserDep
from .common import apply_changes, authorize, created, dispatch, not_found, parse, row

logger = logging.getLogger(__name__)

router = APIRouter(tags=["inventory"])


class ItemFilter(Payload):
    category_id: Optional[str] = None
    location: Optional[str] = None
    min_quantity: Optional[int] = None


def _with_category(session: SessionDep, item: InventoryItem) -> dict:
    data = row(item)
    category = session.get(Category, item.category_id) if item.category_id else None
    data["category"] = {"id": category.id, "name": category.name} if category else None
    return data


def _check_category(session: SessionDep, category_id: Optional[str]) -> None:
    if category_id and session.get(Category, category_id) is None:
        raise HTTPException(status_code=400, detail="Unknown category_id")


@router.post("")
def inventory_action(body: ActionBody, session: SessionDep, user: OptionalUserDep):
    fields = body.fields()

    def get_all():
        """
        List items, optionally filtered by category, location and min_quantity.
        """
        filters = parse(ItemFilter, fields)
        query = select(InventoryItem).order_by(InventoryItem.name)
        if filters.category_id is not None:
            query = query.where(InventoryItem.category_id == filters.category_id)
        if filters.location is not None:
            query = query.where(InventoryItem.location == filters.location)
        if filters.min_quantity is not None:
            query = query.where(InventoryItem.quantity_available >= filters.min_quantity)
        return [_with_category(session, item) for item in session.exec(query).all()]

    def get_by_id():
        payload = parse(IdPayload, fields)
        item = session.get(InventoryItem, payload.id)
        if item is None:
            raise not_found("Item")
        return _with_category(session, item)

    def create():
        authorize(user, "create", permissions.INVENTORY_ITEM)
        payload = parse(ItemCreate, fields)
        _check_category(session, payload.category_id)
        item = InventoryItem(**payload.model_dump())
        session.add(item)
        session.commit()
        session.refresh(item)
        logger.info("Inventory item %s created by %s", item.id, user.id)
        return created(_with_category(session, item))

    def update():
        authorize(user, "update", permissions.INVENTORY_ITEM)
        payload = parse(ItemUpdate, fields)
        item = session.get(InventoryItem, payload.id)
        if item is None:
            raise not_found("Item")
        changes = payload.model_dump(exclude={"id"}, exclude_unset=True)
        for key in ("quantity_available", "quantity_reserved"):
            if key in changes and changes[key] is None:
                del changes[key]
        _check_category(session, changes.get("category_id"))
        apply_changes(item, changes)
        item.updated_at = now_iso()
        session.add(item)
        session.commit()
        session.refresh(item)
        return _with_category(session, item)

    def delete():
        authorize(user, "delete", permissions.INVENTORY_ITEM)
        payload = parse(IdPayload, fields)
        item = session.get(InventoryItem, payload.id)
        if item is None:
            raise not_found("Item")
        for request in session.exec(
            select(ItemRequest).where(ItemRequest.inventory_item_id == item.id)
        ).all():
            request.inventory_item_id = None
            session.add(request)
        session.delete(item)
        session.commit()
        logger.info("Inventory item %s deleted by %s", payload.id, user.id)
        return {"message": "Item deleted successfully", "id": payload.id}

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
