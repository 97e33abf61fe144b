"""
Helpers shared by the action-tagged entity routers.

Each entity endpoint is a single POST route whose body names an action;
these helpers parse the per-action payload, translate domain errors to
HTTP errors and serialize rows in the canonical bare snake_case shape.
"""
import logging
from typing import Any, Callable, Dict, Type, TypeVar

import pydantic
from fastapi import HTTPException
from fastapi.responses import JSONResponse
from sqlmodel import SQLModel

import permissions
from errors import PermissionDenied, StateError, ValidationError

logger = logging.getLogger(__name__)

API_VERSION = "1"

P = TypeVar("P", bound=pydantic.BaseModel)


def parse(schema: Type[P], fields: Dict[str, Any]) -> P:
    try:
        return schema.model_validate(fields)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise HTTPException(status_code=400, detail=f"Invalid payload: {problems}")


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, PermissionDenied):
        return HTTPException(status_code=403, detail=exc.message)
    return HTTPException(status_code=400, detail=str(exc))


def dispatch(action: str, handlers: Dict[str, Callable[[], Any]]) -> Any:
    """Run the handler registered for action, mapping domain errors to HTTP."""
    handler = handlers.get(action)
    if handler is None:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported action '{action}'. Expected one of: {', '.join(handlers)}",
        )
    try:
        return handler()
    except (PermissionDenied, ValidationError, StateError) as exc:
        logger.info("Action %s refused: %s", action, exc.message)
        raise http_error(exc)


def not_found(kind: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind} not found")


def row(model: SQLModel, exclude: frozenset = frozenset()) -> Dict[str, Any]:
    return model.model_dump(exclude=set(exclude))


def apply_changes(model: SQLModel, changes: Dict[str, Any]) -> None:
    for key, value in changes.items():
        setattr(model, key, value)


def created(content: Any) -> JSONResponse:
    return JSONResponse(content=content, status_code=201)


def authorize(user: Any, action: str, kind: str, target: Any = None) -> None:
    """401 without a session, otherwise defer to the authorization predicate."""
    if user is None:
        raise HTTPException(status_code=401, detail="Not logged in")
    permissions.require(user, action, kind, target)
