"""
Data-access layer.

Every entity endpoint takes POST {"action": <verb>, ...snake_case fields}
and answers with snake_case JSON. ActionClient validates the payload before
anything leaves the process, tries the primary endpoint and then, once, the
fallback endpoint, and hands back camelCase data or domain models.
"""
import logging
from typing import Any, Dict, Optional, Sequence, Type

import httpx
import pydantic

from casing import camelize, snakify
from domain import DomainModel
from errors import IntegrationError, ValidationError

logger = logging.getLogger(__name__)

REQUESTS = "requests"
INVENTORY = "inventory"
CATEGORIES = "categories"
USERS = "users"
NOTIFICATIONS = "notifications"

ENTITY_PATHS = {
    REQUESTS: "item-requests",
    INVENTORY: "inventory",
    CATEGORIES: "categories",
    USERS: "users",
    NOTIFICATIONS: "notifications",
}

_CRUD = frozenset({"getAll", "getById", "create", "update", "delete"})

ACTIONS = {
    REQUESTS: _CRUD | {"addComment"},
    INVENTORY: _CRUD,
    CATEGORIES: _CRUD,
    USERS: frozenset({"getAll", "getById", "create", "update"}),
    NOTIFICATIONS: frozenset({"getAll", "getById", "create", "update", "markAllAsRead"}),
}

WRITE_ACTIONS = frozenset({"create", "update", "delete", "addComment", "markAllAsRead"})

REQUIRED_FIELDS = {
    (REQUESTS, "create"): ("user_id", "title"),
    (REQUESTS, "addComment"): ("request_id", "user_id", "content"),
    (INVENTORY, "create"): ("name",),
    (CATEGORIES, "create"): ("name",),
    (USERS, "create"): ("email", "name", "password"),
    (NOTIFICATIONS, "create"): ("user_id", "type", "message"),
}

# wrappers older handlers put around list responses
LEGACY_LIST_KEYS = ("items", "requests", "categories", "users", "notifications", "data")

# embedded relations the backend derives itself
READ_ONLY_FIELDS = ("user", "category", "comments")


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def required_fields(entity: str, action: str) -> Sequence[str]:
    if action in ("getById", "update", "delete"):
        return ("id",)
    return REQUIRED_FIELDS.get((entity, action), ())


def to_wire(payload: Any) -> Dict[str, Any]:
    """Turn a domain model or a camelCase/snake_case dict into wire fields."""
    if payload is None:
        return {}
    if isinstance(payload, DomainModel):
        payload = payload.model_dump(exclude_none=True)
    elif not isinstance(payload, dict):
        raise ValidationError(f"Unsupported payload type {type(payload).__name__}")
    fields = snakify(payload)
    for key in READ_ONLY_FIELDS:
        fields.pop(key, None)
    return fields


def validate_payload(entity: str, action: str, fields: Dict[str, Any]) -> None:
    if entity not in ACTIONS:
        raise ValidationError(f"Unknown entity '{entity}'")
    if action not in ACTIONS[entity]:
        raise ValidationError(
            f"Action '{action}' is not supported for {entity}; "
            f"expected one of {', '.join(sorted(ACTIONS[entity]))}"
        )
    missing = [name for name in required_fields(entity, action) if _missing(fields.get(name))]
    if missing:
        raise ValidationError(f"Missing required field(s) for {entity}.{action}: {', '.join(missing)}")
    quantity = fields.get("quantity")
    if quantity is not None and (not isinstance(quantity, int) or quantity <= 0):
        raise ValidationError("quantity must be a positive integer")


def unwrap(body: Any) -> Any:
    """Accept the canonical bare shape as well as {"items": [...]}-style wrappers."""
    if isinstance(body, dict) and "id" not in body:
        for key in LEGACY_LIST_KEYS:
            if isinstance(body.get(key), list):
                logger.debug("Unwrapping legacy '%s' response envelope", key)
                return body[key]
    return body


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


class ActionClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        endpoints: Sequence[str],
        read_timeout: float = 10.0,
        write_timeout: float = 15.0,
    ) -> None:
        if not endpoints:
            raise ValueError("At least one endpoint is required")
        self.http = http
        self.endpoints = [url.rstrip("/") for url in endpoints]
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

    async def _send_once(self, url: str, body: Dict[str, Any], timeout: float) -> Any:
        try:
            response = await self.http.post(url, json=body, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise IntegrationError(f"Timed out calling {url}", IntegrationError.TIMEOUT) from exc
        except httpx.TransportError as exc:
            raise IntegrationError(f"Could not reach {url}: {exc}", IntegrationError.NETWORK) from exc

        if not response.is_success:
            raise IntegrationError(
                _error_detail(response),
                IntegrationError.HTTP,
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise IntegrationError(
                f"Malformed JSON from {url}",
                IntegrationError.PARSE,
                status_code=response.status_code,
            ) from exc

    async def post(self, path: str, body: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """POST body to path on the primary endpoint, falling back once."""
        timeout = timeout or self.write_timeout
        last_error: Optional[IntegrationError] = None
        for attempt, base in enumerate(self.endpoints[:2]):
            url = f"{base}/{path.lstrip('/')}"
            try:
                return await self._send_once(url, body, timeout)
            except IntegrationError as exc:
                last_error = exc
                if attempt == 0 and len(self.endpoints) > 1:
                    logger.warning("Primary endpoint failed (%s); trying fallback", exc.message)
        raise last_error

    async def call(
        self,
        entity: str,
        action: str,
        payload: Any = None,
        model: Optional[Type[DomainModel]] = None,
    ) -> Any:
        """
        Dispatch one action and return camelCase JSON, or domain models when
        model is given. ValidationError is raised before any network traffic.
        """
        fields = to_wire(payload)
        validate_payload(entity, action, fields)
        timeout = self.write_timeout if action in WRITE_ACTIONS else self.read_timeout
        body = {"action": action, **fields}
        logger.debug("%s.%s -> %s", entity, action, sorted(fields))

        data = camelize(unwrap(await self.post(ENTITY_PATHS[entity], body, timeout=timeout)))
        if model is None:
            return data
        return self.to_models(data, model)

    @staticmethod
    def to_models(data: Any, model: Type[DomainModel]) -> Any:
        try:
            if isinstance(data, list):
                return [model.model_validate(item) for item in data]
            return model.model_validate(data)
        except pydantic.ValidationError as exc:
            raise IntegrationError(
                f"Unexpected {model.__name__} shape from backend: {exc.error_count()} error(s)",
                IntegrationError.PARSE,
            ) from exc
