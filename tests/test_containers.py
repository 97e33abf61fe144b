import asyncio
import json

import httpx
import pytest

from client.containers import (
    CategoryContainer,
    InventoryContainer,
    NotificationContainer,
    RequestContainer,
    UserContainer,
)
from client.results import Confirmed, PendingSync
from client.settings import Settings
from client.transport import ActionClient
from domain import User
from errors import IntegrationError, PermissionDenied, ValidationError

API = "http://backend.test/api"

USER = User(id="u1", name="Uma", email="uma@example.com", role="user")
MANAGER = User(id="m1", name="Max", email="max@example.com", role="manager")


def make_settings(**overrides):
    values = {"api_url": API, "fetch_retries": 2, "retry_backoff": 0, "settle_delay": 60}
    values.update(overrides)
    return Settings(**values)


class Backend:
    """Scripted stand-in for the action endpoints."""

    def __init__(self):
        self.calls = []
        self.routes = {}

    def on(self, entity_path, action, *responses):
        self.routes[(entity_path, action)] = list(responses)

    async def __call__(self, request):
        body = json.loads(request.content)
        entity_path = request.url.path.rsplit("/", 1)[-1]
        self.calls.append((entity_path, body["action"], body))
        queue = self.routes.get((entity_path, body["action"]))
        if not queue:
            return httpx.Response(404, json={"detail": "no route"})
        response = queue[0] if len(queue) == 1 else queue.pop(0)
        if callable(response):
            response = response(body)
            if asyncio.iscoroutine(response):
                response = await response
            return response
        # scripted responses may be served more than once
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def count(self, entity_path, action):
        return sum(1 for path, name, _ in self.calls if (path, name) == (entity_path, action))


def make_api(backend):
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    return ActionClient(http, [API])


def echo(status=201):
    def respond(body):
        data = {k: v for k, v in body.items() if k != "action"}
        data.setdefault("id", "server-id")
        return httpx.Response(status, json=data)

    return respond


@pytest.mark.asyncio
async def test_refresh_retries_transient_failures():
    backend = Backend()
    backend.on(
        "categories", "getAll",
        httpx.Response(503),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json=[{"id": "c1", "name": "Tools"}]),
    )
    categories = CategoryContainer(make_api(backend), USER, make_settings(), None)

    items = await categories.refresh()

    assert [c.name for c in items] == ["Tools"]
    assert categories.error is None
    assert backend.count("categories", "getAll") == 3


@pytest.mark.asyncio
async def test_refresh_gives_up_with_empty_list_and_error():
    backend = Backend()
    backend.on("inventory", "getAll", httpx.Response(500, json={"detail": "boom"}))
    inventory = InventoryContainer(make_api(backend), USER, make_settings())

    items = await inventory.refresh()

    assert items == []
    assert inventory.error.status_code == 500
    assert backend.count("inventory", "getAll") == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    backend = Backend()
    backend.on("users", "getAll", httpx.Response(400, json={"detail": "bad filter"}))
    users = UserContainer(make_api(backend), USER, make_settings())

    await users.refresh()

    assert backend.count("users", "getAll") == 1
    assert users.error.message == "bad filter"


@pytest.mark.asyncio
async def test_stale_response_never_overwrites_newer_state():
    gate = asyncio.Event()
    backend = Backend()

    async def slow_then_fast(body):
        if backend.count("categories", "getAll") == 1:
            await gate.wait()
            return httpx.Response(200, json=[{"id": "old", "name": "Old"}])
        return httpx.Response(200, json=[{"id": "new", "name": "New"}])

    backend.on("categories", "getAll", slow_then_fast)
    categories = CategoryContainer(make_api(backend), USER, make_settings(), None)

    slow = asyncio.create_task(categories.refresh())
    while backend.count("categories", "getAll") < 1:
        await asyncio.sleep(0)
    await categories.refresh()
    gate.set()
    await slow

    assert [c.id for c in categories.list()] == ["new"]


@pytest.mark.asyncio
async def test_local_mutation_outranks_inflight_fetch():
    gate = asyncio.Event()
    backend = Backend()

    async def slow(body):
        await gate.wait()
        return httpx.Response(200, json=[])

    backend.on("inventory", "getAll", slow)
    backend.on("inventory", "create", echo())
    inventory = InventoryContainer(make_api(backend), MANAGER, make_settings())

    fetch = asyncio.create_task(inventory.refresh())
    while backend.count("inventory", "getAll") < 1:
        await asyncio.sleep(0)
    await inventory.create({"name": "Drill", "quantityAvailable": 2})
    gate.set()
    await fetch

    assert [i.name for i in inventory.list()] == ["Drill"]
    await inventory.close()


@pytest.mark.asyncio
async def test_denied_mutations_send_nothing():
    backend = Backend()
    api = make_api(backend)
    inventory = InventoryContainer(api, USER, make_settings())
    categories = CategoryContainer(api, USER, make_settings(), inventory)
    requests = RequestContainer(api, USER, make_settings())

    with pytest.raises(PermissionDenied):
        await inventory.create({"name": "Drill"})
    with pytest.raises(PermissionDenied):
        await categories.delete("c1")
    with pytest.raises(PermissionDenied):
        await requests.delete("r1")
    with pytest.raises(PermissionDenied):
        await requests.create({"title": "For a friend", "userId": "someone-else"})

    assert backend.calls == []


@pytest.mark.asyncio
async def test_create_request_confirmed():
    backend = Backend()
    backend.on("item-requests", "create", echo())
    requests = RequestContainer(make_api(backend), USER, make_settings())

    result = await requests.create({"title": "Monitor"})

    assert isinstance(result, Confirmed)
    assert result.confirmed
    assert result.entity.user_id == "u1"
    assert result.entity.status == "pending"
    sent = backend.calls[0][2]
    assert sent["priority"] == "medium"
    assert sent["quantity"] == 1
    assert requests.find("server-id") is not None
    await requests.close()


@pytest.mark.asyncio
async def test_create_request_pending_sync_then_retry():
    backend = Backend()
    backend.on("item-requests", "create", httpx.Response(503), echo())
    requests = RequestContainer(make_api(backend), USER, make_settings())

    result = await requests.create({"title": "Keyboard", "quantity": 2})

    assert isinstance(result, PendingSync)
    assert not result.confirmed
    assert result.error.status_code == 503
    assert "not yet confirmed" in result.warning
    local = result.entity
    assert local.id and local.created_at == local.updated_at
    assert requests.find(local.id) is not None
    assert requests.unconfirmed == [local]

    retried = await requests.retry_pending()

    assert [type(r) for r in retried] == [Confirmed]
    assert retried[0].entity.id == local.id
    assert backend.calls[-1][2]["id"] == local.id
    assert requests.unconfirmed == []
    await requests.close()


@pytest.mark.asyncio
async def test_unconfirmed_requests_survive_refresh():
    backend = Backend()
    backend.on("item-requests", "create", httpx.Response(504))
    backend.on("item-requests", "getAll", httpx.Response(200, json=[]))
    requests = RequestContainer(make_api(backend), USER, make_settings())

    result = await requests.create({"title": "Mouse"})
    await requests.refresh()

    assert [r.id for r in requests.list()] == [result.entity.id]


@pytest.mark.asyncio
async def test_rejected_create_is_not_kept_locally():
    backend = Backend()
    backend.on("item-requests", "create", httpx.Response(400, json={"detail": "Unknown category_id"}))
    requests = RequestContainer(make_api(backend), USER, make_settings())

    with pytest.raises(IntegrationError):
        await requests.create({"title": "Mouse", "categoryId": "missing"})
    assert requests.list() == []


@pytest.mark.asyncio
async def test_create_request_validates_before_sending():
    backend = Backend()
    requests = RequestContainer(make_api(backend), USER, make_settings())

    with pytest.raises(ValidationError):
        await requests.create({"title": ""})
    with pytest.raises(ValidationError):
        await requests.create({"title": "Pens", "quantity": 0})
    assert backend.calls == []


@pytest.mark.asyncio
async def test_mutation_schedules_refetch():
    backend = Backend()
    backend.on("categories", "create", echo())
    backend.on("categories", "getAll", httpx.Response(200, json=[{"id": "server-id", "name": "Tools"}]))
    categories = CategoryContainer(make_api(backend), MANAGER, make_settings(settle_delay=0), None)

    await categories.create({"name": "Tools"})
    await categories.drain()

    assert backend.count("categories", "getAll") == 1


@pytest.mark.asyncio
async def test_category_delete_blocked_while_in_use():
    backend = Backend()
    backend.on("inventory", "getAll", httpx.Response(200, json=[
        {"id": "i1", "name": "Hammer", "category_id": "c1"},
        {"id": "i2", "name": "Saw", "category_id": "c1"},
    ]))
    backend.on("categories", "getAll", httpx.Response(200, json=[{"id": "c1", "name": "Tools"}]))
    api = make_api(backend)
    inventory = InventoryContainer(api, MANAGER, make_settings())
    categories = CategoryContainer(api, MANAGER, make_settings(), inventory)
    await categories.refresh()

    with pytest.raises(ValidationError) as exc:
        await categories.delete("c1")

    assert "'Tools'" in exc.value.message
    assert "2 inventory item(s)" in exc.value.message
    assert backend.count("categories", "delete") == 0


@pytest.mark.asyncio
async def test_inventory_views():
    backend = Backend()
    backend.on("inventory", "getAll", httpx.Response(200, json=[
        {"id": "i1", "name": "Hammer", "category_id": "c1", "quantity_available": 2},
        {"id": "i2", "name": "Saw", "category_id": "c1", "quantity_available": 4},
        {"id": "i3", "name": "Pens", "category_id": "c2", "quantity_available": 40},
    ]))
    inventory = InventoryContainer(make_api(backend), USER, make_settings())
    await inventory.refresh()

    assert [i.name for i in inventory.low_stock()] == ["Hammer", "Saw"]
    assert [inventory.is_critical(i) for i in inventory.low_stock()] == [True, False]
    assert inventory.count_in_category("c1") == 2
    assert [i.name for i in inventory.by_category("c2")] == ["Pens"]


@pytest.mark.asyncio
async def test_owner_update_checks_cached_status():
    backend = Backend()
    backend.on("item-requests", "getAll", httpx.Response(200, json=[
        {"id": "r1", "title": "Desk", "user_id": "u1", "status": "approved"},
    ]))
    requests = RequestContainer(make_api(backend), USER, make_settings())
    await requests.refresh()

    with pytest.raises(PermissionDenied):
        await requests.update({"id": "r1", "title": "Bigger desk"})
    assert backend.count("item-requests", "update") == 0


@pytest.mark.asyncio
async def test_user_role_change_needs_manager():
    backend = Backend()
    backend.on("users", "getAll", httpx.Response(200, json=[
        {"id": "u1", "name": "Uma", "email": "uma@example.com", "role": "user"},
    ]))
    users = UserContainer(make_api(backend), USER, make_settings())
    await users.refresh()

    with pytest.raises(PermissionDenied):
        await users.update({"id": "u1", "role": "admin"})


@pytest.mark.asyncio
async def test_notifications_are_scoped_to_the_actor():
    backend = Backend()
    backend.on("notifications", "getAll", httpx.Response(200, json=[
        {"id": "n1", "user_id": "u1", "type": "request_approved", "message": "ok", "read": False},
        {"id": "n2", "user_id": "u1", "type": "comment_added", "message": "hi", "read": True},
    ]))
    backend.on("notifications", "update", httpx.Response(200, json={
        "id": "n1", "user_id": "u1", "type": "request_approved", "message": "ok", "read": True,
    }))
    notifications = NotificationContainer(make_api(backend), USER, make_settings())

    await notifications.refresh()
    assert backend.calls[0][2]["user_id"] == "u1"
    assert notifications.unread_count == 1

    await notifications.mark_as_read("n1")
    await notifications.mark_as_read("n1")
    await notifications.mark_as_read("n2")

    assert notifications.unread_count == 0
    assert backend.count("notifications", "update") == 1


@pytest.mark.asyncio
async def test_polling_refreshes_until_stopped():
    backend = Backend()
    backend.on("categories", "getAll", httpx.Response(200, json=[]))
    categories = CategoryContainer(make_api(backend), USER, make_settings(), None)

    categories.start_polling(0.01)
    await asyncio.sleep(0.05)
    await categories.stop_polling()
    await categories.drain()
    polled = backend.count("categories", "getAll")
    await asyncio.sleep(0.03)

    assert polled >= 2
    assert backend.count("categories", "getAll") == polled


@pytest.mark.asyncio
async def test_update_without_id_fails_validation_before_sending():
    backend = Backend()
    api = make_api(backend)
    users = UserContainer(api, MANAGER, make_settings())
    requests = RequestContainer(api, USER, make_settings())

    with pytest.raises(ValidationError):
        await users.update({"role": "admin"})
    with pytest.raises(ValidationError):
        await requests.update({"title": "No id"})

    assert backend.calls == []


@pytest.mark.asyncio
async def test_unknown_role_is_denied_before_target_lookup():
    backend = Backend()
    api = make_api(backend)
    nobody = User(id="x1", name="Nobody", email="nobody@example.com", role="guest")

    with pytest.raises(PermissionDenied):
        await RequestContainer(api, nobody, make_settings()).update({"id": "r1", "title": "Mine now"})
    with pytest.raises(PermissionDenied):
        await UserContainer(api, nobody, make_settings()).update({"id": "u1", "name": "Renamed"})
    with pytest.raises(PermissionDenied):
        await NotificationContainer(api, nobody, make_settings()).mark_as_read("n1")

    assert backend.calls == []
