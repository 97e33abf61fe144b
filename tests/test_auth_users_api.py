from conftest import PASSWORD, act_as, action, register


def test_register_signs_in_and_hides_hash(client):
    user = register(client, "manager", name="Mona")
    assert user["role"] == "manager"
    assert "password_hash" not in user

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["id"] == user["id"]


def test_register_rejects_duplicate_email(client):
    user = register(client)
    resp = client.post(
        "/api/auth/register",
        json={"email": user["email"], "name": "Twin", "password": PASSWORD},
    )
    assert resp.status_code == 400


def test_login_and_logout(client):
    user = register(client)
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401

    bad = client.post("/api/auth/login", json={"email": user["email"], "password": "wrong"})
    assert bad.status_code == 400

    act_as(client, user)
    assert client.get("/api/auth/me").json()["email"] == user["email"]

    assert client.post("/api/auth/logout").status_code == 200
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


def test_tampered_cookie_is_ignored(client):
    register(client)
    client.cookies.clear()
    resp = client.get("/api/auth/me", headers={"Cookie": "session=not-a-real-token"})
    assert resp.status_code == 401


def test_list_users_by_role(client):
    register(client, "admin", name="Ada")
    register(client, "manager", name="Max")
    register(client, name="Uma")

    everyone = action(client, "users", "getAll").json()
    assert [u["name"] for u in everyone] == ["Ada", "Max", "Uma"]
    assert all("password_hash" not in u for u in everyone)

    managers = action(client, "users", "getAll", role="MANAGER").json()
    assert [u["name"] for u in managers] == ["Max"]


def test_only_managers_create_users(client):
    register(client, "admin")
    payload = {"email": "new.hire@example.com", "name": "New Hire", "password": "pw", "role": "user"}
    assert action(client, "users", "create", **payload).status_code == 403

    register(client, "manager")
    resp = action(client, "users", "create", **payload)
    assert resp.status_code == 201
    assert resp.json()["email"] == "new.hire@example.com"
    assert action(client, "users", "create", **payload).status_code == 400


def test_users_update_own_profile_but_not_role(client):
    user = register(client, name="Uma")
    resp = action(client, "users", "update", id=user["id"], department="Finance")
    assert resp.status_code == 200
    assert resp.json()["department"] == "Finance"

    assert action(client, "users", "update", id=user["id"], role="admin").status_code == 403

    other = register(client)
    act_as(client, user)
    assert action(client, "users", "update", id=other["id"], name="Hacked").status_code == 403


def test_manager_changes_roles(client):
    user = register(client)
    register(client, "manager")
    resp = action(client, "users", "update", id=user["id"], role="admin")
    assert resp.status_code == 200
    assert resp.json()["role"] == "admin"


def test_users_cannot_be_deleted(client):
    user = register(client, "manager")
    assert action(client, "users", "delete", id=user["id"]).status_code == 400


def test_root_reports_api_version(client):
    resp = client.get("/")
    assert resp.json()["api_version"] == "1"
    assert resp.headers["X-API-Version"] == "1"
