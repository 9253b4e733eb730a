import pytest
from fastapi.testclient import TestClient

from app import app
from core import dependencies
from core.database import engine, init_db
from models.base import Base


@pytest.fixture
def client():
    Base.metadata.drop_all(bind=engine)
    init_db(engine)
    with TestClient(app) as test_client:
        yield test_client


def _login(client, username="admin", password="admin123") -> dict:
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def _create_user(client, headers, **overrides):
    payload = {
        "username": "ada",
        "password": "analytical-engine",
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "departmentId": 1,
    }
    payload.update(overrides)
    return client.post("/api/users", json=payload, headers=headers)


def test_health_reports_cache_stats(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["cache"]["open"] is True
    assert body["search_enabled"] is True


def test_login_rejects_bad_password(client):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert response.status_code == 401


def test_me_returns_bootstrap_admin(client):
    response = client.get("/api/auth/me", headers=_login(client))
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["username"] == "admin"
    assert user["roles"] == ["ROLE_ADMIN"]
    assert user["departmentName"] == "Leadership"


def test_create_and_get_user(client):
    headers = _login(client)
    response = _create_user(client, headers)
    assert response.status_code == 200, response.text
    created = response.json()
    assert created["roles"] == ["ROLE_USER"]
    assert created["departmentId"] == 1
    assert "password" not in created

    fetched = client.get(f"/api/users/{created['id']}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json() == created


def test_get_requires_authentication(client):
    assert client.get("/api/users/1").status_code in (401, 403)


def test_get_unknown_user_is_404(client):
    response = client.get("/api/users/999", headers=_login(client))
    assert response.status_code == 404
    assert response.json()["detail"] == "User not found with id: 999"


def test_create_requires_admin(client):
    headers = _login(client)
    _create_user(client, headers)
    user_headers = _login(client, "ada", "analytical-engine")

    response = _create_user(client, user_headers, username="grace", email="grace@example.com")
    assert response.status_code == 403


def test_create_with_unknown_department_is_400(client):
    response = _create_user(client, _login(client), departmentId=99)
    assert response.status_code == 400


def test_duplicate_email_is_409(client):
    headers = _login(client)
    _create_user(client, headers)
    response = _create_user(client, headers, username="ada2")
    assert response.status_code == 409


def test_create_rejects_invalid_email(client):
    response = _create_user(client, _login(client), email="not-an-email")
    assert response.status_code == 422


def test_delete_admin_is_rejected(client):
    headers = _login(client)
    me = client.get("/api/auth/me", headers=headers).json()["user"]

    response = client.delete(f"/api/users/{me['id']}", headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot delete the admin user"


def test_delete_user(client):
    headers = _login(client)
    created = _create_user(client, headers).json()

    assert client.delete(f"/api/users/{created['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/users/{created['id']}", headers=headers).status_code == 404


def test_user_can_update_self_but_not_others_or_roles(client):
    admin_headers = _login(client)
    ada = _create_user(client, admin_headers).json()
    user_headers = _login(client, "ada", "analytical-engine")
    admin_id = client.get("/api/auth/me", headers=admin_headers).json()["user"]["id"]

    own = client.put(f"/api/users/{ada['id']}", json={"name": "Ada King"}, headers=user_headers)
    assert own.status_code == 200
    assert own.json()["name"] == "Ada King"

    other = client.put(f"/api/users/{admin_id}", json={"name": "Mallory"}, headers=user_headers)
    assert other.status_code == 403

    escalate = client.put(
        f"/api/users/{ada['id']}", json={"roles": ["ROLE_ADMIN"]}, headers=user_headers
    )
    assert escalate.status_code == 403


def test_update_accepts_nested_department(client):
    headers = _login(client)
    research = client.post(
        "/api/users/departments", json={"name": "Research"}, headers=headers
    ).json()
    ada = _create_user(client, headers).json()

    response = client.put(
        f"/api/users/{ada['id']}", json={"department": {"id": research["id"]}}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["departmentName"] == "Research"


def test_patch_roles(client):
    headers = _login(client)
    ada = _create_user(client, headers).json()

    response = client.patch(
        f"/api/users/{ada['id']}/roles", json={"roles": ["ROLE_ADMIN", "ROLE_USER"]}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["roles"] == ["ROLE_ADMIN", "ROLE_USER"]

    empty = client.patch(f"/api/users/{ada['id']}/roles", json={"roles": []}, headers=headers)
    assert empty.status_code == 422


def test_search_is_public_and_paged(client):
    headers = _login(client)
    ada = _create_user(client, headers).json()
    dependencies.get_index_worker().drain(timeout=5)

    listing = client.get("/api/users/search", params={"page": 0, "size": 5})
    assert listing.status_code == 200
    assert listing.json()["totalElements"] == 2

    found = client.get("/api/users/search", params={"query": "lovlace"})
    body = found.json()
    assert [u["id"] for u in body["content"]] == [ada["id"]]
    assert body["totalPages"] == 1


def test_paged_listing_and_departments(client):
    headers = _login(client)
    _create_user(client, headers)

    paged = client.get("/api/users/paged", params={"size": 1}, headers=headers).json()
    assert paged["totalElements"] == 2
    assert paged["totalPages"] == 2
    assert len(paged["content"]) == 1

    plain = client.get("/api/users", headers=headers).json()
    assert len(plain) == 2

    departments = client.get("/api/users/departments", headers=headers).json()
    assert [d["name"] for d in departments] == ["Leadership"]


def test_reindex_and_fuzzy_search(client):
    headers = _login(client)
    _create_user(client, headers)

    response = client.post("/api/users/reindex", headers=headers)
    assert response.status_code == 200
    assert response.json()["count"] == 2
    dependencies.get_index_worker().drain(timeout=5)

    docs = client.get("/api/users/fuzzy-search", params={"query": "ada"}, headers=headers).json()
    assert docs["content"][0]["email"] == "ada@example.com"
