"""
Shared fixtures.

Every test that takes `client` gets a fresh in-memory SQLite database: the app
lifespan runs Tortoise.init + generate_schemas + seeding on enter and closes
the connections on exit. Service coroutines run on the client's event loop
through `run`, so they share the app's ORM connection.
"""
import functools
import os

os.environ["DB_URL"] = "sqlite://:memory:"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "admin-pass-123"
os.environ["DEFAULT_RATES"] = "2024:36.50,2025:37.70,2026:39.00"

import pytest
from fastapi.testclient import TestClient

from main import app


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def run(client):
    def _run(fn, *args, **kwargs):
        return client.portal.call(functools.partial(fn, *args, **kwargs))
    return _run


@pytest.fixture
def login(client):
    def _login(username: str, password: str) -> dict:
        resp = client.post("/login/access-token", data={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return _login


@pytest.fixture
def admin_headers(login):
    return login("admin", "admin-pass-123")


@pytest.fixture
def make_user(client, admin_headers, login):
    def _make(username: str, role: str, password: str = "secret-pass-1") -> dict:
        resp = client.post(
            "/users",
            json={"username": username, "email": f"{username}@example.com", "password": password, "role": role},
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        return login(username, password)
    return _make


@pytest.fixture
def create_panel(client, admin_headers):
    def _create(codigo: str, fecha_alta: str, municipio: str = "Madrid", **extra) -> dict:
        resp = client.post(
            "/panels",
            json={"codigo": codigo, "municipio": municipio, "fecha_alta": fecha_alta, **extra},
            headers=admin_headers,
        )
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _create
