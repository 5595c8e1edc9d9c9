"""Tests for admin authentication endpoints."""
import pytest
from werkzeug.security import generate_password_hash

from app.loyalty import create_app
from app.loyalty.db import session_scope
from app.loyalty.models import Admin, AuditEvent, Base


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(Admin(username="admin", password_hash=generate_password_hash("secret123")))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, username="admin", password="secret123"):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def test_login_returns_token(client):
    r = _login(client)
    assert r.status_code == 200
    assert r.json["username"] == "admin"
    assert r.json["token"]


def test_login_rejects_bad_password(client, app):
    r = _login(client, password="wrong")
    assert r.status_code == 401
    assert r.json["message"] == "Invalid credentials"

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert "auth.login_failed" in actions


def test_login_rejects_unknown_user(client):
    r = _login(client, username="nobody")
    assert r.status_code == 401


def test_verify_with_token(client):
    token = _login(client).json["token"]
    r = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json["username"] == "admin"
    assert "token" not in r.json


def test_verify_rejects_tampered_token(client):
    token = _login(client).json["token"]
    r = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}x"})
    assert r.status_code == 401
    assert r.json["message"] == "Not authorized, token failed"


def test_verify_without_token(client):
    r = client.get("/api/auth/verify")
    assert r.status_code == 401
    assert r.json["message"] == "Not authorized, no token"


def test_signup_creates_admin(client):
    r = client.post("/api/auth/signup", json={"username": "owner", "password": "hunter22"})
    assert r.status_code == 201
    assert r.json["username"] == "owner"

    r = _login(client, username="owner", password="hunter22")
    assert r.status_code == 200


@pytest.mark.parametrize(
    "body, message",
    [
        ({"username": "", "password": "hunter22"}, "Please provide username and password"),
        ({"username": "owner"}, "Please provide username and password"),
        ({"username": "owner", "password": "abc"}, "Password must be at least 6 characters"),
        ({"username": "admin", "password": "hunter22"}, "Username already exists"),
    ],
)
def test_signup_validation(client, body, message):
    r = client.post("/api/auth/signup", json=body)
    assert r.status_code == 400
    assert r.json["message"] == message


def test_update_credentials_changes_password(client):
    token = _login(client).json["token"]
    r = client.put(
        "/api/auth/update-credentials",
        json={"currentPassword": "secret123", "newPassword": "better456"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 200
    assert r.json["token"]

    assert _login(client).status_code == 401
    assert _login(client, password="better456").status_code == 200


def test_update_credentials_requires_current_password(client):
    token = _login(client).json["token"]
    r = client.put(
        "/api/auth/update-credentials",
        json={"currentPassword": "nope", "newUsername": "boss"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 401
    assert r.json["message"] == "Current password is incorrect"


def test_update_credentials_nothing_to_update(client):
    token = _login(client).json["token"]
    r = client.put(
        "/api/auth/update-credentials",
        json={"currentPassword": "secret123"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 400
    assert r.json["message"] == "Nothing to update"
