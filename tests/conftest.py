"""Shared fixtures: app on in-memory SQLite, a temporary upload folder, account helpers."""

import io
import itertools

import pytest

from app import create_app
from config import TestingConfig
from models import db, User, UserRole

DEFAULT_PASSWORD = "Password123"


@pytest.fixture
def app(tmp_path):
    """Create a fresh app and database for each test."""

    class Config(TestingConfig):
        UPLOAD_FOLDER = str(tmp_path / "uploads")

    app = create_app(Config)
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    def _headers(token):
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def register(client):
    """Register an account through the API and return the {user, token} body."""
    counter = itertools.count(1)

    def _register(username=None, password=DEFAULT_PASSWORD, **extra):
        username = username or f"user{next(counter)}"
        payload = {"username": username, "password": password}
        if "email" not in extra and "phoneNumber" not in extra:
            payload["email"] = f"{username}@example.com"
        payload.update(extra)

        response = client.post("/auth/register", json=payload)
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    return _register


@pytest.fixture
def make_admin(app):
    """Promote an already registered account to Admin directly in the database."""

    def _make_admin(user_id):
        with app.app_context():
            user = db.session.get(User, user_id)
            user.role = UserRole.ADMIN
            db.session.commit()

    return _make_admin


@pytest.fixture
def admin(register, make_admin):
    account = register(username="admin")
    make_admin(account["user"]["id"])
    return account


@pytest.fixture
def upload():
    """Build a multipart body with a single `file` field."""

    def _upload(content=b"file content", filename="notes.txt"):
        return {"file": (io.BytesIO(content), filename)}

    return _upload
