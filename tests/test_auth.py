"""Tests for registration, login, token verification and role checks."""

from datetime import timedelta
from types import SimpleNamespace

from flask_jwt_extended import create_access_token, decode_token

import accounts
from tests.conftest import DEFAULT_PASSWORD
from models import db, User


class TestRegister:
    """Tests for POST /auth/register."""

    def test_register_returns_user_and_token(self, app, client):
        response = client.post(
            "/auth/register",
            json={
                "email": "alice@example.com",
                "username": "alice",
                "password": DEFAULT_PASSWORD,
                "firstName": "Alice",
                "lastName": "Liddell",
            },
        )

        assert response.status_code == 201
        body = response.get_json()
        assert body["user"]["username"] == "alice"
        assert body["user"]["email"] == "alice@example.com"
        assert body["user"]["firstName"] == "Alice"
        assert body["user"]["role"] == "User"
        assert "password" not in body["user"]

        with app.app_context():
            claims = decode_token(body["token"])
        assert int(claims["sub"]) == body["user"]["id"]
        assert claims["username"] == "alice"
        assert claims["role"] == "User"

    def test_register_with_phone_only(self, client):
        response = client.post(
            "/auth/register",
            json={"phoneNumber": "+12345678901", "username": "phoneonly", "password": DEFAULT_PASSWORD},
        )

        assert response.status_code == 201
        assert response.get_json()["user"]["phoneNumber"] == "+12345678901"
        assert response.get_json()["user"]["email"] is None

    def test_password_is_stored_hashed(self, app, register):
        account = register(username="hashed")

        with app.app_context():
            user = db.session.get(User, account["user"]["id"])
            assert user.password != DEFAULT_PASSWORD
            assert user.password.startswith("$2")

    def test_requires_email_or_phone(self, client):
        response = client.post("/auth/register", json={"username": "nocontact", "password": DEFAULT_PASSWORD})

        assert response.status_code == 400
        assert response.get_json()["message"] == "Either email or phone number must be provided"

    def test_duplicate_username(self, client, register):
        register(username="taken", email="first@example.com")

        response = client.post(
            "/auth/register",
            json={"username": "taken", "email": "second@example.com", "password": DEFAULT_PASSWORD},
        )

        assert response.status_code == 400
        assert response.get_json()["message"] == "Username already in use"

    def test_duplicate_email(self, client, register):
        register(username="first", email="same@example.com")

        response = client.post(
            "/auth/register",
            json={"username": "second", "email": "same@example.com", "password": DEFAULT_PASSWORD},
        )

        assert response.status_code == 400
        assert response.get_json()["message"] == "Email already in use"

    def test_duplicate_phone_number(self, client, register):
        register(username="first", phoneNumber="+12345678901")

        response = client.post(
            "/auth/register",
            json={"username": "second", "phoneNumber": "+12345678901", "password": DEFAULT_PASSWORD},
        )

        assert response.status_code == 400
        assert response.get_json()["message"] == "Phone number already in use"

    def test_unique_constraint_is_final_arbiter(self, client, register, monkeypatch):
        """A duplicate that slips past the pre-check is still reported as in use."""
        register(username="racer")
        monkeypatch.setattr(accounts, "find_duplicate_message", lambda *args, **kwargs: None)

        response = client.post(
            "/auth/register",
            json={"username": "racer", "email": "other@example.com", "password": DEFAULT_PASSWORD},
        )

        assert response.status_code == 400
        assert response.get_json()["message"] == "Username already in use"

    def test_validation_errors_are_listed_per_field(self, client):
        response = client.post(
            "/auth/register",
            json={"email": "not-an-email", "username": "ab", "password": "lowercase1"},
        )

        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "validation_error"
        assert isinstance(body["message"], list)
        assert set(body["details"]) == {"email", "username", "password"}
        assert "password: Password must contain at least one uppercase and one lowercase letter" in body["message"]

    def test_unknown_field_is_rejected(self, client):
        response = client.post(
            "/auth/register",
            json={"email": "x@example.com", "username": "sneaky", "password": DEFAULT_PASSWORD, "role": "Admin"},
        )

        assert response.status_code == 400
        assert "role" in response.get_json()["details"]

    def test_body_must_be_json(self, client):
        response = client.post("/auth/register", data="username=x", content_type="text/plain")

        assert response.status_code == 400
        assert response.get_json()["message"] == "Request body must be JSON"


class TestLogin:
    """Tests for POST /auth/login."""

    def test_login_after_register(self, app, client, register):
        account = register(username="bob")

        response = client.post("/auth/login", json={"username": "bob", "password": DEFAULT_PASSWORD})

        assert response.status_code == 200
        body = response.get_json()
        assert body["user"]["id"] == account["user"]["id"]
        assert "password" not in body["user"]
        with app.app_context():
            assert int(decode_token(body["token"])["sub"]) == account["user"]["id"]

    def test_wrong_password_and_unknown_user_look_the_same(self, client, register):
        register(username="carol")

        wrong_password = client.post("/auth/login", json={"username": "carol", "password": "WrongPass123"})
        unknown_user = client.post("/auth/login", json={"username": "nobody", "password": DEFAULT_PASSWORD})

        assert wrong_password.status_code == 401
        assert unknown_user.status_code == 401
        assert wrong_password.get_json()["message"] == "Invalid credentials"
        assert unknown_user.get_json() == wrong_password.get_json()

    def test_short_password_is_a_validation_error(self, client):
        response = client.post("/auth/login", json={"username": "carol", "password": "short"})

        assert response.status_code == 400


class TestTokenVerification:
    """Tests for token checks on protected routes."""

    def test_missing_token(self, client):
        response = client.get("/protected")

        assert response.status_code == 401
        assert response.get_json()["error"] == "authorization_required"

    def test_invalid_token(self, client, auth_headers):
        response = client.get("/protected", headers=auth_headers("not.a.token"))

        assert response.status_code == 401

    def test_expired_token(self, app, client, register, auth_headers):
        account = register()
        with app.app_context():
            token = create_access_token(
                identity=str(account["user"]["id"]), expires_delta=timedelta(seconds=-30)
            )

        response = client.get("/protected", headers=auth_headers(token))

        assert response.status_code == 401
        assert response.get_json()["error"] == "token_expired"

    def test_token_signed_with_other_secret(self, app, client, register, auth_headers):
        account = register()
        original_secret = app.config["JWT_SECRET_KEY"]
        with app.app_context():
            app.config["JWT_SECRET_KEY"] = "another-secret-key-that-is-long-enough"
            token = create_access_token(identity=str(account["user"]["id"]))
            app.config["JWT_SECRET_KEY"] = original_secret

        response = client.get("/protected", headers=auth_headers(token))

        assert response.status_code == 401

    def test_token_of_deleted_account(self, client, register, admin, auth_headers):
        account = register()
        client.delete(f"/users/{account['user']['id']}", headers=auth_headers(admin["token"]))

        response = client.get("/protected", headers=auth_headers(account["token"]))

        assert response.status_code == 401
        assert response.get_json()["message"] == "User not found"

    def test_valid_token(self, client, register, auth_headers):
        account = register(username="dave")

        response = client.get("/protected", headers=auth_headers(account["token"]))

        assert response.status_code == 200
        assert response.get_json()["user"] == {"id": account["user"]["id"], "username": "dave", "role": "User"}


class TestIntegrityErrorTranslation:
    """Tests for mapping unique constraint errors from different databases."""

    def test_sqlite_message(self):
        error = SimpleNamespace(orig="UNIQUE constraint failed: users.email")
        assert accounts.translate_integrity_error(error) == accounts.EMAIL_IN_USE

    def test_postgres_message(self):
        error = SimpleNamespace(
            orig='duplicate key value violates unique constraint "users_phone_number_key"'
        )
        assert accounts.translate_integrity_error(error) == accounts.PHONE_IN_USE

    def test_mysql_message(self):
        error = SimpleNamespace(orig="Duplicate entry 'bob' for key 'users.users_username_key'")
        assert accounts.translate_integrity_error(error) == accounts.USERNAME_IN_USE

    def test_postgres_detail_line_is_ignored(self):
        error = SimpleNamespace(
            orig='duplicate key value violates unique constraint "users_username_key"\n'
                 "DETAIL:  Key (username)=(emailfan) already exists."
        )
        assert accounts.translate_integrity_error(error) == accounts.USERNAME_IN_USE

    def test_mysql_duplicate_value_is_ignored(self):
        error = SimpleNamespace(orig="Duplicate entry 'users.email' for key 'users.username'")
        assert accounts.translate_integrity_error(error) == accounts.USERNAME_IN_USE

    def test_unrelated_error(self):
        error = SimpleNamespace(orig="NOT NULL constraint failed: tasks.name")
        assert accounts.translate_integrity_error(error) is None
