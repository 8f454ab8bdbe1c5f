"""Tests for app-level routes, error handlers and helpers."""

import importlib
import logging
import os

import pytest

import config
from app import create_app
from config import Config, ProductionConfig, TestingConfig
from errors import NotFoundError, RequestValidationError, flatten_messages


class TestCoreRoutes:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"
        assert response.get_json()["database"] == "connected"

    def test_home_lists_endpoints(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.get_json()
        assert body["version"] == "1.0.0"
        assert body["endpoints"]["tasks"]["attachment"]["path"] == "/tasks/:id/attachment"

    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestErrorHandlers:

    def test_unknown_route_is_json(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.get_json() == {
            "error": "not_found",
            "message": "The requested resource does not exist",
            "status": 404,
        }

    def test_method_not_allowed(self, client):
        response = client.put("/tasks")

        assert response.status_code == 405
        assert response.get_json()["error"] == "method_not_allowed"

    def test_unexpected_error_hides_details(self, app, client):
        @app.route("/boom")
        def boom():
            raise RuntimeError("secret internals")

        response = client.get("/boom")

        assert response.status_code == 500
        assert "secret internals" not in response.get_data(as_text=True)
        assert response.get_json()["error"] == "unexpected_error"


class TestErrors:
    """Tests for the APIError hierarchy."""

    def test_default_message(self):
        error = NotFoundError()

        assert error.to_dict() == {
            "error": "not_found",
            "message": "The requested resource does not exist",
            "status": 404,
        }

    def test_validation_error_keeps_details(self):
        error = RequestValidationError({"name": ["Task name is required"]})

        payload = error.to_dict()
        assert payload["status"] == 400
        assert payload["message"] == ["name: Task name is required"]
        assert payload["details"] == {"name": ["Task name is required"]}

    def test_flatten_nested_messages(self):
        details = {"user": {"email": ["Invalid"], "phoneNumber": ["Too short", "Not digits"]}}

        assert flatten_messages(details) == [
            "user.email: Invalid",
            "user.phoneNumber: Too short",
            "user.phoneNumber: Not digits",
        ]

    def test_flatten_schema_level_message(self):
        assert flatten_messages(["Invalid input type."]) == ["Invalid input type."]


class TestConfig:

    def test_sqlite_has_no_pool_options(self, monkeypatch):
        monkeypatch.setattr(Config, "SQLALCHEMY_DATABASE_URI", "sqlite:///tasks.db")

        assert Config.engine_options() == {}

    def test_production_requires_secrets(self, monkeypatch):
        for name in ("SECRET_KEY", "JWT_SECRET_KEY", "DATABASE_URL"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ValueError):
            ProductionConfig.validate()

    def test_rate_limit_storage_defaults_to_memory_in_production(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setenv("FLASK_ENV", "production")

        try:
            reloaded = importlib.reload(config)
            assert reloaded.ProductionConfig.RATELIMIT_STORAGE_URI == "memory://"
        finally:
            monkeypatch.undo()
            importlib.reload(config)


class TestLogging:

    @pytest.fixture
    def file_logging_config(self, tmp_path):
        class LoggingConfig(TestingConfig):
            TESTING = False
            LOG_DIR = str(tmp_path / "logs")
            UPLOAD_FOLDER = str(tmp_path / "uploads")

        root_level = logging.getLogger().level
        yield LoggingConfig

        logging.getLogger().setLevel(root_level)
        log_dir = os.path.abspath(LoggingConfig.LOG_DIR)
        for logger in (logging.getLogger(), logging.getLogger("app")):
            for handler in list(logger.handlers):
                if getattr(handler, "baseFilename", "").startswith(log_dir):
                    logger.removeHandler(handler)
                    handler.close()

    def test_file_handlers_are_attached_once(self, file_logging_config):
        create_app(file_logging_config)
        create_app(file_logging_config)

        log_dir = os.path.abspath(file_logging_config.LOG_DIR)
        attached = [
            handler.baseFilename
            for handler in logging.getLogger().handlers
            if getattr(handler, "baseFilename", "").startswith(log_dir)
        ]
        assert sorted(attached) == [
            os.path.join(log_dir, "app.log"),
            os.path.join(log_dir, "error.log"),
        ]
