import json
import logging
import tempfile
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import pytest
from starlette.testclient import TestClient

from agentdesk.app_logging import JsonFormatter, _scrub, account_from_path, init_logging


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


@pytest.fixture
def log_dir(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("LOG_DIR", tmpdir)
        yield Path(tmpdir)


def test_timed_rotating_handler_configuration(log_dir, monkeypatch):
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers("agentdesk")
    access_logger = _clear_handlers("uvicorn.access")

    init_logging()

    app_handler = next(
        h for h in app_logger.handlers if isinstance(h, TimedRotatingFileHandler)
    )
    assert app_handler.when == "MIDNIGHT"
    assert app_handler.backupCount == 5

    access_handler = next(
        h for h in access_logger.handlers if isinstance(h, TimedRotatingFileHandler)
    )
    assert access_handler.when == "MIDNIGHT"
    assert access_handler.backupCount == 5

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_log_files_and_redaction(log_dir, app_factory):
    _clear_handlers("agentdesk")
    _clear_handlers("uvicorn.access")
    app = app_factory(log_dir, log_request_bodies=True)

    module_logger = logging.getLogger("agentdesk.routing.service")
    module_logger.info("routed conversation 7")

    with TestClient(app) as client:
        resp = client.post(
            "/echo",
            json={"api_key": "sk-secret", "value": 1},
            headers={"Authorization": "Bearer secret", "X-Request-Id": "req-1"},
        )
        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "req-1"

    for logger in (logging.getLogger("agentdesk"), logging.getLogger("uvicorn.access")):
        for handler in logger.handlers:
            handler.flush()

    app_log = log_dir / "app.log"
    access_log = log_dir / "access.log"

    assert "routed conversation 7" in app_log.read_text()

    access_line = access_log.read_text().splitlines()[-1]
    payload = access_line.split(": ", 1)[1]
    data = json.loads(payload)
    assert data["request_id"] == "req-1"
    assert data["account_id"] is None
    assert "client_ip" not in data
    assert data["headers"]["authorization"] == "***"
    assert data["body"]["api_key"] == "***"
    assert data["body"]["value"] == 1

    _clear_handlers("agentdesk")
    _clear_handlers("uvicorn.access")


def test_scrub_handles_nested_structures():
    scrubbed = _scrub({"items": [{"token": "t"}, {"x-api-key": "k", "ok": True}]})

    assert scrubbed == {"items": [{"token": "***"}, {"x-api-key": "***", "ok": True}]}


def test_json_formatter_includes_logger_name():
    record = logging.LogRecord("agentdesk.providers", logging.ERROR, __file__, 1, "vendor %s", ("down",), None)

    data = json.loads(JsonFormatter().format(record))

    assert data == {
        "level": "ERROR",
        "time": data["time"],
        "logger": "agentdesk.providers",
        "message": "vendor down",
    }


@pytest.mark.parametrize(
    "path, account_id",
    [
        ("/api/accounts/42/routing/analytics", 42),
        ("/api/accounts/7", 7),
        ("/api/accounts/x/agents", None),
        ("/api/health", None),
    ],
)
def test_account_from_path(path, account_id):
    assert account_from_path(path) == account_id


def test_access_line_is_tagged_with_the_account(log_dir, app_factory):
    _clear_handlers("agentdesk")
    _clear_handlers("uvicorn.access")
    app = app_factory(log_dir)

    @app.put("/api/accounts/{account_id}/ai/providers/{provider}")
    async def configure(account_id: int, provider: str):
        return {"provider": provider}

    with TestClient(app) as client:
        client.put("/api/accounts/3/ai/providers/openai", json={"api_key": "sk-live"})
        client.get("/api/health")

    for handler in logging.getLogger("uvicorn.access").handlers:
        handler.flush()

    lines = (log_dir / "access.log").read_text().splitlines()
    assert len(lines) == 1
    data = json.loads(lines[0].split(": ", 1)[1])
    assert (data["account_id"], data["status"]) == (3, 200)
    assert "body" not in data
    assert "sk-live" not in lines[0]

    _clear_handlers("agentdesk")
    _clear_handlers("uvicorn.access")
