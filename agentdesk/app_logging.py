"""Application and access logging for AgentDesk.

Every module logs through the ``agentdesk`` logger, written to ``app.log``.
Requests are summarised on ``uvicorn.access`` into ``access.log``, one JSON
line each, tagged with the account the URL addresses so routing and provider
traffic can be grepped per tenant. Vendor API keys posted to the provider
configuration endpoints are masked before anything is written.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from logging.handlers import TimedRotatingFileHandler
from uuid import uuid4

from fastapi import FastAPI, Request

LOGGER_NAME = "agentdesk"
ACCESS_LOGGER_NAME = "uvicorn.access"

SKIP_PATHS = frozenset({"/api/health", "/api/metrics"})

SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "password",
        "token",
        "api_key",
        "x-api-key",
        "x-goog-api-key",
    }
)

_ACCOUNT_PATH = re.compile(r"^/api/accounts/(\d+)(?:/|$)")


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def _scrub(data: object) -> object:
    """Recursively mask credentials in dictionaries and lists."""

    if isinstance(data, dict):
        return {k: ("***" if k.lower() in SENSITIVE_FIELDS else _scrub(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [_scrub(v) for v in data]
    return data


def account_from_path(path: str) -> int | None:
    match = _ACCOUNT_PATH.match(path)
    return int(match.group(1)) if match else None


def _install_access_logging(app: FastAPI, log_bodies: bool) -> None:
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        path = request.url.path
        if path in SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        body = None
        if log_bodies:
            raw = await request.body()
            if raw:
                try:
                    body = _scrub(json.loads(raw))
                except ValueError:
                    body = raw.decode("utf-8", errors="replace")

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        entry = {
            "request_id": request_id,
            "account_id": account_from_path(path),
            "method": request.method,
            "path": path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body
        access_logger.info(json.dumps(entry, default=str))
        return response


def _file_handler(log_dir: str, filename: str, formatter: logging.Formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(
        os.path.join(log_dir, filename),
        when="midnight",
        backupCount=int(os.getenv("LOG_RETENTION_DAYS", "7")),
        utc=os.getenv("LOG_ROTATE_UTC", "false").lower() == "true",
    )
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Initialise application and access loggers."""

    log_dir = os.getenv("LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    if os.getenv("LOG_JSON", "false").lower() == "true":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")

    app_logger = logging.getLogger(LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(_file_handler(log_dir, "app.log", formatter))
    app_logger.setLevel(level)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_file_handler(log_dir, "access.log", formatter))
    access_logger.setLevel(level)

    if app is not None:
        _install_access_logging(app, os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true")
