"""Shared helpers for the API routers."""

from __future__ import annotations

import logging
import os

import psycopg
from fastapi import HTTPException, status

from ..errors import (
    AgentAlreadyInstalledError,
    AssignmentInvariantError,
    FeedbackAlreadyRecordedError,
    NotFoundError,
    PremiumRequiredError,
)
from ..providers.errors import (
    ProviderAuthenticationError,
    ProviderConfigurationError,
    ProviderError,
    ProviderRateLimitError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AgentAlreadyInstalledError, status.HTTP_409_CONFLICT),
    (FeedbackAlreadyRecordedError, status.HTTP_409_CONFLICT),
    (AssignmentInvariantError, status.HTTP_409_CONFLICT),
    (PremiumRequiredError, status.HTTP_402_PAYMENT_REQUIRED),
    (ProviderConfigurationError, status.HTTP_400_BAD_REQUEST),
    (ProviderAuthenticationError, status.HTTP_502_BAD_GATEWAY),
    (ProviderRateLimitError, status.HTTP_429_TOO_MANY_REQUESTS),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (ValueError, status.HTTP_400_BAD_REQUEST),
)


def get_conn() -> psycopg.Connection:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise HTTPException(status_code=500, detail="DATABASE_URL not configured")
    try:
        return psycopg.connect(database_url)
    except Exception as exc:  # pragma: no cover
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def http_error(exc: Exception) -> HTTPException:
    """Translate a domain error into the matching ``HTTPException``."""

    if isinstance(exc, HTTPException):
        return exc
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    logger.exception("Unhandled error while serving request")
    return HTTPException(status_code=500, detail=str(exc))
