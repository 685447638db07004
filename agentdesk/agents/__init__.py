"""Installed agents, the template marketplace and agent replies."""

from . import schemas
from .service import AgentService, create_postgres_service

__all__ = [
    "AgentService",
    "create_postgres_service",
    "schemas",
]
