"""FastAPI application wiring for AgentDesk.

Bootstraps the HTTP API:

- Loads ``.env`` and configures application and access logging.
- Mounts the routing, agent and provider routers under
  ``/api/accounts/{account_id}``.
- Exposes Prometheus metrics at ``/api/metrics`` plus health and version
  probes.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .routers import agents, providers, routing

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(title="AgentDesk", version=__version__)
init_logging(app)
# Optional CORS for the dashboard
dashboard_origins = os.getenv("DASHBOARD_ORIGINS")
if dashboard_origins:
    origins = [o.strip() for o in dashboard_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(routing.router)
app.include_router(agents.router)
app.include_router(providers.router)

# Expose Prometheus metrics
Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    """Return version information for the application."""
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
