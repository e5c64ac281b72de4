"""hookwatch - Main application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from hookwatch import __version__
from hookwatch.config import get_settings
from hookwatch.deliveries import router as deliveries_router
from hookwatch.deliveries.config import MonitorConfigLoader
from hookwatch.metrics import router as metrics_router
from hookwatch.rate_limit import limiter
from hookwatch.valkey import close_valkey

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    MonitorConfigLoader.load()
    if not settings.TESTING and not MonitorConfigLoader.resolve_token():
        logger.warning("Upstream API token is not configured; monitor requests will fail")
    yield
    # Cleanup on shutdown
    await close_valkey()


app = FastAPI(
    title="hookwatch",
    description="""
## Webhook Delivery Monitor

hookwatch polls the Sanity hooks API, groups delivery attempts by message and
reports per-message success rates.

### Features

- **Bounded fetching** - Parallel, time-windowed, offset-capped page requests
- **Incremental merging** - Load older windows without reprocessing loaded data
- **Document correlation** - Document ids decoded from message payloads
- **Large payload detection** - Flags messages rejected as oversized

### Endpoints

1. `GET /api/messages` lists per-message aggregates (search, status, sort, paging)
2. `POST /api/messages/load-older` merges the previous time window
3. `GET /api/webhook-attempts` and `GET /api/webhook-messages` proxy the raw upstream data
    """,
    version=__version__,
    lifespan=lifespan,
    license_info={
        "name": "MIT",
        "url": "https://opensource.org/licenses/MIT",
    },
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

API_PREFIX = "/api"
app.include_router(deliveries_router, prefix=API_PREFIX)

# Metrics at root level (for Prometheus scraping)
app.include_router(metrics_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "hookwatch",
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
