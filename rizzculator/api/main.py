"""
rizzculator.api.main — FastAPI application entry point
========================================================

Run with::

    uvicorn rizzculator.api.main:app --reload --port 8000

or ``python -m rizzculator``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from rizzculator.api.deps import get_config, get_engine  # noqa: E402
from rizzculator.api.rate_limit import SlidingWindowRateLimiter  # noqa: E402
from rizzculator.api.routes.ai import router as ai_router  # noqa: E402
from rizzculator.api.routes.messages import router as messages_router  # noqa: E402
from rizzculator.api.routes.public import router as public_router  # noqa: E402
from rizzculator.api.routes.social import router as social_router  # noqa: E402
from rizzculator.database.engine import init_db  # noqa: E402
from rizzculator.engine.broker import InMemoryBroker, PgNotifyBridge  # noqa: E402
from rizzculator.logging_setup import configure_logging  # noqa: E402
from rizzculator.services.ai_gateway import AIGateway  # noqa: E402
from rizzculator.services.messaging_service import PresenceRegistry  # noqa: E402
from rizzculator.services.scan_service import ScanRequestTracker  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: engine, change feed, AI client, limiter."""
    cfg = get_config()
    configure_logging(cfg.log_level)

    engine = get_engine()
    init_db(engine)

    broker = InMemoryBroker()
    bridge = None
    if engine.dialect.name == "postgresql":
        bridge = PgNotifyBridge(engine, broker)
        bridge.start()

    gateway = AIGateway.from_env(cfg)
    if not gateway.configured:
        logger.warning("GROQ_API_KEY not set — AI requests will fail, scans use the baseline")

    app.state.broker = broker
    app.state.gateway = gateway
    app.state.rate_limiter = SlidingWindowRateLimiter(
        cfg.rate_limit_requests, cfg.rate_limit_window_seconds,
    )
    app.state.scan_tracker = ScanRequestTracker()
    app.state.presence = PresenceRegistry()
    logger.info("%s API started — engine ready (%s)", cfg.app_name, engine.url.database)
    yield

    if bridge is not None:
        bridge.stop()
    await gateway.aclose()
    logger.info("%s API shutting down", cfg.app_name)


app = FastAPI(
    title="Rizzculator API",
    version="1.0.0",
    lifespan=lifespan,
)

# Browser clients call the AI endpoints directly from any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(ai_router, prefix="/api")
app.include_router(public_router, prefix="/api")
app.include_router(social_router, prefix="/api")
app.include_router(messages_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
