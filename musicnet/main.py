"""
MusicNet API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Create tables + store functions if not present (PostgreSQL)
  3. Initialise MinIO client & bucket
  4. Build the SocialService shared by all requests
  5. Expose Prometheus /metrics, /health (liveness) and /ready (store ping)
"""
import logging

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from prometheus_client import make_asgi_app

from musicnet.clients.object_storage import ObjectStorage
from musicnet.config import settings
from musicnet.database import AsyncSessionLocal, engine, init_db
from musicnet.dependencies import get_service
from musicnet.error_handlers import register_error_handlers
from musicnet.errors import ObjectStorageError
from musicnet.operations import SocialService
from musicnet.routers import bands, feed, follows, posts, users
from musicnet.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing(engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of external connections."""
    logger.info("Starting MusicNet API (env=%s)", settings.environment)

    await init_db()

    storage = ObjectStorage.from_settings()
    try:
        storage.ensure_bucket()         # blocking boto3 call
    except ObjectStorageError as exc:
        # media uploads fail with S3_ERROR until MinIO is reachable
        logger.warning("MinIO unavailable at startup: %s", exc.details)

    app.state.service = SocialService(AsyncSessionLocal, settings, storage=storage)

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await engine.dispose()


app = FastAPI(
    title="MusicNet API",
    description=(
        "Social network for musicians and bands: nearby discovery, "
        "follow graph feeds and engagement."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(bands.router, prefix="/bands", tags=["Bands"])
app.include_router(follows.router, prefix="/follows", tags=["Follows"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(feed.router, prefix="/feed", tags=["Feed"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}


@app.get("/ready", tags=["Health"])
async def ready(service: SocialService = Depends(get_service)):
    """Readiness: 200 once the store answers, 503 (DATABASE_ERROR) otherwise."""
    await service.check_ready()
    return {"status": "ready", "service": settings.service_name}
