import datetime
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from datathon.api import admin, leaderboard, prometheus_metrics, submissions
from datathon.api.deps import answer_key_store
from datathon.core.config import settings
from datathon.core.logging_config import setup_logging
from datathon.core.metrics import init_fastapi_instrumentation
from datathon.db.session import engine, init_db
from datathon.services.leaderboard import leaderboard_cache

# Configure logging (JSON)
setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Datathon Scoring",
    description="API for scoring prediction tables and ranking competitors",
    version="1.0.0",
)

try:
    init_fastapi_instrumentation(app)
except Exception as _e:
    logger.exception("Prometheus metrics init failed", extra={"error": str(_e)})

_cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if "*" in _cors_origins else _cors_origins,
    allow_credentials=False if "*" in _cors_origins else True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("Database initialized successfully")

    # Rebuild the in-memory answer key from the stored record, if any
    if answer_key_store.load():
        logger.info("Answer key loaded at startup", extra={"stage": "answer_key"})
    else:
        logger.warning("No answer key loaded at startup", extra={"stage": "answer_key"})

    if not leaderboard_cache.connect():
        logger.info("Will compute leaderboard from the database on every query")


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    request_logger = logging.getLogger("request")
    start = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    client = request.client.host if request.client else "-"
    try:
        response = await call_next(request)
    except Exception:
        request_logger.exception(
            "request_failed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": 500,
                "duration_ms": int((time.perf_counter() - start) * 1000),
                "client": client,
            },
        )
        raise
    request_logger.info(
        "request_completed",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int((time.perf_counter() - start) * 1000),
            "client": client,
        },
    )
    response.headers["X-Request-ID"] = request_id
    return response


# Include API routes
app.include_router(submissions.router, prefix="/api/submissions", tags=["submissions"])
app.include_router(leaderboard.router, prefix="/api/leaderboard", tags=["leaderboard"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
app.include_router(prometheus_metrics.router, tags=["metrics"])


@app.get("/health")
def health_check():
    """Liveness + readiness: database and Redis.

    Redis reports "disabled" when no REDIS_URL is configured; that does not
    make the service unhealthy.
    """
    statuses: dict[str, str] = {}
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        statuses["database"] = "ok"
    except Exception as e:
        statuses["database"] = f"error: {e}"
    statuses["redis"] = leaderboard_cache.ping()
    statuses["answer_key"] = "loaded" if answer_key_store.is_loaded() else "not_loaded"

    healthy = statuses["database"] == "ok" and statuses["redis"] in ("ok", "disabled")
    timestamp = datetime.datetime.now(datetime.timezone.utc).isoformat()
    if not healthy:
        logger.error("health_check_failed", extra={"status": "unhealthy", "components": statuses})
    return {
        "status": "healthy" if healthy else "unhealthy",
        "components": statuses,
        "timestamp": timestamp,
    }
