"""
# Revision Scheduler API

FastAPI application entry point.

## Lifecycle

The `lifespan()` context manager connects to MongoDB and ensures indexes before
the app serves requests, and disconnects on shutdown. There are no background
tasks: rollover, reconciliation and archival run lazily inside requests.

## Wiring

- **Middleware**: CORS (origins from `CORS_ORIGINS`), request logging
- **Routers**: `/revision` command surface, `/health` probes
- **Metrics**: Prometheus instrumentation exposed at `/metrics`

Run with:

```bash
uvicorn revision_scheduler.main:app --host 127.0.0.1 --port 8000
```
"""

from contextlib import asynccontextmanager
import time

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.cors import CORSMiddleware
import uvicorn

from revision_scheduler import __version__
from revision_scheduler.config import settings
from revision_scheduler.database import db_manager
from revision_scheduler.managers.logging_manager import get_logger
from revision_scheduler.routes.health import router as health_router
from revision_scheduler.routes.revision import router as revision_router
from revision_scheduler.utils.logging_utils import (
    RequestLoggingMiddleware,
    log_application_lifecycle,
    log_error_with_context,
)

logger = get_logger(prefix="[Main]")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Connect to MongoDB and ensure indexes on startup; disconnect on shutdown.

    Raises:
        ServerSelectionTimeoutError: If MongoDB cannot be reached; the app does not start.
    """
    startup_start_time = time.time()
    log_application_lifecycle(
        "startup_initiated",
        {
            "app_name": "Revision Scheduler API",
            "version": __version__,
            "environment": "production" if settings.is_production else "development",
            "debug_mode": settings.DEBUG,
        },
    )

    db_connect_start = time.time()
    await db_manager.connect()
    log_application_lifecycle(
        "database_connected",
        {
            "connection_duration": f"{time.time() - db_connect_start:.3f}s",
            "database_name": settings.MONGODB_DATABASE,
        },
    )

    indexes_start = time.time()
    await db_manager.create_indexes()
    log_application_lifecycle("database_indexes_ready", {"indexes_duration": f"{time.time() - indexes_start:.3f}s"})

    total_startup_duration = time.time() - startup_start_time
    log_application_lifecycle("startup_completed", {"total_startup_duration": f"{total_startup_duration:.3f}s"})
    logger.info(f"FastAPI application startup completed in {total_startup_duration:.3f}s")

    yield

    shutdown_start_time = time.time()
    log_application_lifecycle("shutdown_initiated", {})
    try:
        await db_manager.disconnect()
    except Exception as e:
        log_error_with_context(e, {"operation": "database_disconnection"})
    log_application_lifecycle(
        "shutdown_completed", {"total_shutdown_duration": f"{time.time() - shutdown_start_time:.3f}s"}
    )


app = FastAPI(
    title="Revision Scheduler API",
    description="Spaced-repetition buckets (today, week, month) for coding-interview practice.",
    version=__version__,
    docs_url="/docs" if settings.DOCS_ENABLED else None,
    redoc_url="/redoc" if settings.DOCS_ENABLED else None,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Revision", "description": "Revision buckets, completion and monthly archive"},
        {"name": "Health", "description": "Liveness and readiness probes"},
    ],
)

logger.info(f"Configuring CORS with origins: {settings.cors_origins}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)
app.add_middleware(RequestLoggingMiddleware)
log_application_lifecycle(
    "middleware_configured",
    {"middleware": ["CORSMiddleware", "RequestLoggingMiddleware"], "cors_origins": settings.cors_origins},
)

routers_config = [
    ("revision", revision_router, "Revision bucket scheduler endpoints"),
    ("health", health_router, "Liveness and readiness probes"),
]

included_routers = []
for router_name, router, description in routers_config:
    app.include_router(router)
    included_routers.append({"name": router_name, "description": description})
    logger.info(f"Successfully included {router_name} router: {description}")

log_application_lifecycle("routers_configured", {"routers": included_routers})

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
    should_instrument_requests_inprogress=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")
log_application_lifecycle("prometheus_configured", {"metrics_endpoint": "/metrics"})


if __name__ == "__main__":
    uvicorn.run(
        "revision_scheduler.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG, log_level="info"
    )
