from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app import models  # noqa: F401  registers tables on SQLModel.metadata
from app.api import heatmap, sites, tracking
from app.core.config import settings
from app.core.errors import TrackingError, capture_exception, init_sentry
from app.core.logging_config import get_logger
from app.db import create_db_and_tables
from app.middleware.context import RequestContextMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Behavior Tracker API starting", environment=settings.ENVIRONMENT)
    create_db_and_tables()
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    yield


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

# Trust X-Forwarded-* so rate limiting sees the visitor's address
app.add_middleware(cast(Any, ProxyHeadersMiddleware), trusted_hosts=["*"])

app.add_middleware(cast(Any, RequestContextMiddleware))

# GZip compression for responses > 1KB
app.add_middleware(cast(Any, GZipMiddleware), minimum_size=1000)

# The tracker posts from arbitrary third-party origins without credentials
app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    capture_exception(exc, context={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(tracking.router, prefix=settings.TRACKING_PREFIX, tags=["tracking"])
app.include_router(sites.router, prefix=f"{settings.API_V1_STR}/sites", tags=["sites"])
app.include_router(heatmap.router, prefix=f"{settings.API_V1_STR}/heatmap", tags=["heatmap"])


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}
