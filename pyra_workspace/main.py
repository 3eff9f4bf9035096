"""Pyra Workspace - billing and webhook integration backend."""

import logging
import os
import tomllib
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pyra_workspace.db import AsyncSessionLocal, init_db
from pyra_workspace.services.scheduler import scheduler_service
from pyra_workspace.services.settings_service import SettingsService


def get_version() -> str:
    """Read version from pyproject.toml (single source of truth)."""
    try:
        pyproject_path = Path(__file__).parent.resolve().parent / "pyproject.toml"
        if not pyproject_path.exists():
            logger.warning(f"pyproject.toml not found at {pyproject_path}")
            return "0.0.0-dev"

        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        return data["project"]["version"]
    except (FileNotFoundError, KeyError) as e:
        logger.warning(f"Could not read version from pyproject.toml: {e}")
        return "0.0.0-dev"


# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from Granian access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if the log record is for an excluded endpoint."""
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


logging.getLogger("granian.access").addFilter(EndpointFilter(["/health"]))


def _testing() -> bool:
    return os.getenv("PYRA_TESTING", "false").lower() == "true"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Starting Pyra Workspace...")

    await init_db()
    logger.info("Database initialized")

    async with AsyncSessionLocal() as db:
        await SettingsService.init_defaults(db)
    logger.info("Default settings initialized")

    if not _testing():
        await scheduler_service.start()
        logger.info("Background scheduler started")

    yield

    await scheduler_service.stop()
    logger.info("Shutting down Pyra Workspace...")


app = FastAPI(
    title="Pyra Workspace",
    description="Quotes, invoices and outbound webhooks for the Pyra client portal",
    version=get_version(),
    lifespan=lifespan,
)

# Default CORS origins (localhost development ports)
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

cors_origins_env = os.getenv("CORS_ORIGINS")
if cors_origins_env:
    if cors_origins_env == "*":
        cors_origins = ["*"]
        logger.warning("CORS configured with wildcard (*) - not recommended for production")
    else:
        cors_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]
        logger.info(f"CORS origins from environment: {cors_origins}")
else:
    cors_origins = DEFAULT_CORS_ORIGINS
    logger.info(f"Using default CORS origins (localhost development): {len(cors_origins)} origins")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Cannot use allow_credentials=True with allow_origins=["*"]
    allow_credentials=cors_origins != ["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Log unhandled errors in full and return a generic message.

    With ``PYRA_DEBUG=true`` the exception text and type are returned for
    local development.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "client": request.client.host if request.client else "unknown",
        },
    )

    if os.getenv("PYRA_DEBUG", "false").lower() == "true":
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__, "debug": True},
        )

    return JSONResponse(status_code=500, content={"detail": "حدث خطأ في الخادم"})


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "pyra-workspace", "scheduler": scheduler_service.get_status()}


from pyra_workspace.api import api_router  # noqa: E402

app.include_router(api_router)
