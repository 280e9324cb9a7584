"""FastAPI application initialization."""

from contextlib import asynccontextmanager
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.auth import router as auth_router
from src.api.health import router as health_router
from src.api.middleware import CorrelationIdMiddleware
from src.api.notes import router as notes_router
from src.api.organizations import router as organizations_router
from src.api.projects import router as projects_router
from src.api.tasks import router as tasks_router
from src.api.tasks import subtasks_router
from src.api.users import router as users_router
from src.config import get_settings
from src.database import close_database, init_database, run_migrations
from src.errors import CoreError, Unavailable
from src.services.logging_service import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings.log_level)

    await init_database()
    await run_migrations()
    logger.info("application_started", log_level=settings.log_level)

    yield

    await close_database()
    logger.info("application_shutdown")


app = FastAPI(
    title="Hellai Core Service",
    description="Authentication, sessions and hierarchical access control",
    version="0.1.0",
    lifespan=lifespan,
)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or str(uuid4())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request validation failures as 400 with the first offending field."""
    correlation_id = _correlation_id(request)

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    # Raw errors echo the input, which may hold a password
    logger.warning("validation_error", detail=detail)

    return JSONResponse(
        status_code=400,
        content={
            "error": "validation_error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    """Render a domain error with its code and status."""
    correlation_id = _correlation_id(request)
    headers = {"X-Correlation-Id": correlation_id}

    if isinstance(exc, Unavailable):
        if exc.retryable:
            headers["Retry-After"] = "1"
        logger.error("request_unavailable", code=exc.code, retryable=exc.retryable)
    else:
        logger.info("request_rejected", code=exc.code, status_code=exc.status_code)

    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.code,
            "detail": exc.message,
            "correlation_id": correlation_id,
        },
        headers=headers,
    )


# CORS middleware for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

app.include_router(health_router)
app.include_router(users_router)
app.include_router(auth_router)
app.include_router(organizations_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(subtasks_router)
app.include_router(notes_router)
