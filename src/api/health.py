"""Liveness and storage health endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.database import health_check as db_health_check

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> JSONResponse:
    """Report service and database status.

    Returns 503 when the database does not answer.
    """
    db_healthy = await db_health_check()
    return JSONResponse(
        status_code=200 if db_healthy else 503,
        content={
            "status": "healthy" if db_healthy else "degraded",
            "database": "healthy" if db_healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
