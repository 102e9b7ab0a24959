"""Health check endpoints."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tuttiud import __version__

router = APIRouter()


@router.get("/health")
async def health_check():
    """Return service health status."""
    return {"status": "healthy", "service": "tuttiud-onboarding", "version": __version__}


@router.get("/health/live")
async def liveness():
    """Liveness probe; returns 200 while the process is running."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness(request: Request):
    """Readiness probe; checks control store connectivity and configuration."""
    checks: dict[str, str] = {}
    overall_ok = True

    try:
        session_factory = request.app.state.db_session_factory
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["control_store"] = "ok"
    except SQLAlchemyError as exc:
        checks["control_store"] = f"error: {type(exc).__name__}"
        overall_ok = False

    missing = request.app.state.settings.missing_required()
    if missing:
        # Report names only
        checks["configuration"] = "missing: " + ", ".join(missing)
        overall_ok = False
    else:
        checks["configuration"] = "ok"

    status_code = 200 if overall_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if overall_ok else "not_ready",
            "checks": checks,
        },
    )
