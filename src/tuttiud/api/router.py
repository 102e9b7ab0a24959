"""Master API router mounted at /api."""

from fastapi import APIRouter

from tuttiud.api.routes import health, records, setup

api_router = APIRouter(prefix="/api")
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(setup.router)
api_router.include_router(records.router)
