"""FastAPI application factory and lifespan management."""

import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tuttiud import __version__
from tuttiud.config import Settings, settings
from tuttiud.crypto.cipher import CredentialCipher
from tuttiud.db.engine import create_db_engine, create_session_factory
from tuttiud.logging_config import configure_logging
from tuttiud.tenancy.client import TenantClientFactory
from tuttiud.tenancy.identity import IdentityService

# Configure logging at import time
_json_logs = os.environ.get("TUTTIUD_LOCAL", "0") != "1"
configure_logging(log_level=settings.log_level, json_output=_json_logs)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    db_url = app.state.settings.effective_control_store_url
    if not db_url:
        # Requests fail with CONFIGURATION_MISSING; the process still serves health probes
        db_url = "sqlite+aiosqlite:///"
        logger.error("Control store address is not configured")

    engine = create_db_engine(db_url)

    # Auto-create tables for SQLite (local dev, no migrations)
    if "sqlite" in db_url:
        from tuttiud.db.base import Base
        import tuttiud.db.models  # noqa: F401, registers all ORM models

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("SQLite tables created (local mode)")

    app.state.db_engine = engine
    app.state.db_session_factory = create_session_factory(engine)

    missing = app.state.settings.missing_required()
    if missing:
        logger.error("Gateway configuration incomplete: missing %s", ", ".join(missing))

    logger.info("Tuttiud onboarding API started (db=%s)", "sqlite" if "sqlite" in db_url else "postgresql")
    yield

    await engine.dispose()
    logger.info("Tuttiud onboarding API shutdown complete")


def build_cipher(app_settings: Settings) -> CredentialCipher | None:
    """Return the credential cipher, or None when no key material is configured."""
    if not app_settings.credentials_encryption_key:
        return None
    return CredentialCipher(
        app_settings.credentials_encryption_key,
        app_settings.credentials_previous_encryption_keys,
    )


def create_app(
    app_settings: Settings | None = None,
    tenant_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Explicit configuration; the process-wide settings when omitted.
        tenant_transport: Transport for tenant-store requests (tests inject a mock).
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title="Tuttiud Onboarding API",
        version=__version__,
        description="Tenant onboarding gateway: credential storage, setup status and schema diagnostics.",
        lifespan=lifespan,
    )

    app.state.settings = app_settings
    app.state.cipher = build_cipher(app_settings)
    app.state.identity_service = IdentityService(
        app_settings.control_store_service_key,
        algorithm=app_settings.jwt_algorithm,
        audience=app_settings.jwt_audience,
    )
    app.state.client_factory = TenantClientFactory(
        app_settings.tenant_schema,
        timeout=app_settings.tenant_request_timeout,
        transport=tenant_transport,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from tuttiud.api.middleware.trace_id import TraceIdMiddleware
    app.add_middleware(TraceIdMiddleware)

    from tuttiud.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    from tuttiud.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
