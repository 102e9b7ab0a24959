"""FastAPI dependency injection providers."""

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request

from tuttiud.config import Settings
from tuttiud.errors.exceptions import ConfigurationMissingError
from tuttiud.services.records import RecordsService
from tuttiud.services.setup import SetupService
from tuttiud.tenancy.guard import ControlAccessGuard
from tuttiud.tenancy.resolver import TenantContextResolver

logger = logging.getLogger(__name__)


async def get_db(request: Request) -> AsyncGenerator:
    """Yield a database session from the app's session factory."""
    session_factory = request.app.state.db_session_factory
    async with session_factory() as session:
        yield session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _require_configured(app_settings: Settings, *names: str) -> None:
    missing = app_settings.missing_required(*names)
    if missing:
        # Names only; values are never logged
        logger.error("Gateway configuration incomplete: missing %s", ", ".join(missing))
        raise ConfigurationMissingError()


async def get_guard(request: Request, session=Depends(get_db)) -> ControlAccessGuard:
    app_settings = get_settings(request)
    _require_configured(app_settings, "control_store_url", "control_store_service_key")
    return ControlAccessGuard(session, request.app.state.identity_service)


async def get_resolver(request: Request, guard: ControlAccessGuard = Depends(get_guard)) -> TenantContextResolver:
    return TenantContextResolver(guard, request.app.state.cipher, request.app.state.client_factory)


async def get_setup_service(
    request: Request,
    session=Depends(get_db),
    guard: ControlAccessGuard = Depends(get_guard),
    resolver: TenantContextResolver = Depends(get_resolver),
) -> SetupService:
    return SetupService(
        session=session,
        guard=guard,
        resolver=resolver,
        cipher=request.app.state.cipher,
        client_factory=request.app.state.client_factory,
        provider=get_settings(request).provider_name,
    )


async def get_records_service(resolver: TenantContextResolver = Depends(get_resolver)) -> RecordsService:
    return RecordsService(resolver)


# Type aliases for dependency injection
Setup = Annotated[SetupService, Depends(get_setup_service)]
Records = Annotated[RecordsService, Depends(get_records_service)]
