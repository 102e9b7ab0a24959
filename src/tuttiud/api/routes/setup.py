"""Setup status, credential and diagnostics endpoints used by the onboarding wizard."""

from importlib import resources

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse

from tuttiud.dependencies import Setup
from tuttiud.models.setup import ConnectionStatusRequest, OrgRequest, StoreAppKeyRequest

router = APIRouter(tags=["Setup"])

SETUP_SCRIPT_RESOURCE = "setup_script.sql"


def load_setup_script() -> str:
    """Return the idempotent tenant preparation script shipped with the package."""
    return (resources.files("tuttiud") / "resources" / SETUP_SCRIPT_RESOURCE).read_text(encoding="utf-8")


@router.get("/setup-script", response_class=PlainTextResponse)
async def get_setup_script() -> str:
    return load_setup_script()


@router.get("/setup-status")
async def get_setup_status(request: Request, service: Setup, org_id: str = Query("", alias="orgId")) -> dict:
    has_key = await service.fetch_status(request.headers, org_id.strip())
    return {"success": True, "hasDedicatedKey": has_key}


@router.get("/org-settings")
async def get_org_settings(request: Request, service: Setup, org_id: str = Query("", alias="orgId")) -> dict:
    settings = await service.fetch_settings(request.headers, org_id.strip())
    return {
        "success": True,
        "settings": settings.model_dump(mode="json") if settings else None,
    }


@router.post("/store-tuttiud-app-key")
async def store_app_key(body: StoreAppKeyRequest, request: Request, service: Setup) -> dict:
    metadata, diagnostics = await service.store_credential(
        request.headers,
        body.org_id,
        body.app_key,
        body.tenant_store_url,
        current_metadata=body.current_metadata,
    )
    return {
        "success": True,
        "metadata": metadata.raw,
        "diagnostics": diagnostics.model_dump(mode="json"),
    }


@router.post("/verify-tuttiud-setup")
async def verify_setup(body: OrgRequest, request: Request, service: Setup) -> dict:
    diagnostics = await service.verify_stored(request.headers, body.org_id.strip())
    return {"success": True, "diagnostics": diagnostics.model_dump(mode="json")}


@router.post("/setup/initialize")
async def initialize(body: OrgRequest, request: Request, service: Setup) -> dict:
    result = await service.initialize(request.headers, body.org_id.strip())
    return {"success": True, **result.model_dump(mode="json")}


@router.post("/setup/schema-status")
async def schema_status(body: OrgRequest, request: Request, service: Setup) -> dict:
    result = await service.schema_status(request.headers, body.org_id.strip())
    return {"success": True, **result.model_dump(mode="json")}


@router.post("/setup/bootstrap")
async def bootstrap(body: OrgRequest, request: Request, service: Setup) -> dict:
    result = await service.bootstrap(request.headers, body.org_id.strip())
    return {"success": True, **result.model_dump(mode="json")}


@router.post("/setup/diagnostics")
async def diagnostics(body: OrgRequest, request: Request, service: Setup) -> dict:
    result = await service.diagnostics(request.headers, body.org_id.strip())
    return {"success": True, "diagnostics": result.model_dump(mode="json")}


@router.post("/connection-status")
async def update_connection_status(body: ConnectionStatusRequest, request: Request, service: Setup) -> dict:
    metadata = await service.update_connection_status(request.headers, body.org_id.strip(), body.status)
    return {"success": True, "metadata": metadata.raw}
