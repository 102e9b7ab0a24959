"""Client-side access to the setup gateway used by the onboarding orchestrator."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from tuttiud.models.setup import (
    BootstrapResult,
    InitializeResult,
    OrganizationSetupMetadata,
    OrganizationSetupSettings,
    SchemaCheckResult,
    SetupDiagnostics,
)
from tuttiud.services.metadata import normalise_metadata

logger = logging.getLogger(__name__)

# Error kinds the orchestrator branches on
MISSING_FUNCTION = "missing_function"
NETWORK = "network"
UNKNOWN = "unknown"


class GatewayError(Exception):
    """A gateway call failed.

    ``kind`` is the server's error code in snake case (``missing_function``,
    ``validation_failed``, ...) or ``network`` for transport failures;
    ``detail`` is the raw failure rendered for a support-facing panel.
    """

    def __init__(
        self,
        message: str,
        kind: str = UNKNOWN,
        status_code: int | None = None,
        detail: str | None = None,
    ):
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)

    @property
    def is_missing_function(self) -> bool:
        return self.kind == MISSING_FUNCTION


def format_detail(value: Any) -> str | None:
    """Render an upstream failure payload for the technical-detail panel."""
    if value is None or value == {}:
        return None
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


class SetupGateway(ABC):
    """Operations the onboarding orchestrator needs from the setup gateway.

    Usable as an async context manager; ``aclose`` releases any transport.
    """

    async def __aenter__(self) -> SetupGateway:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        pass

    @abstractmethod
    async def fetch_status(self, org_id: str) -> bool:
        """Return whether an application key is stored for ``org_id``."""
        ...

    @abstractmethod
    async def fetch_settings(self, org_id: str) -> OrganizationSetupSettings | None:
        ...

    @abstractmethod
    async def store_credential(
        self,
        org_id: str,
        app_key: str,
        tenant_store_url: str,
        current_metadata: dict | None = None,
    ) -> tuple[OrganizationSetupMetadata, SetupDiagnostics]:
        ...

    @abstractmethod
    async def verify_stored(self, org_id: str) -> SetupDiagnostics:
        ...

    @abstractmethod
    async def initialize(self, org_id: str) -> InitializeResult:
        ...

    @abstractmethod
    async def schema_status(self, org_id: str) -> SchemaCheckResult:
        ...

    @abstractmethod
    async def bootstrap(self, org_id: str) -> BootstrapResult:
        ...

    @abstractmethod
    async def diagnostics(self, org_id: str) -> SetupDiagnostics:
        ...

    @abstractmethod
    async def update_connection_status(self, org_id: str, status: str) -> OrganizationSetupMetadata:
        ...


class HttpSetupGateway(SetupGateway):
    """Calls the gateway's HTTP surface with the user's bearer token.

    Args:
        base_url: Gateway root including the ``/api`` prefix.
        access_token: The signed-in user's bearer token.
        provider: Provider name keyed in the settings metadata.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        provider: str = "tuttiud",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.provider = provider
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Gateway request %s %s failed: %s", method, path, type(exc).__name__)
            raise GatewayError(
                "The setup service could not be reached. Check your connection and try again.",
                kind=NETWORK,
                detail=str(exc) or type(exc).__name__,
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error or not isinstance(body, dict) or body.get("success") is False:
            raise self._error_from_response(response, body)
        return body

    @staticmethod
    def _error_from_response(response: httpx.Response, body: Any) -> GatewayError:
        if isinstance(body, dict):
            code = body.get("code")
            return GatewayError(
                body.get("message") or f"The setup service returned HTTP {response.status_code}.",
                kind=code.lower() if isinstance(code, str) else UNKNOWN,
                status_code=response.status_code,
                detail=format_detail(body.get("details")),
            )
        return GatewayError(
            f"The setup service returned HTTP {response.status_code}.",
            status_code=response.status_code,
            detail=format_detail(response.text),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def fetch_status(self, org_id: str) -> bool:
        body = await self._request("GET", "/setup-status", params={"orgId": org_id})
        return bool(body.get("hasDedicatedKey"))

    async def fetch_settings(self, org_id: str) -> OrganizationSetupSettings | None:
        body = await self._request("GET", "/org-settings", params={"orgId": org_id})
        settings = body.get("settings")
        if not settings:
            return None
        settings = dict(settings)
        settings["metadata"] = normalise_metadata(
            (settings.get("metadata") or {}).get("raw"), self.provider
        )
        return OrganizationSetupSettings.model_validate(settings)

    async def store_credential(
        self,
        org_id: str,
        app_key: str,
        tenant_store_url: str,
        current_metadata: dict | None = None,
    ) -> tuple[OrganizationSetupMetadata, SetupDiagnostics]:
        body = await self._request(
            "POST",
            "/store-tuttiud-app-key",
            json={
                "orgId": org_id,
                "appKey": app_key,
                "tenantStoreAddress": tenant_store_url,
                "currentMetadata": current_metadata,
            },
        )
        return (
            normalise_metadata(body.get("metadata"), self.provider),
            SetupDiagnostics.model_validate(body["diagnostics"]),
        )

    async def verify_stored(self, org_id: str) -> SetupDiagnostics:
        body = await self._request("POST", "/verify-tuttiud-setup", json={"orgId": org_id})
        return SetupDiagnostics.model_validate(body["diagnostics"])

    async def initialize(self, org_id: str) -> InitializeResult:
        body = await self._request("POST", "/setup/initialize", json={"orgId": org_id})
        return InitializeResult.model_validate(body)

    async def schema_status(self, org_id: str) -> SchemaCheckResult:
        body = await self._request("POST", "/setup/schema-status", json={"orgId": org_id})
        return SchemaCheckResult.model_validate(body)

    async def bootstrap(self, org_id: str) -> BootstrapResult:
        body = await self._request("POST", "/setup/bootstrap", json={"orgId": org_id})
        return BootstrapResult.model_validate(body)

    async def diagnostics(self, org_id: str) -> SetupDiagnostics:
        body = await self._request("POST", "/setup/diagnostics", json={"orgId": org_id})
        return SetupDiagnostics.model_validate(body["diagnostics"])

    async def update_connection_status(self, org_id: str, status: str) -> OrganizationSetupMetadata:
        body = await self._request(
            "POST",
            "/connection-status",
            json={"orgId": org_id, "status": status},
        )
        return normalise_metadata(body.get("metadata"), self.provider)

    async def fetch_setup_script(self) -> str:
        try:
            response = await self._client.get("/setup-script")
        except httpx.HTTPError as exc:
            raise GatewayError(
                "The setup service could not be reached.",
                kind=NETWORK,
                detail=str(exc) or type(exc).__name__,
            ) from exc
        if response.is_error:
            raise GatewayError(
                f"The setup service returned HTTP {response.status_code}.",
                status_code=response.status_code,
            )
        return response.text
