"""PostgREST client bound to one tenant store, one credential and one schema."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# The tenant store's shared schema is never addressed by this service
FORBIDDEN_SCHEMAS = frozenset({"public"})

# PostgREST "function not found" (PGRST202), legacy single-row code the setup
# RPCs surfaced when undeployed (PGRST116), Postgres undefined_function (42883)
MISSING_FUNCTION_CODES = frozenset({"PGRST202", "PGRST116", "42883"})


class TenantStoreError(Exception):
    """A tenant-store request failed at the transport or PostgREST level."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        details: Any = None,
        hint: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details
        self.hint = hint
        super().__init__(message)

    @property
    def is_missing_function(self) -> bool:
        return self.code in MISSING_FUNCTION_CODES

    def as_details(self) -> dict:
        """Support-facing description of the failure (never contains credentials)."""
        payload = {"message": self.message}
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        if self.code:
            payload["code"] = self.code
        if self.details:
            payload["details"] = self.details
        if self.hint:
            payload["hint"] = self.hint
        return payload


class TenantStoreClient:
    """Async client for a tenant's PostgREST endpoint.

    All requests carry ``Accept-Profile``/``Content-Profile`` for ``schema``,
    so reads and writes can only reach the tenant's dedicated schema.
    Use as an async context manager, or call :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        schema: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not schema or schema in FORBIDDEN_SCHEMAS:
            raise ValueError(f"Tenant clients must be scoped to a dedicated schema, got {schema!r}")
        self.base_url = base_url.rstrip("/")
        self.schema = schema
        try:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers={
                    "apikey": api_key,
                    "Authorization": f"Bearer {api_key}",
                    "Accept-Profile": schema,
                    "Content-Profile": schema,
                },
                timeout=timeout,
                transport=transport,
            )
        except httpx.InvalidURL as exc:
            raise TenantStoreError(f"Tenant store address is not a valid URL: {exc}", code="invalid_url") from exc

    async def __aenter__(self) -> TenantStoreClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning("Tenant store request %s %s failed: %s", method, path, type(exc).__name__)
            raise TenantStoreError(f"Tenant store unreachable: {exc}", code="network") from exc

        if response.is_error:
            raise self._error_from_response(response)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Tenant store returned a non-JSON body for %s %s", method, path)
            raise TenantStoreError(
                "Tenant store returned a response that is not PostgREST JSON",
                status_code=response.status_code,
                code="invalid_response",
            ) from exc

    @staticmethod
    def _error_from_response(response: httpx.Response) -> TenantStoreError:
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            return TenantStoreError(
                body.get("message") or f"Tenant store returned HTTP {response.status_code}",
                status_code=response.status_code,
                code=body.get("code"),
                details=body.get("details"),
                hint=body.get("hint"),
            )
        return TenantStoreError(
            f"Tenant store returned HTTP {response.status_code}",
            status_code=response.status_code,
        )

    async def rpc(self, function_name: str, params: dict | None = None) -> Any:
        """Call a stored procedure in the dedicated schema."""
        return await self._request("POST", f"/rpc/{function_name}", json=params or {})

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        order: str | None = None,
    ) -> list[dict]:
        """Select rows; ``filters`` are equality matches, ``order`` is ``column.asc|desc``."""
        params = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            params["order"] = order
        rows = await self._request("GET", f"/{table}", params=params)
        return rows or []

    async def select_one(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
    ) -> dict | None:
        """Return the first matching row or ``None``."""
        rows = await self.select(table, columns=columns, filters=filters)
        return rows[0] if rows else None

    async def insert(self, table: str, row: dict, returning: str = "*") -> dict | None:
        """Insert one row and return its representation."""
        rows = await self._request(
            "POST",
            f"/{table}",
            params={"select": returning},
            json=row,
            headers={"Prefer": "return=representation"},
        )
        if isinstance(rows, list):
            return rows[0] if rows else None
        return rows


class TenantClientFactory:
    """Builds :class:`TenantStoreClient` instances with shared settings."""

    def __init__(
        self,
        schema: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.schema = schema
        self.timeout = timeout
        self.transport = transport

    def __call__(self, base_url: str, api_key: str) -> TenantStoreClient:
        return TenantStoreClient(
            base_url,
            api_key,
            schema=self.schema,
            timeout=self.timeout,
            transport=self.transport,
        )
