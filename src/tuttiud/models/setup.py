"""Pydantic models for the setup gateway: requests, settings and diagnostics."""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from tuttiud.models.enums import CONNECTED, DiagnosticsStatus, IssueType

_CAMEL = ConfigDict(populate_by_name=True)


# --- Requests ---


class OrgRequest(BaseModel):
    model_config = _CAMEL

    org_id: str = Field("", alias="orgId")


class StoreAppKeyRequest(BaseModel):
    model_config = _CAMEL

    org_id: str = Field("", alias="orgId")
    app_key: str = Field("", alias="appKey")
    tenant_store_url: str = Field(
        "",
        validation_alias=AliasChoices("supabaseUrl", "tenantStoreAddress", "tenant_store_url"),
    )
    current_metadata: dict[str, Any] | None = Field(None, alias="currentMetadata")


class ConnectionStatusRequest(BaseModel):
    model_config = _CAMEL

    org_id: str = Field("", alias="orgId")
    status: str = "connected"


class SessionRecordRequest(BaseModel):
    model_config = _CAMEL

    org_id: str = Field("", alias="orgId")
    student_id: str = Field("", alias="studentId")
    date: str = ""
    content: str = ""
    service_context: str = Field("", alias="serviceContext")


# --- Settings / metadata ---


class OrganizationSetupMetadata(BaseModel):
    """Normalised view of ``org_settings.metadata``; ``raw`` is the full document."""

    connections: dict[str, Any] = Field(default_factory=dict)
    credentials: dict[str, Any] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)

    def connection_status(self, provider: str) -> str | None:
        value = self.connections.get(provider)
        return value if isinstance(value, str) else None

    def is_connected(self, provider: str) -> bool:
        return self.connection_status(provider) == CONNECTED

    def has_stored_credential(self, provider: str) -> bool:
        return bool(self.credentials.get(f"{provider}AppJwt"))


class OrganizationSetupSettings(BaseModel):
    org_id: str | None = None
    tenant_store_url: str | None = None
    tenant_anon_key: str | None = None
    last_synced_at: datetime | None = None
    metadata: OrganizationSetupMetadata = Field(default_factory=OrganizationSetupMetadata)


# --- Diagnostics ---


class DiagnosticsIssue(BaseModel):
    type: IssueType
    description: str


class DiagnosticsSqlSnippet(BaseModel):
    title: str
    sql: str


class SetupDiagnostics(BaseModel):
    status: DiagnosticsStatus
    summary: str
    issues: list[DiagnosticsIssue] = Field(default_factory=list)
    sql_snippets: list[DiagnosticsSqlSnippet] = Field(default_factory=list)
    raw: Any = None


# --- Step results ---


class InitializeResult(BaseModel):
    initialized: bool
    message: str | None = None


class SchemaCheckResult(BaseModel):
    exists: bool
    last_bootstrapped_at: str | None = None


class BootstrapResult(BaseModel):
    executed: bool
    message: str | None = None
