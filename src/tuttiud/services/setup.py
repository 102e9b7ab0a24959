"""Setup status / diagnostics gateway operations.

Each operation resolves its own control or tenant context; nothing is shared
between requests.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tuttiud.crypto.cipher import CredentialCipher
from tuttiud.errors.exceptions import (
    BadRequestError,
    BootstrapFailedError,
    CheckFailedError,
    ConfigurationMissingError,
    ConnectionFailedError,
    MissingFunctionError,
    NotFoundError,
    UnknownUpstreamError,
    UpdateFailedError,
    ValidationFailedError,
    VerificationFailedError,
)
from tuttiud.models.enums import Role
from tuttiud.models.setup import (
    BootstrapResult,
    InitializeResult,
    OrganizationSetupMetadata,
    OrganizationSetupSettings,
    SchemaCheckResult,
    SetupDiagnostics,
)
from tuttiud.repositories.org_settings_repo import OrgSettingsRepository
from tuttiud.repositories.organization_repo import OrganizationRepository
from tuttiud.services.diagnostics import missing_function_diagnostics, normalise_diagnostics
from tuttiud.services.metadata import (
    normalise_metadata,
    with_connection_status,
    with_stored_credential_flag,
)
from tuttiud.tenancy.client import TenantClientFactory, TenantStoreError
from tuttiud.tenancy.guard import ControlAccessGuard
from tuttiud.tenancy.resolver import TenantContextResolver

logger = logging.getLogger(__name__)

DIAGNOSTICS_RPC = "setup_assistant_diagnostics"
INITIALIZE_RPC = "setup_assistant_initialize"
SCHEMA_STATUS_RPC = "setup_assistant_schema_status"
BOOTSTRAP_RPC = "setup_assistant_run_bootstrap"


def _payload_flag(payload: Any, key: str) -> tuple[bool, str | None]:
    """Interpret ``{key: bool, message: str}`` payloads, or a bare truthy value."""
    if isinstance(payload, dict):
        value = payload.get(key)
        message = payload.get("message")
        return bool(value), message if isinstance(message, str) else None
    return bool(payload), None


def settings_from_row(row, provider: str) -> OrganizationSetupSettings:
    return OrganizationSetupSettings(
        org_id=row.org_id,
        tenant_store_url=row.tenant_store_url,
        tenant_anon_key=row.tenant_anon_key,
        last_synced_at=row.last_synced_at,
        metadata=normalise_metadata(row.metadata_, provider),
    )


class SetupService:
    """Gateway operations called by the onboarding orchestrator."""

    def __init__(
        self,
        session: AsyncSession,
        guard: ControlAccessGuard,
        resolver: TenantContextResolver,
        cipher: CredentialCipher | None,
        client_factory: TenantClientFactory,
        provider: str,
    ):
        self.session = session
        self.guard = guard
        self.resolver = resolver
        self.cipher = cipher
        self.client_factory = client_factory
        self.provider = provider

    # ------------------------------------------------------------------
    # Control-store operations
    # ------------------------------------------------------------------

    async def fetch_status(self, headers: Mapping[str, str], org_id: str) -> bool:
        """Return whether the organization has a stored application key."""
        await self.guard.resolve(headers, org_id, Role.ADMIN)
        org = await self._load_organization(org_id)
        has_key = bool(org.dedicated_key_encrypted)
        logger.info("Setup status for org %s: has_dedicated_key=%s", org_id, has_key)
        return has_key

    async def fetch_settings(
        self, headers: Mapping[str, str], org_id: str
    ) -> OrganizationSetupSettings | None:
        await self.guard.resolve(headers, org_id, Role.MEMBER)
        row = await OrgSettingsRepository(self.session).get(org_id)
        if row is None:
            return None
        return settings_from_row(row, self.provider)

    async def update_connection_status(
        self, headers: Mapping[str, str], org_id: str, status: str
    ) -> OrganizationSetupMetadata:
        """Set ``connections.<provider>`` with a read-merge-write of the metadata document."""
        if not status:
            raise BadRequestError("A connection status is required.")
        await self.guard.resolve(headers, org_id, Role.ADMIN)

        repo = OrgSettingsRepository(self.session)
        try:
            row = await repo.get(org_id)
            if row is None:
                raise NotFoundError("Organization settings", org_id)
            next_metadata = with_connection_status(row.metadata_, self.provider, status)
            await repo.replace_metadata(row, next_metadata)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Connection status update failed for org %s: %s", org_id, type(exc).__name__)
            raise UpdateFailedError(
                "Updating the connection status failed. Try again and contact support if it persists."
            ) from exc

        logger.info("Connection status for org %s set to %s", org_id, status)
        return normalise_metadata(next_metadata, self.provider)

    async def store_credential(
        self,
        headers: Mapping[str, str],
        org_id: str,
        app_key: str,
        tenant_store_url: str,
        current_metadata: dict | None = None,
    ) -> tuple[OrganizationSetupMetadata, SetupDiagnostics]:
        """Encrypt and persist ``app_key``, then validate it with a diagnostics check.

        On a failed check the previous ciphertext (or NULL) is written back, so a
        stored credential is always one that passed validation. The two writes
        are not transactional with each other.
        """
        org_id = org_id.strip()
        app_key = app_key.strip()
        tenant_store_url = tenant_store_url.strip()
        if not org_id or not app_key or not tenant_store_url:
            raise BadRequestError(
                "Some details are missing. Check the organization id, data store address and key."
            )
        if self.cipher is None:
            raise ConfigurationMissingError()

        await self.guard.resolve(headers, org_id, Role.ADMIN)

        ciphertext = self.cipher.encrypt(app_key)

        org_repo = OrganizationRepository(self.session)
        org = await self._load_organization(org_id)
        previous_ciphertext = org.dedicated_key_encrypted

        try:
            await org_repo.set_encrypted_key(org, ciphertext)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Storing encrypted key failed for org %s: %s", org_id, type(exc).__name__)
            raise UpdateFailedError("Saving the application key failed. Try again later.") from exc

        try:
            async with self.client_factory(tenant_store_url, app_key) as check_client:
                payload = await check_client.rpc(DIAGNOSTICS_RPC)
        except TenantStoreError as exc:
            logger.warning("Credential check failed for org %s; reverting stored key", org_id)
            await self._revert_key(org_repo, org, previous_ciphertext)
            raise ValidationFailedError(
                "The application key could not be validated against the data store. "
                "Check that the setup script ran successfully and the key is current.",
                details=exc.as_details(),
            ) from exc
        except Exception:
            # Only a validated key may stay stored
            logger.exception("Credential check for org %s raised unexpectedly; reverting stored key", org_id)
            await self._revert_key(org_repo, org, previous_ciphertext)
            raise

        diagnostics = normalise_diagnostics(payload)

        settings_repo = OrgSettingsRepository(self.session)
        try:
            settings_row = await settings_repo.get(org_id)
            if settings_row is None:
                next_metadata = with_stored_credential_flag(current_metadata, self.provider)
                await settings_repo.create(
                    org_id=org_id,
                    tenant_store_url=tenant_store_url,
                    metadata_=next_metadata,
                )
            else:
                base = settings_row.metadata_ if settings_row.metadata_ else current_metadata
                next_metadata = with_stored_credential_flag(base, self.provider)
                # Persist the address the key was validated against
                await settings_repo.update(
                    settings_row,
                    tenant_store_url=tenant_store_url,
                    metadata_=dict(next_metadata),
                )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Metadata update failed for org %s: %s", org_id, type(exc).__name__)
            raise UpdateFailedError(
                "The key was validated but updating the organization metadata failed. Try again."
            ) from exc

        logger.info("Application key stored and validated for org %s", org_id)
        return normalise_metadata(next_metadata, self.provider), diagnostics

    async def _revert_key(self, org_repo: OrganizationRepository, org, previous_ciphertext: str | None) -> None:
        try:
            await org_repo.set_encrypted_key(org, previous_ciphertext)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            # Leaves a stored-but-unvalidated key; see DESIGN.md
            logger.error("Reverting encrypted key failed for org %s: %s", org.id, type(exc).__name__)

    async def _load_organization(self, org_id: str):
        try:
            org = await OrganizationRepository(self.session).get(org_id)
        except SQLAlchemyError as exc:
            logger.error("Organization lookup failed for org %s: %s", org_id, type(exc).__name__)
            raise UnknownUpstreamError("Loading the organization failed. Try again later.") from exc
        if org is None:
            raise NotFoundError("Organization", org_id)
        return org

    # ------------------------------------------------------------------
    # Tenant-store operations
    # ------------------------------------------------------------------

    async def verify_stored(self, headers: Mapping[str, str], org_id: str) -> SetupDiagnostics:
        """Re-run diagnostics with the stored (server-side decrypted) key."""
        context = await self.resolver.resolve(headers, org_id, Role.ADMIN)
        try:
            async with context.tenant_client as client:
                payload = await client.rpc(DIAGNOSTICS_RPC)
        except TenantStoreError as exc:
            logger.warning("Stored-key verification failed for org %s", org_id)
            raise VerificationFailedError(
                "Verification failed. Check that the setup script ran and the stored key is still valid.",
                details=exc.as_details(),
            ) from exc
        return normalise_diagnostics(payload)

    async def initialize(self, headers: Mapping[str, str], org_id: str) -> InitializeResult:
        context = await self.resolver.resolve(headers, org_id, Role.MEMBER)
        try:
            async with context.tenant_client as client:
                payload = await client.rpc(INITIALIZE_RPC, {"org_id": org_id})
        except TenantStoreError as exc:
            if exc.is_missing_function:
                raise MissingFunctionError(INITIALIZE_RPC, details=exc.as_details()) from exc
            raise ConnectionFailedError(
                "Connecting to the data store failed. Check the permissions and try again.",
                details=exc.as_details(),
            ) from exc
        initialized, message = _payload_flag(payload, "initialized")
        return InitializeResult(initialized=initialized, message=message)

    async def schema_status(self, headers: Mapping[str, str], org_id: str) -> SchemaCheckResult:
        context = await self.resolver.resolve(headers, org_id, Role.MEMBER)
        try:
            async with context.tenant_client as client:
                payload = await client.rpc(SCHEMA_STATUS_RPC, {"org_id": org_id})
        except TenantStoreError as exc:
            if exc.is_missing_function:
                raise MissingFunctionError(SCHEMA_STATUS_RPC, details=exc.as_details()) from exc
            raise CheckFailedError("Checking the data schema failed.", details=exc.as_details()) from exc

        if isinstance(payload, dict):
            last = payload.get("last_bootstrapped_at")
            return SchemaCheckResult(
                exists=bool(payload.get("exists")),
                last_bootstrapped_at=str(last) if last else None,
            )
        return SchemaCheckResult(exists=bool(payload))

    async def bootstrap(self, headers: Mapping[str, str], org_id: str) -> BootstrapResult:
        context = await self.resolver.resolve(headers, org_id, Role.MEMBER)
        try:
            async with context.tenant_client as client:
                payload = await client.rpc(BOOTSTRAP_RPC, {"org_id": org_id})
        except TenantStoreError as exc:
            if exc.is_missing_function:
                raise MissingFunctionError(BOOTSTRAP_RPC, details=exc.as_details()) from exc
            raise BootstrapFailedError("Creating the data schema failed.", details=exc.as_details()) from exc
        executed, message = _payload_flag(payload, "executed")
        logger.info("Schema bootstrap for org %s executed=%s", org_id, executed)
        return BootstrapResult(executed=executed, message=message)

    async def diagnostics(self, headers: Mapping[str, str], org_id: str) -> SetupDiagnostics:
        """Run advisory diagnostics; a missing function is a warning, not a failure."""
        context = await self.resolver.resolve(headers, org_id, Role.MEMBER)
        try:
            async with context.tenant_client as client:
                payload = await client.rpc(DIAGNOSTICS_RPC)
        except TenantStoreError as exc:
            if exc.is_missing_function:
                return missing_function_diagnostics(DIAGNOSTICS_RPC)
            raise UnknownUpstreamError("Running the schema diagnostics failed.", details=exc.as_details()) from exc
        return normalise_diagnostics(payload)
