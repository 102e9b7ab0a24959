"""Tenant context resolution: guard + tenant address + decrypted credential."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError

from tuttiud.crypto.cipher import CredentialCipher
from tuttiud.errors.exceptions import (
    ConfigurationMissingError,
    SetupIncompleteError,
    UnknownUpstreamError,
)
from tuttiud.models.enums import Role
from tuttiud.repositories.org_settings_repo import OrgSettingsRepository
from tuttiud.repositories.organization_repo import OrganizationRepository
from tuttiud.tenancy.client import TenantClientFactory, TenantStoreClient, TenantStoreError
from tuttiud.tenancy.guard import ControlAccessGuard
from tuttiud.tenancy.identity import Identity

logger = logging.getLogger(__name__)


@dataclass
class TenantContext:
    tenant_client: TenantStoreClient
    identity: Identity
    role: Role
    tenant_store_url: str


class TenantContextResolver:
    """Builds a tenant-store client for an authorized caller.

    The decrypted credential only lives inside the returned client for the
    duration of the request.
    """

    def __init__(
        self,
        guard: ControlAccessGuard,
        cipher: CredentialCipher | None,
        client_factory: TenantClientFactory,
    ):
        self.guard = guard
        self.cipher = cipher
        self.client_factory = client_factory

    async def resolve(
        self,
        headers: Mapping[str, str],
        org_id: str,
        required_role: Role = Role.MEMBER,
    ) -> TenantContext:
        if self.cipher is None:
            raise ConfigurationMissingError("Server encryption is not configured. Contact support.")

        control = await self.guard.resolve(headers, org_id, required_role)

        try:
            settings_row = await OrgSettingsRepository(control.session).get(org_id)
            ciphertext = await OrganizationRepository(control.session).get_encrypted_key(org_id)
        except SQLAlchemyError as exc:
            logger.error("Loading tenant settings failed for org %s: %s", org_id, type(exc).__name__)
            raise UnknownUpstreamError("Loading the organization settings failed. Try again later.") from exc

        tenant_store_url = settings_row.tenant_store_url if settings_row else None
        if not tenant_store_url:
            raise SetupIncompleteError(
                "The organization's data store address is missing. Finish the setup wizard and try again."
            )

        if not ciphertext:
            raise SetupIncompleteError(
                "The application key is not stored yet. Finish the setup wizard and try again."
            )

        secret = self.cipher.decrypt(ciphertext)
        try:
            tenant_client = self.client_factory(tenant_store_url, secret)
        except TenantStoreError as exc:
            raise SetupIncompleteError(
                "The organization's data store address is not valid. Finish the setup wizard and try again."
            ) from exc

        return TenantContext(
            tenant_client=tenant_client,
            identity=control.identity,
            role=control.role,
            tenant_store_url=tenant_store_url,
        )
