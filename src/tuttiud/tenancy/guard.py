"""Control-store access guard: bearer token -> identity -> org membership -> role."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tuttiud.errors.exceptions import (
    BadRequestError,
    ForbiddenError,
    UnauthenticatedError,
    UnknownUpstreamError,
)
from tuttiud.logging_config import bind_identity_context
from tuttiud.models.enums import Role
from tuttiud.repositories.membership_repo import MembershipRepository
from tuttiud.tenancy.identity import Identity, IdentityService, get_bearer_token

logger = logging.getLogger(__name__)


def normalise_role(role: str | None) -> Role:
    """Map a stored role string onto the closed role set; unknown values become ``member``."""
    if not role:
        return Role.MEMBER
    try:
        return Role(str(role).strip().lower())
    except ValueError:
        return Role.MEMBER


def ensure_role(current: str | Role | None, required: str | Role) -> bool:
    """True when ``current`` ranks at or above ``required``."""
    return normalise_role(current).rank >= normalise_role(required).rank


@dataclass
class ControlContext:
    identity: Identity
    role: Role
    # Control-store handle; never used against a tenant store
    session: AsyncSession


class ControlAccessGuard:
    """Resolves the caller's identity and role within an organization."""

    def __init__(self, session: AsyncSession, identity_service: IdentityService):
        self.session = session
        self.identity_service = identity_service

    async def resolve(
        self,
        headers: Mapping[str, str],
        org_id: str,
        required_role: Role = Role.MEMBER,
    ) -> ControlContext:
        if not org_id:
            raise BadRequestError("The organization id is missing. Refresh the page and try again.")

        token = get_bearer_token(headers)
        if not token:
            raise UnauthenticatedError()

        identity = self.identity_service.verify(token)
        bind_identity_context(identity.user_id, org_id)

        try:
            membership = await MembershipRepository(self.session).get(org_id, identity.user_id)
        except SQLAlchemyError as exc:
            logger.error("Membership lookup failed for org %s: %s", org_id, type(exc).__name__)
            raise UnknownUpstreamError("Checking your permissions failed. Try again later.") from exc

        if membership is None:
            raise ForbiddenError()

        role = normalise_role(membership.role)
        if not ensure_role(role, required_role):
            raise ForbiddenError(
                f"This action requires the {Role(required_role).value} role in the organization."
            )

        return ControlContext(identity=identity, role=role, session=self.session)
