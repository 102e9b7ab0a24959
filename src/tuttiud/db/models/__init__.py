"""SQLAlchemy ORM models - import all to register with Base.metadata."""

from tuttiud.db.models.membership import OrgMembershipRow
from tuttiud.db.models.org_settings import OrgSettingsRow
from tuttiud.db.models.organization import OrganizationRow

__all__ = ["OrgMembershipRow", "OrgSettingsRow", "OrganizationRow"]
