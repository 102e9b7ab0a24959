"""Organization membership table: (user, organization, role)."""

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from tuttiud.db.base import Base, TimestampMixin


class OrgMembershipRow(Base, TimestampMixin):
    __tablename__ = "org_memberships"

    org_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("organizations.id"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(128), primary_key=True, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member")
