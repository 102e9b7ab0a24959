"""Per-organization settings row holding the tenant address and metadata document."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tuttiud.db.base import Base, TimestampMixin


class OrgSettingsRow(Base, TimestampMixin):
    __tablename__ = "org_settings"

    org_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("organizations.id"), primary_key=True
    )
    tenant_store_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    tenant_anon_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True, default=dict)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
