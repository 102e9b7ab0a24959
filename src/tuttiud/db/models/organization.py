"""Organization table: the tenant unit of the control store."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tuttiud.db.base import Base, TimestampMixin


class OrganizationRow(Base, TimestampMixin):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # base64(nonce || tag || ciphertext); NULL until onboarding stores a key
    dedicated_key_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
