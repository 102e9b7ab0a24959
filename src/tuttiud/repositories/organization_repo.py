"""Repository for organizations and their encrypted application key."""

from sqlalchemy import select

from tuttiud.db.models.organization import OrganizationRow
from tuttiud.repositories.base import BaseRepository


class OrganizationRepository(BaseRepository[OrganizationRow]):
    model_class = OrganizationRow

    async def get_encrypted_key(self, org_id: str) -> str | None:
        """Return only the ciphertext column, without loading the row into the session."""
        stmt = select(OrganizationRow.dedicated_key_encrypted).where(OrganizationRow.id == org_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_encrypted_key(self, row: OrganizationRow, ciphertext: str | None) -> OrganizationRow:
        """Overwrite the stored ciphertext (never appended)."""
        return await self.update(row, dedicated_key_encrypted=ciphertext)
