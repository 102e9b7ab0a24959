"""Repository for per-organization settings rows."""

from tuttiud.db.models.org_settings import OrgSettingsRow
from tuttiud.repositories.base import BaseRepository


class OrgSettingsRepository(BaseRepository[OrgSettingsRow]):
    model_class = OrgSettingsRow
    key_column = "org_id"

    async def replace_metadata(self, row: OrgSettingsRow, metadata: dict) -> OrgSettingsRow:
        """Assign a new metadata document.

        Callers build ``metadata`` with a read-merge-write; a fresh dict is
        assigned so the JSON column is flagged dirty.
        """
        return await self.update(row, metadata_=dict(metadata))
