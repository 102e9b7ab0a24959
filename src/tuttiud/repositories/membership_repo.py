"""Repository for organization memberships."""

from sqlalchemy import and_, select

from tuttiud.db.models.membership import OrgMembershipRow
from tuttiud.repositories.base import BaseRepository


class MembershipRepository(BaseRepository[OrgMembershipRow]):
    model_class = OrgMembershipRow

    async def get(self, org_id: str, user_id: str) -> OrgMembershipRow | None:
        # Composite key (org_id, user_id)
        stmt = select(OrgMembershipRow).where(
            and_(
                OrgMembershipRow.org_id == org_id,
                OrgMembershipRow.user_id == user_id,
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
