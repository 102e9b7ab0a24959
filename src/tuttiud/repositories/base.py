"""Async repository base for control-store tables."""

from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tuttiud.db.base import Base

RowT = TypeVar("RowT", bound=Base)


class BaseRepository(Generic[RowT]):
    """Lookup, insert and in-place update for one ORM row class.

    Subclasses set ``model_class`` and ``key_column``. Writes are flushed,
    never committed; the calling service owns the transaction.
    """

    model_class: type[RowT]
    key_column: str = "id"

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> RowT | None:
        column = getattr(self.model_class, self.key_column)
        result = await self.session.execute(select(self.model_class).where(column == key))
        return result.scalar_one_or_none()

    async def create(self, **values: Any) -> RowT:
        row = self.model_class(**values)
        self.session.add(row)
        await self.session.flush()
        return row

    async def update(self, row: RowT, **values: Any) -> RowT:
        for name, value in values.items():
            setattr(row, name, value)
        await self.session.flush()
        return row
