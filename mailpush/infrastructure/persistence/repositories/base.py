from abc import ABC
from typing import Any, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from mailpush.infrastructure.persistence.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(ABC, Generic[ModelType]):
    """
    Base repository implementing common CRUD operations.

    Repositories never commit; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession, model: type[ModelType]):
        self.db = db
        self.model = model

    async def get(self, *primary_key: Any, for_update: bool = False) -> ModelType | None:
        """
        Get a single record by primary key.

        With for_update the row is locked (SELECT ... FOR UPDATE) until the
        surrounding transaction ends and the identity map is refreshed so a
        concurrent writer's changes are not masked by a cached instance.
        """
        ident = primary_key[0] if len(primary_key) == 1 else tuple(primary_key)
        return await self.db.get(
            self.model,
            ident,
            with_for_update=for_update or None,
            populate_existing=for_update,
        )

    async def create(self, obj: ModelType) -> ModelType:
        """Add a new record and flush it"""
        self.db.add(obj)
        await self.db.flush()
        return obj
