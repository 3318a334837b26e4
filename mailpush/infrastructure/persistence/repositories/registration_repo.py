from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mailpush.infrastructure.persistence.models.user_registration import \
    UserRegistrationModel
from mailpush.infrastructure.persistence.repositories.base import BaseRepository


class RegistrationRepository(BaseRepository[UserRegistrationModel]):
    """Registration lookups by key, by Graph subscription id and by expiry"""

    def __init__(self, db: AsyncSession):
        super().__init__(db, UserRegistrationModel)

    async def get_by_key(
        self, email: str, provider: str, *, for_update: bool = False
    ) -> UserRegistrationModel | None:
        return await self.get(email, provider, for_update=for_update)

    async def get_by_subscription_id(self, subscription_id: str) -> UserRegistrationModel | None:
        result = await self.db.execute(
            select(UserRegistrationModel).where(
                UserRegistrationModel.subscription_id == subscription_id
            )
        )
        return result.scalar_one_or_none()

    async def list_expiring(self, cutoff: datetime) -> list[UserRegistrationModel]:
        """Registrations whose watch/subscription expires before cutoff (or never recorded one)"""
        query = select(UserRegistrationModel).where(
            (UserRegistrationModel.expiry < cutoff) | (UserRegistrationModel.expiry.is_(None))
        )
        result = await self.db.execute(query.order_by(UserRegistrationModel.expiry))
        return list(result.scalars().all())
