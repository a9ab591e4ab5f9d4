# tomafit/dao/identity/user_dao.py
from sqlalchemy.ext.asyncio import AsyncSession

from typing import Optional
from tomafit.dao.base_dao import BaseDao
from tomafit.models.identity import User

class UserDao(BaseDao[User]):
    def __init__(self, db_session: AsyncSession):
        super().__init__(User, db_session)

    async def get_by_external_id(self, external_id: str) -> Optional[User]:
        """Finds a user by their OAuth open id."""
        return await self.get_one(where={"external_id": external_id})

    async def lock_by_pk(self, user_id: int) -> Optional[User]:
        """SELECT ... FOR UPDATE, so concurrent settlements extend the expiry one after another."""
        return await self.get_by_pk(user_id, for_update=True)
