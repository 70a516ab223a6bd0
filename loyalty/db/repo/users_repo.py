from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models.users import User


class UsersRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: UUID) -> User | None:
        return await session.get(User, user_id)

    @staticmethod
    async def create(session: AsyncSession, *, user_id: UUID, status: str = "ACTIVE") -> User:
        user = User(id=user_id, status=status)
        session.add(user)
        await session.flush()
        return user
