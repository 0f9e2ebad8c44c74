from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.reference import Subject, Teacher


async def list_active_teachers(session: AsyncSession) -> list[Teacher]:
    result = await session.execute(
        select(Teacher).where(Teacher.is_active.is_(True)).order_by(Teacher.name)
    )
    return list(result.scalars().all())


async def list_active_subjects(session: AsyncSession) -> list[Subject]:
    result = await session.execute(
        select(Subject).where(Subject.is_active.is_(True)).order_by(Subject.name)
    )
    return list(result.scalars().all())
