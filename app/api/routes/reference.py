from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session
from app.api.schemas.user import SubjectOut, TeacherOut
from app.services.reference_service import list_active_subjects, list_active_teachers

router = APIRouter(tags=["reference"])


@router.get("/teachers", response_model=list[TeacherOut])
async def teachers(session: AsyncSession = Depends(get_session)) -> list[TeacherOut]:
    return [TeacherOut.model_validate(t) for t in await list_active_teachers(session)]


@router.get("/subjects", response_model=list[SubjectOut])
async def subjects(session: AsyncSession = Depends(get_session)) -> list[SubjectOut]:
    return [SubjectOut.model_validate(s) for s in await list_active_subjects(session)]
