from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_session
from app.api.schemas.user import UserOut, UserUpdateRequest
from app.models.user import User, UserUpdate
from app.services.identity_service import update_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.model_validate(current_user)


@router.put("/me", response_model=UserOut)
async def update_me(
    body: UserUpdateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> UserOut:
    data = UserUpdate(**body.model_dump(exclude_unset=True))
    user = await update_user(session, current_user, data)
    return UserOut.model_validate(user)
