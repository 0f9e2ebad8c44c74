from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_calendar_client, get_session
from app.api.schemas.slot import AvailableSlotOut
from app.services.availability_service import BusySource, list_available

router = APIRouter(prefix="/slots", tags=["slots"])


@router.get("", response_model=list[AvailableSlotOut])
async def available_slots(
    date_param: date | None = Query(None, alias="date"),
    session: AsyncSession = Depends(get_session),
    busy_source: BusySource = Depends(get_calendar_client),
) -> list[AvailableSlotOut]:
    """Bookable slots for the given date (local to the configured timezone). No date, no slots."""
    if date_param is None:
        return []
    slots = await list_available(session, date_param, busy_source)
    return [AvailableSlotOut.model_validate(s) for s in slots]
