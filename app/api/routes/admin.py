import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session, require_admin_key
from app.api.schemas.slot import SeedResponse
from app.core.config import settings
from app.services.slot_service import seed_default_slots

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])


@router.post("/seed", response_model=SeedResponse)
async def seed(session: AsyncSession = Depends(get_session)) -> SeedResponse:
    """Persist the default schedule for the next `seed_days` days, starting today."""
    today = datetime.now(settings.tz).date()
    created, dates = await seed_default_slots(session, today, settings.seed_days)
    logger.info("Seed: created %d slot(s) across %d date(s)", created, len(dates))
    return SeedResponse(message="Seed completed", created=created, dates=dates)
