from functools import lru_cache

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_session, get_session_maker
from app.models.user import User
from app.services.calendar_service import GoogleCalendarClient
from app.services.errors import Unauthorized
from app.services.identity_service import LineIdentityVerifier, get_or_create_user
from app.services.notification_service import LineNotifier
from app.services.reservation_service import SlotLockRegistry, slot_locks

__all__ = [
    "get_session",
    "get_session_maker",
    "get_identity_verifier",
    "get_calendar_client",
    "get_notifier",
    "get_slot_locks",
    "get_current_user",
    "require_admin_key",
]

security = HTTPBearer(auto_error=False)


@lru_cache
def get_identity_verifier() -> LineIdentityVerifier:
    return LineIdentityVerifier.from_settings()


@lru_cache
def get_calendar_client() -> GoogleCalendarClient:
    """Used both as the busy-interval source and as the booking mirror writer."""
    return GoogleCalendarClient.from_settings()


@lru_cache
def get_notifier() -> LineNotifier:
    return LineNotifier.from_settings()


def get_slot_locks() -> SlotLockRegistry:
    return slot_locks


async def get_current_user(
    session: AsyncSession = Depends(get_session),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    verifier: LineIdentityVerifier = Depends(get_identity_verifier),
) -> User:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Missing or invalid authorization header")
    identity = await verifier.verify(credentials.credentials)
    return await get_or_create_user(session, identity)


def require_admin_key(x_admin_key: str | None = Header(default=None, alias="X-Admin-Key")) -> None:
    """Admin endpoints are closed unless ADMIN_API_KEY is configured and presented."""
    if not settings.admin_api_key or x_admin_key != settings.admin_api_key:
        raise Unauthorized("Admin key required")
