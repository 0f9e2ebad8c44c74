import logging
from dataclasses import dataclass

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.user import User, UserUpdate
from app.services.errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    display_name: str
    picture_url: str | None = None


class LineIdentityVerifier:
    """Resolves a LIFF access token to the LINE profile it was issued for.

    The development bypass is fixed at construction: with allow_mock=False the mock
    token is treated like any other token and sent to LINE.
    """

    def __init__(
        self,
        profile_url: str = "https://api.line.me/v2/profile",
        timeout: float = 5.0,
        allow_mock: bool = False,
        mock_token: str = "",
        mock_identity: Identity | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._profile_url = profile_url
        self._timeout = timeout
        self._allow_mock = allow_mock and bool(mock_token) and mock_identity is not None
        self._mock_token = mock_token
        self._mock_identity = mock_identity
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "LineIdentityVerifier":
        return cls(
            profile_url=settings.line_profile_url,
            timeout=settings.external_timeout_seconds,
            allow_mock=settings.mock_auth_allowed,
            mock_token=settings.mock_access_token,
            mock_identity=Identity(user_id=settings.mock_user_id, display_name=settings.mock_display_name),
        )

    async def verify(self, token: str | None) -> Identity:
        if not token:
            raise Unauthorized("Missing or invalid authorization header")
        if self._allow_mock and token == self._mock_token:
            return self._mock_identity
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self._profile_url, headers={"Authorization": f"Bearer {token}"})
        except httpx.HTTPError as e:
            logger.warning("LINE profile lookup failed: %s", e)
            raise Unauthorized("Could not verify access token") from e
        if resp.status_code != 200:
            raise Unauthorized("Invalid or expired token")
        try:
            data = resp.json()
        except ValueError as e:
            raise Unauthorized("Could not verify access token") from e
        user_id = data.get("userId")
        if not user_id:
            raise Unauthorized("Invalid or expired token")
        return Identity(
            user_id=user_id,
            display_name=data.get("displayName") or user_id,
            picture_url=data.get("pictureUrl"),
        )


async def get_or_create_user(session: AsyncSession, identity: Identity) -> User:
    result = await session.execute(select(User).where(User.line_user_id == identity.user_id))
    user = result.scalar_one_or_none()
    if user:
        return user
    user = User(
        line_user_id=identity.user_id,
        display_name=identity.display_name,
        picture_url=identity.picture_url,
    )
    session.add(user)
    try:
        # committed on its own so later rollbacks in the request keep the account
        await session.commit()
    except IntegrityError:
        # concurrent first request for the same LINE user
        await session.rollback()
        result = await session.execute(select(User).where(User.line_user_id == identity.user_id))
        return result.scalar_one()
    await session.refresh(user)
    logger.info("Created user %s for LINE id %s", user.id, identity.user_id)
    return user


async def update_user(session: AsyncSession, user: User, data: UserUpdate) -> User:
    """Apply a partial profile update. A blank display name is ignored; email/phone may be cleared."""
    changes = data.model_dump(exclude_unset=True)
    if changes.get("display_name"):
        user.display_name = changes["display_name"]
    for field in ("email", "phone"):
        if field in changes:
            setattr(user, field, changes[field] or None)
    session.add(user)
    await session.flush()
    await session.refresh(user)
    return user
