from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Timezone-aware UTC; stored in TIMESTAMP WITH TIME ZONE columns."""
    return datetime.now(UTC)


class UserBase(SQLModel):
    display_name: str
    picture_url: str | None = None
    email: str | None = None
    phone: str | None = None


class User(UserBase, table=True):
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    line_user_id: str = Field(unique=True, index=True)
    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))


class UserUpdate(SQLModel):
    display_name: str | None = None
    email: str | None = None
    phone: str | None = None
