from pydantic import Field

from app.api.schemas.base import CamelModel


class UserOut(CamelModel):
    id: int
    line_user_id: str
    display_name: str
    picture_url: str | None = None
    email: str | None = None
    phone: str | None = None


class UserUpdateRequest(CamelModel):
    display_name: str | None = Field(default=None, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=30)


class TeacherOut(CamelModel):
    id: int
    name: str
    picture_url: str | None = None
    bio: str | None = None


class SubjectOut(CamelModel):
    id: int
    name: str
