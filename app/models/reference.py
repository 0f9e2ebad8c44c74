from sqlmodel import Field, SQLModel


class Teacher(SQLModel, table=True):
    __tablename__ = "teachers"
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    picture_url: str | None = None
    bio: str | None = None
    is_active: bool = True


class Subject(SQLModel, table=True):
    __tablename__ = "subjects"
    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    is_active: bool = True
