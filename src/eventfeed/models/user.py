"""Cached profile of the logged-in user."""
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    id: str = Field(primary_key=True)
    username: str = Field(index=True)
    email: str
    name: str
    role: str  # "administrator", "user"
