"""Database models for the web API."""

from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class AppStorage(SQLModel, table=True):
    """Singleton row holding the whole application state as JSON.

    ``updated_at`` keeps the ISO timestamp exactly as written by the client
    so change detection can compare it verbatim.
    """

    __tablename__ = "app_storage"

    id: int = Field(primary_key=True)
    data: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    updated_at: Optional[str] = Field(default=None, index=True)
