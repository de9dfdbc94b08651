from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field as PydanticField, model_validator
from sqlmodel import Field, SQLModel


class Figure(SQLModel, table=True):
    __tablename__ = "figures"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    owner_id: str = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    manufacturer: str = Field(index=True)
    name: str = Field(index=True)
    scale: str = Field(default="")
    source_link: str = Field(default="")  # MyFigureCollection item URL
    location: str = Field(default="")
    box_number: str = Field(default="")
    image_url: str = Field(default="")


# --- Pydantic schemas for request/response validation ---


class FigureCreate(BaseModel):
    manufacturer: str = PydanticField(default="", max_length=100)
    name: str = PydanticField(default="", max_length=200)
    scale: str = PydanticField(default="", max_length=50)
    source_link: str = PydanticField(default="", max_length=500)
    location: str = PydanticField(default="", max_length=100)
    box_number: str = PydanticField(default="", max_length=50)
    image_url: str = PydanticField(default="", max_length=1000)

    @model_validator(mode="after")
    def require_identity_or_link(self) -> "FigureCreate":
        """name and manufacturer may only be left blank when a source link can fill them."""
        self.manufacturer = self.manufacturer.strip()
        self.name = self.name.strip()
        if self.source_link.strip():
            return self
        if not self.manufacturer or not self.name:
            raise ValueError(
                "manufacturer and name are required unless source_link is provided"
            )
        return self


class FigureUpdate(BaseModel):
    manufacturer: str | None = PydanticField(default=None, max_length=100)
    name: str | None = PydanticField(default=None, max_length=200)
    scale: str | None = PydanticField(default=None, max_length=50)
    source_link: str | None = PydanticField(default=None, max_length=500)
    location: str | None = PydanticField(default=None, max_length=100)
    box_number: str | None = PydanticField(default=None, max_length=50)
    image_url: str | None = PydanticField(default=None, max_length=1000)

    @model_validator(mode="after")
    def reject_blank_identity(self) -> "FigureUpdate":
        for field_name in ("manufacturer", "name"):
            value = getattr(self, field_name)
            if value is not None:
                value = value.strip()
                if not value:
                    raise ValueError(f"{field_name} cannot be empty")
                setattr(self, field_name, value)
        return self


class FigureRead(BaseModel):
    id: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    manufacturer: str
    name: str
    scale: str
    source_link: str
    location: str
    box_number: str
    image_url: str

    model_config = {"from_attributes": True}


class FigurePage(BaseModel):
    """Paginated listing envelope."""

    success: bool = True
    count: int
    page: int
    pages: int
    total: int
    data: list[FigureRead]


class StatBucket(BaseModel):
    value: str
    count: int


class FigureStats(BaseModel):
    total_count: int
    manufacturer_stats: list[StatBucket]
    scale_stats: list[StatBucket]
    location_stats: list[StatBucket]
