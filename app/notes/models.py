from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NoteCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    content: Optional[str] = None


class NoteUpdate(NoteCreate):
    id: str = Field(min_length=1)


class NoteDelete(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)


class NoteSearch(BaseModel):
    query: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=50)


class NoteOut(BaseModel):
    id: str
    title: str
    content: Optional[str] = None
    user_id: str = Field(serialization_alias="userId")
    created_at: str = Field(serialization_alias="createdAt")
    updated_at: str = Field(serialization_alias="updatedAt")


class NoteHit(NoteOut):
    distance: float


def note_out(row: dict) -> dict:
    return NoteOut(**row).model_dump(by_alias=True)
