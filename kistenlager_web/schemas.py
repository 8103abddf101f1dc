"""Pydantic/SQLModel schemas for the web API."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from sqlmodel import Field, SQLModel


class StorageDocument(SQLModel):
    id: int
    data: Optional[Dict[str, Any]] = None
    updated_at: Optional[str] = None


class BoxFields(SQLModel):
    varieties: Optional[List[str]] = None
    sorting: Optional[str] = None
    date: Optional[dt.date] = None
    fill_level: Optional[str] = None
    custom_traits: Optional[Dict[str, Optional[str]]] = None


class BoxUpdate(BoxFields):
    """Fields left out of the request keep their value; ``null`` clears one."""


class BulkEdit(BoxFields):
    """Empty or missing fields leave the selected boxes untouched."""

    ids: List[int]


class BulkClear(SQLModel):
    ids: List[int]


class BoxRead(SQLModel):
    id: int
    varieties: List[str] = Field(default_factory=list)
    sorting: Optional[str] = None
    date: Optional[str] = None
    fill_level: Optional[str] = None
    custom_traits: Dict[str, str] = Field(default_factory=dict)
    status: str
    status_label: str
    color: str


class NameCreate(SQLModel):
    name: str


class NameRename(SQLModel):
    name: str


class TraitRead(SQLModel):
    name: str
    options: List[str] = Field(default_factory=list)


class VocabularyRead(SQLModel):
    varieties: List[str]
    sortings: List[str]
    fill_levels: List[str]
    custom_traits: List[TraitRead]


class SummaryFillLevel(SQLModel):
    name: str
    count: int


class SummarySorting(SQLModel):
    name: str
    weighted_total: float
    fill_levels: List[SummaryFillLevel]


class SummaryVariety(SQLModel):
    name: str
    weighted_total: float
    sortings: List[SummarySorting]


class Summary(SQLModel):
    empty_boxes: int
    varieties: List[SummaryVariety]
