"""SQLModel ORM table for the question queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class Question(SQLModel, table=True):
    __tablename__ = "questions"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_processing_status", "processing_status"),)

    id: str = Field(primary_key=True)
    round: int | None = None
    clue_value: int | None = None
    daily_double_value: int | None = None
    category: str = ""
    comments: str = ""
    question: str = Field(default="", sa_column=Column(Text, nullable=True))
    a: str = ""
    b: str = ""
    c: str = ""
    d: str = ""
    air_date: str = ""
    notes: str = ""
    original_question: str = Field(default="", sa_column=Column(Text, nullable=True))
    metadata_json: str = Field(default="", sa_column=Column("metadata", Text, nullable=True))
    processing_status: str = Field(default="unprocessed")
    claim_token: str | None = None
    claimed_by: str | None = None
    updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
