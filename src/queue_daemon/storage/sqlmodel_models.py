"""SQLModel ORM tables for the task queue store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class QueuedTask(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_claim", "claimed", "seq"),)

    seq: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(unique=True, index=True)
    route: str = Field(index=True)
    params_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    claimed: bool | None = Field(default=None)
    claimed_by: str | None = Field(default=None, index=True)
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
