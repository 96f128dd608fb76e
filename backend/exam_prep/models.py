"""SQLModel data models.

This module defines the tables used by the weekly questions progression
engine. Timestamps are timezone-aware UTC in Python; `UTCDateTime` keeps
them that way across backends (SQLite drops the offset on storage).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field

from .config import STRICT
from .utils.timeutil import to_utc, utcnow


def _new_id() -> str:
    return str(uuid4())


class UTCDateTime(TypeDecorator):
    """Store datetimes as UTC and always load them back timezone-aware."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = to_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return to_utc(value)


def _utc_column(index: bool = False) -> Column:
    return Column(UTCDateTime(), nullable=False, index=index)


class ProgressionStatus(SQLModel, table=True):
    """A user's position in the weekly question sequence of one contest.

    Fields:
    - `current_week_number`: week the user is on, starting at 1; never decreases
    - `window_start` / `window_end`: active interval of the current week
    - `unlock_policy`: `strict` or `accelerated`, snapshotted at creation
    """
    __tablename__ = "progression_status"
    __table_args__ = (UniqueConstraint("user_id", "contest_id", name="uq_progression_user_contest"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True, nullable=False)
    contest_id: str = Field(index=True, nullable=False)
    current_week_number: int = Field(default=1, ge=1)
    window_start: datetime = Field(sa_column=_utc_column())
    window_end: datetime = Field(sa_column=_utc_column(index=True))
    unlock_policy: str = Field(default=STRICT, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())


class WeekContentSet(SQLModel, table=True):
    """Published question set for one contest week.

    `questions` is an ordered list of dicts with `id`, `prompt`, `choices`,
    `correct_choice`, `explanation`, `subject`, `topic` and `difficulty`.
    """
    __tablename__ = "week_content_set"

    id: str = Field(default_factory=_new_id, primary_key=True)
    contest_id: str = Field(index=True)
    week_number: int = Field(index=True)
    year: int
    title: Optional[str] = None
    description: Optional[str] = None
    questions: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    active: bool = True
    published_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column())


class CompletionRecord(SQLModel, table=True):
    """Append-only record of a user finishing one week.

    The unique key on (user, contest, week) is the authoritative guard
    against a week being completed twice.
    """
    __tablename__ = "completion_record"
    __table_args__ = (
        UniqueConstraint("user_id", "contest_id", "week_number", name="uq_completion_user_contest_week"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    contest_id: str = Field(index=True)
    week_number: int
    completed_at: datetime = Field(default_factory=utcnow, sa_column=_utc_column(index=True))
    score: float = 0
    total_questions: int = 0
    answers: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    time_spent_minutes: Optional[float] = None
    notes: Optional[str] = None
