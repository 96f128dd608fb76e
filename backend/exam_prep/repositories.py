"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (progression
status, completion history, weekly content). Repositories return SQLModel
objects. Methods that only stage work (`add`, the advance updates) leave
the commit to the caller so a workflow can group them in one transaction.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models
from .config import STRICT


class ProgressionStatusRepository:
    """Reads and conditional writes for `ProgressionStatus` rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str, contest_id: str) -> Optional[models.ProgressionStatus]:
        """Return the status for `user_id`/`contest_id` or `None`."""
        stmt = select(models.ProgressionStatus).where(
            models.ProgressionStatus.user_id == user_id,
            models.ProgressionStatus.contest_id == contest_id,
        )
        return self.session.exec(stmt).first()

    def insert_if_absent(self, status: models.ProgressionStatus) -> Tuple[models.ProgressionStatus, bool]:
        """Insert `status` unless a row for the same key already exists.

        Returns `(row, created)`. A unique-key violation from a concurrent
        insert is rolled back and the winner's row is returned instead.
        """
        self.session.add(status)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.get(status.user_id, status.contest_id)
            if existing is None:
                raise
            return existing, False
        self.session.refresh(status)
        return status, True

    def advance_if_expired(self, user_id: str, contest_id: str, now: datetime, duration: timedelta) -> bool:
        """Compare-and-swap advance for strict mode.

        A single UPDATE whose WHERE clause re-checks `window_end <= now` at
        execution time, so of two callers racing on the same expired window
        only one matches a row. Accelerated rows never match. Not committed here.
        """
        stmt = (
            update(models.ProgressionStatus)
            .where(
                models.ProgressionStatus.user_id == user_id,
                models.ProgressionStatus.contest_id == contest_id,
                models.ProgressionStatus.unlock_policy == STRICT,
                models.ProgressionStatus.window_end <= now,
            )
            .values(
                current_week_number=models.ProgressionStatus.current_week_number + 1,
                window_start=now,
                window_end=now + duration,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def advance_from_week(self, user_id: str, contest_id: str, current_week_number: int, now: datetime, duration: timedelta) -> bool:
        """Move the user from `current_week_number` to the next week with a fresh window.

        The WHERE clause pins the expected week so a stale caller cannot
        skip a week. Not committed here.
        """
        stmt = (
            update(models.ProgressionStatus)
            .where(
                models.ProgressionStatus.user_id == user_id,
                models.ProgressionStatus.contest_id == contest_id,
                models.ProgressionStatus.current_week_number == current_week_number,
            )
            .values(
                current_week_number=current_week_number + 1,
                window_start=now,
                window_end=now + duration,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def list_expired_strict(self, now: datetime, limit: int) -> List[Tuple[str, str]]:
        """`(user_id, contest_id)` keys of strict rows whose window has ended, oldest window first."""
        stmt = (
            select(models.ProgressionStatus.user_id, models.ProgressionStatus.contest_id)
            .where(
                models.ProgressionStatus.unlock_policy == STRICT,
                models.ProgressionStatus.window_end <= now,
            )
            .order_by(models.ProgressionStatus.window_end)
            .limit(limit)
        )
        return [(user_id, contest_id) for user_id, contest_id in self.session.exec(stmt).all()]


class CompletionRepository:
    """Append-only storage for `CompletionRecord`s."""
    def __init__(self, session: Session):
        self.session = session

    def exists(self, user_id: str, contest_id: str, week_number: int) -> bool:
        stmt = select(models.CompletionRecord.id).where(
            models.CompletionRecord.user_id == user_id,
            models.CompletionRecord.contest_id == contest_id,
            models.CompletionRecord.week_number == week_number,
        )
        return self.session.exec(stmt).first() is not None

    def add(self, record: models.CompletionRecord) -> models.CompletionRecord:
        """Stage `record` and flush so unique-key violations surface immediately."""
        self.session.add(record)
        self.session.flush()
        return record

    def list_for_user(self, user_id: str, contest_id: str) -> List[models.CompletionRecord]:
        stmt = select(models.CompletionRecord).where(
            models.CompletionRecord.user_id == user_id,
            models.CompletionRecord.contest_id == contest_id,
        ).order_by(models.CompletionRecord.week_number)
        return self.session.exec(stmt).all()

    def page(self, user_id: str, contest_id: str, limit: int, after: Optional[Tuple[datetime, str]] = None) -> List[models.CompletionRecord]:
        """Return up to `limit` records, newest first, strictly after the `(completed_at, id)` keyset."""
        stmt = select(models.CompletionRecord).where(
            models.CompletionRecord.user_id == user_id,
            models.CompletionRecord.contest_id == contest_id,
        )
        if after is not None:
            completed_at, record_id = after
            stmt = stmt.where(
                or_(
                    models.CompletionRecord.completed_at < completed_at,
                    and_(
                        models.CompletionRecord.completed_at == completed_at,
                        models.CompletionRecord.id < record_id,
                    ),
                )
            )
        stmt = stmt.order_by(
            models.CompletionRecord.completed_at.desc(),
            models.CompletionRecord.id.desc(),
        ).limit(limit)
        return self.session.exec(stmt).all()


class WeekContentRepository:
    """Lookups and publishing of weekly question sets."""
    def __init__(self, session: Session):
        self.session = session

    def get_week(self, contest_id: str, week_number: int, year: Optional[int] = None) -> Optional[models.WeekContentSet]:
        """Return the active set for a week, preferring the most recent year."""
        stmt = select(models.WeekContentSet).where(
            models.WeekContentSet.contest_id == contest_id,
            models.WeekContentSet.week_number == week_number,
            models.WeekContentSet.active == True,  # noqa: E712
        )
        if year is not None:
            stmt = stmt.where(models.WeekContentSet.year == year)
        stmt = stmt.order_by(models.WeekContentSet.year.desc())
        return self.session.exec(stmt).first()

    def list_for_contest(self, contest_id: str, year: Optional[int] = None) -> List[models.WeekContentSet]:
        stmt = select(models.WeekContentSet).where(
            models.WeekContentSet.contest_id == contest_id,
            models.WeekContentSet.active == True,  # noqa: E712
        )
        if year is not None:
            stmt = stmt.where(models.WeekContentSet.year == year)
        stmt = stmt.order_by(models.WeekContentSet.year, models.WeekContentSet.week_number)
        return self.session.exec(stmt).all()

    def exists(self, contest_id: str, week_number: int, year: int) -> bool:
        stmt = select(models.WeekContentSet.id).where(
            models.WeekContentSet.contest_id == contest_id,
            models.WeekContentSet.week_number == week_number,
            models.WeekContentSet.year == year,
        )
        return self.session.exec(stmt).first() is not None

    def create(self, content: models.WeekContentSet) -> models.WeekContentSet:
        self.session.add(content)
        self.session.commit()
        self.session.refresh(content)
        return content
