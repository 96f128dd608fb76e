import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# The app reads DATABASE_URL at import time; point it at a throwaway file.
_DB_DIR = Path(tempfile.mkdtemp(prefix="exam_prep_tests_"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_DIR / 'app.db'}")
os.environ.setdefault("QS_UNLOCK_POLICY", "strict")

from sqlmodel import Session  # noqa: E402

from exam_prep.database import create_db_and_tables, make_engine  # noqa: E402

T0 = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite file database per test."""
    eng = make_engine(f"sqlite:///{tmp_path / 'progression.db'}")
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def clock():
    return FakeClock()
