import threading
import uuid

import pytest
from sqlmodel import Session, select

from exam_prep import models, repositories
from exam_prep.config import ProgressionConfig
from exam_prep.errors import (
    ConcurrentModificationError,
    ErrorCode,
    InvalidStateError,
    WeekAlreadyCompletedError,
    WeeklyQuestionsError,
)
from exam_prep.repositories import WeekContentRepository
from exam_prep.services import CompletionService, ProgressionStatusService

STRICT = ProgressionConfig(unlock_policy="strict", week_duration_days=7)
ACCEL = ProgressionConfig(unlock_policy="accelerated", week_duration_days=7)


def _answers(n=2):
    return [{"questao_id": str(uuid.uuid4()), "alternativa": "B", "correct": True} for _ in range(n)]


def _records(session, user_id="user-1"):
    return session.exec(select(models.CompletionRecord).where(models.CompletionRecord.user_id == user_id)).all()


def test_strict_completion_records_without_advancing(session, clock):
    svc = CompletionService(session, STRICT, clock)
    result = svc.complete_week("user-1", "contest-1", 1, {"respostas": _answers(), "pontuacao": 70, "tempo_minutos": 25})
    assert result == {"proximaSemana": None, "avancou": False, "modoDesbloqueio": "strict"}
    records = _records(session)
    assert len(records) == 1
    assert records[0].score == 70
    assert records[0].total_questions == 2
    assert records[0].time_spent_minutes == 25
    assert records[0].answers[0]["chosen_option"] == "B"
    status = ProgressionStatusService(session, STRICT, clock).get_or_create("user-1", "contest-1")
    assert status.current_week_number == 1


def test_missing_optional_fields_get_defaults(session, clock):
    CompletionService(session, STRICT, clock).complete_week("user-1", "contest-1", 1, {})
    record = _records(session)[0]
    assert record.answers == []
    assert record.score == 0
    assert record.notes is None


def test_total_questions_comes_from_week_content(session, clock):
    WeekContentRepository(session).create(models.WeekContentSet(
        contest_id="contest-1", week_number=1, year=2026, title="Semana 1",
        questions=[{"id": str(i), "prompt": f"Q{i}"} for i in range(5)],
    ))
    CompletionService(session, STRICT, clock).complete_week("user-1", "contest-1", 1, {"respostas": _answers(2)})
    assert _records(session)[0].total_questions == 5


def test_second_completion_of_same_week_conflicts(session, clock):
    svc = CompletionService(session, STRICT, clock)
    svc.complete_week("user-1", "contest-1", 1, {"pontuacao": 90, "observacoes": "first"})
    clock.advance(minutes=5)
    with pytest.raises(WeekAlreadyCompletedError) as exc_info:
        svc.complete_week("user-1", "contest-1", 1, {"pontuacao": 10, "observacoes": "second"})
    assert exc_info.value.code == ErrorCode.WEEK_ALREADY_COMPLETED
    assert exc_info.value.status_code == 409
    records = _records(session)
    assert len(records) == 1
    assert records[0].score == 90
    assert records[0].notes == "first"


def test_out_of_order_completion_is_rejected(session, clock):
    svc = CompletionService(session, STRICT, clock)
    with pytest.raises(InvalidStateError) as exc_info:
        svc.complete_week("user-1", "contest-1", 2, {"pontuacao": 50})
    assert exc_info.value.status_code == 400
    assert exc_info.value.details == {"current_week": 1, "requested_week": 2}
    assert _records(session) == []


def test_accelerated_completion_advances_immediately(session, clock):
    svc = CompletionService(session, ACCEL, clock)
    assert svc.complete_week("user-1", "contest-1", 1, {"pontuacao": 60})["proximaSemana"] == 2
    assert svc.complete_week("user-1", "contest-1", 2, {"pontuacao": 70})["proximaSemana"] == 3
    result = svc.complete_week("user-1", "contest-1", 3, {"respostas": _answers(), "pontuacao": 85})
    assert result["avancou"] is True
    assert result["proximaSemana"] == 4
    assert result["modoDesbloqueio"] == "accelerated"
    status = ProgressionStatusService(session, ACCEL, clock).get_or_create("user-1", "contest-1")
    assert status.current_week_number == 4
    assert len(_records(session)) == 3


def test_accelerated_previous_week_cannot_be_completed_again(session, clock):
    svc = CompletionService(session, ACCEL, clock)
    svc.complete_week("user-1", "contest-1", 1, {})
    with pytest.raises(InvalidStateError):
        svc.complete_week("user-1", "contest-1", 1, {})


def test_record_and_advance_roll_back_together(session, clock, monkeypatch):
    svc = CompletionService(session, ACCEL, clock)
    svc.status_service.get_or_create("user-1", "contest-1")
    monkeypatch.setattr(svc.status_service.status_repo, "advance_from_week", lambda *args, **kwargs: False)
    with pytest.raises(ConcurrentModificationError):
        svc.complete_week("user-1", "contest-1", 1, {"pontuacao": 40})
    assert _records(session) == []


def test_unique_key_violation_is_reported_as_already_completed(session, clock, monkeypatch):
    svc = CompletionService(session, STRICT, clock)
    svc.complete_week("user-1", "contest-1", 1, {"pontuacao": 90})
    # a second writer that missed the existence check still hits the unique key
    monkeypatch.setattr(svc.completion_repo, "exists", lambda *args: False)
    with pytest.raises(WeekAlreadyCompletedError):
        svc.complete_week("user-1", "contest-1", 1, {"pontuacao": 10})
    records = _records(session)
    assert len(records) == 1
    assert records[0].score == 90


def test_simultaneous_accelerated_completions_advance_once(engine, clock, monkeypatch):
    with Session(engine) as s:
        ProgressionStatusService(s, ACCEL, clock).get_or_create("user-race", "contest-1")

    barrier = threading.Barrier(2, timeout=10)
    real_exists = repositories.CompletionRepository.exists

    def exists_after_both_checked_order(self, *args):
        barrier.wait()
        return real_exists(self, *args)

    monkeypatch.setattr(repositories.CompletionRepository, "exists", exists_after_both_checked_order)
    outcomes = []
    lock = threading.Lock()

    def worker(score):
        with Session(engine) as s:
            try:
                result = CompletionService(s, ACCEL, clock).complete_week("user-race", "contest-1", 1, {"pontuacao": score})
                outcome = result["avancou"]
            except WeeklyQuestionsError as exc:
                outcome = exc
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(score,)) for score in (40, 60)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    advanced = [o for o in outcomes if o is True]
    failed = [o for o in outcomes if isinstance(o, WeeklyQuestionsError)]
    assert len(advanced) == 1
    assert len(failed) == 1
    assert failed[0].code == ErrorCode.WEEK_ALREADY_COMPLETED
    assert failed[0].status_code == 409
    with Session(engine) as s:
        assert repositories.ProgressionStatusRepository(s).get("user-race", "contest-1").current_week_number == 2
        assert len(_records(s, "user-race")) == 1
