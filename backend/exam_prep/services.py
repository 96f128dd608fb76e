"""Business logic services used by HTTP controllers and the catch-up job.

This module holds the weekly question progression engine:

- `ProgressionStatusService` owns the per-(user, contest) status row and
  performs policy-specific advancement.
- `CompletionService` records a finished week and advances accelerated
  users in the same transaction.
- `WeeklyQuestionsService` composes the read side: current week, history
  pages and the roadmap.
- `WeekContentImportService` publishes week question sets from import files.

Services receive a `Session`, the immutable `ProgressionConfig` and an
optional clock so tests can move time explicitly.
"""

import base64
import binascii
import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from . import models, repositories
from .config import ACCELERATED, STRICT, ProgressionConfig
from .errors import (
    ConcurrentModificationError,
    DatabaseError,
    InvalidStateError,
    ValidationError,
    WeekAlreadyCompletedError,
    error_code_of,
)
from .schemas import WeekContentIn
from .utils.timeutil import Clock, isoformat, parse_isoformat, utcnow

logger = logging.getLogger("exam_prep.progression")


def _log_event(event: str, payload: dict) -> None:
    logger.info("%s %s", event, json.dumps(payload, default=str, ensure_ascii=True))


class ProgressionStatusService:
    """Progression status store: get-or-create, unlock checks and advancement."""
    def __init__(self, session: Session, config: ProgressionConfig, clock: Clock = utcnow):
        self.session = session
        self.config = config
        self.clock = clock
        self.status_repo = repositories.ProgressionStatusRepository(session)

    def get_or_create(self, user_id: str, contest_id: str) -> models.ProgressionStatus:
        """Return the user's status for `contest_id`, creating week 1 on first access.

        Creation is conflict-safe: if another request inserts the same key
        first, its row is returned and nothing else is written.
        """
        existing = self.status_repo.get(user_id, contest_id)
        if existing:
            return existing
        now = self.clock()
        status = models.ProgressionStatus(
            user_id=user_id,
            contest_id=contest_id,
            current_week_number=1,
            window_start=now,
            window_end=now + self.config.week_duration,
            unlock_policy=self.config.unlock_policy,
            created_at=now,
            updated_at=now,
        )
        row, created = self.status_repo.insert_if_absent(status)
        if created:
            _log_event("status_created", {
                "user_id": user_id,
                "contest_id": contest_id,
                "unlock_policy": row.unlock_policy,
                "window_end": isoformat(row.window_end),
            })
        return row

    @staticmethod
    def _can_advance(status: models.ProgressionStatus, now) -> bool:
        if status.unlock_policy == ACCELERATED:
            return True
        return now >= status.window_end

    def can_advance(self, user_id: str, contest_id: str) -> bool:
        status = self.get_or_create(user_id, contest_id)
        return self._can_advance(status, self.clock())

    def get_current_week_info(self, user_id: str, contest_id: str) -> dict:
        """Facts about the current week.

        `remaining_millis` is only present for strict users whose window
        is still open.
        """
        status = self.get_or_create(user_id, contest_id)
        now = self.clock()
        info = {
            "week_number": status.current_week_number,
            "window_start": status.window_start,
            "window_end": status.window_end,
            "can_advance": self._can_advance(status, now),
            "unlock_policy": status.unlock_policy,
        }
        if status.unlock_policy == STRICT and now < status.window_end:
            info["remaining_millis"] = int((status.window_end - now).total_seconds() * 1000)
        return info

    def advance_strict(self, user_id: str, contest_id: str) -> bool:
        """Advance one week if the window has expired at execution time.

        The expiry check and the write are one conditional UPDATE, so two
        concurrent callers on the same expired window produce exactly one
        increment; the loser gets `False`.
        """
        now = self.clock()
        try:
            advanced = self.status_repo.advance_if_expired(user_id, contest_id, now, self.config.week_duration)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        if advanced:
            _log_event("week_advanced", {"user_id": user_id, "contest_id": contest_id, "mode": STRICT})
        return advanced

    def advance_accelerated(self, user_id: str, contest_id: str, current_week_number: int, commit: bool = True) -> bool:
        """Move the user past `current_week_number` immediately with a fresh window.

        With `commit=False` the write joins the caller's transaction.
        Returns False when the row is no longer on `current_week_number`.
        """
        now = self.clock()
        advanced = self.status_repo.advance_from_week(
            user_id, contest_id, current_week_number, now, self.config.week_duration
        )
        if commit:
            self.session.commit()
        if advanced:
            _log_event("week_advanced", {
                "user_id": user_id,
                "contest_id": contest_id,
                "mode": ACCELERATED,
                "week_number": current_week_number + 1,
            })
        return advanced

    def process_automatic_advances(self) -> dict:
        """Advance every strict user whose window expired, up to the concurrency cap.

        Each advance runs on its own worker session; a failure is logged
        and counted without stopping the rest of the batch.
        """
        if not self.config.is_strict:
            return {"processed": 0, "advanced": 0, "errors": 0}
        cap = self.config.max_concurrent_advances
        keys = self.status_repo.list_expired_strict(self.clock(), cap)
        processed = advanced = errors = 0
        if not keys:
            return {"processed": 0, "advanced": 0, "errors": 0}
        bind = self.session.get_bind()

        def _advance(user_id: str, contest_id: str) -> bool:
            with Session(bind) as worker_session:
                worker = ProgressionStatusService(worker_session, self.config, self.clock)
                return worker.advance_strict(user_id, contest_id)

        with ThreadPoolExecutor(max_workers=cap) as executor:
            futures = {executor.submit(_advance, user_id, contest_id): (user_id, contest_id) for user_id, contest_id in keys}
            for future in as_completed(futures):
                processed += 1
                user_id, contest_id = futures[future]
                try:
                    if future.result():
                        advanced += 1
                except Exception as exc:
                    errors += 1
                    logger.exception(
                        "automatic_advance_failed user_id=%s contest_id=%s code=%s",
                        user_id, contest_id, error_code_of(exc).value,
                    )
        # rows were advanced through the worker sessions
        self.session.expire_all()
        summary = {"processed": processed, "advanced": advanced, "errors": errors}
        _log_event("automatic_advances_done", summary)
        return summary


def _normalize_answer(raw: dict) -> dict:
    """Map an API answer item to the stored answer shape."""
    return {
        "question_id": str(raw.get("questao_id")) if raw.get("questao_id") is not None else None,
        "chosen_option": raw.get("alternativa"),
        "is_correct": raw.get("correct"),
        "response_time_seconds": raw.get("tempo_resposta_segundos"),
    }


class CompletionService:
    """Record a user's submission for a week and advance per policy."""
    def __init__(self, session: Session, config: ProgressionConfig, clock: Clock = utcnow):
        self.session = session
        self.config = config
        self.clock = clock
        self.status_service = ProgressionStatusService(session, config, clock)
        self.completion_repo = repositories.CompletionRepository(session)
        self.content_repo = repositories.WeekContentRepository(session)

    def complete_week(self, user_id: str, contest_id: str, week_number: int, submission: Optional[dict] = None) -> dict:
        """Complete `week_number` for the user.

        The week must be the user's current week and must not have been
        completed before. Accelerated users move to the next week in the
        same transaction as the record insert; strict users wait for their
        window to expire.

        Returns `{proximaSemana, avancou, modoDesbloqueio}`.
        """
        submission = submission or {}
        status = self.status_service.get_or_create(user_id, contest_id)
        if status.current_week_number != week_number:
            raise InvalidStateError(
                f"only the current week ({status.current_week_number}) can be completed, not week {week_number}",
                {"current_week": status.current_week_number, "requested_week": week_number},
            )
        if self.completion_repo.exists(user_id, contest_id, week_number):
            raise WeekAlreadyCompletedError(week_number, user_id)

        policy = status.unlock_policy
        answers = [_normalize_answer(a) for a in (submission.get("respostas") or [])]
        content = self.content_repo.get_week(contest_id, week_number)
        total_questions = len(content.questions) if content and content.questions else len(answers)
        score = submission.get("pontuacao")
        record = models.CompletionRecord(
            user_id=user_id,
            contest_id=contest_id,
            week_number=week_number,
            completed_at=self.clock(),
            score=score if score is not None else 0,
            total_questions=total_questions,
            answers=answers,
            time_spent_minutes=submission.get("tempo_minutos"),
            notes=submission.get("observacoes"),
        )

        advanced = False
        try:
            self.completion_repo.add(record)
            if policy == ACCELERATED:
                advanced = self.status_service.advance_accelerated(user_id, contest_id, week_number, commit=False)
                if not advanced:
                    raise ConcurrentModificationError("progression_status", f"{user_id}:{contest_id}")
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise WeekAlreadyCompletedError(week_number, user_id)
        except ConcurrentModificationError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise DatabaseError("failed to record week completion", exc)

        _log_event("week_completed", {
            "user_id": user_id,
            "contest_id": contest_id,
            "week_number": week_number,
            "score": record.score,
            "advanced": advanced,
            "mode": policy,
        })
        return {
            "proximaSemana": week_number + 1 if advanced else None,
            "avancou": advanced,
            "modoDesbloqueio": policy,
        }


def encode_cursor(record: models.CompletionRecord) -> str:
    raw = f"{isoformat(record.completed_at)}|{record.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str):
    """Decode a history cursor into the `(completed_at, id)` keyset."""
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8")
        stamp, record_id = raw.split("|", 1)
        return parse_isoformat(stamp), record_id
    except (ValueError, UnicodeError, binascii.Error):
        raise ValidationError("invalid cursor", {"cursor": cursor})


def history_item(record: models.CompletionRecord) -> dict:
    return {
        "id": record.id,
        "numero_semana": record.week_number,
        "concluido_em": isoformat(record.completed_at),
        "pontuacao": record.score,
        "total_questoes": record.total_questions,
        "tempo_minutos": record.time_spent_minutes,
        "observacoes": record.notes,
    }


def _question_item(question: dict, reveal: bool) -> dict:
    item = {
        "id": str(question.get("id", "")),
        "enunciado": question.get("prompt", ""),
        "alternativas": question.get("choices") or [],
        "disciplina": question.get("subject"),
        "assunto": question.get("topic"),
        "dificuldade": question.get("difficulty"),
    }
    if reveal:
        item["resposta_correta"] = question.get("correct_choice")
        item["explicacao"] = question.get("explanation")
    return item


class WeeklyQuestionsService:
    """Read-side projections: current week, history and roadmap."""
    def __init__(self, session: Session, config: ProgressionConfig, clock: Clock = utcnow):
        self.session = session
        self.config = config
        self.clock = clock
        self.status_service = ProgressionStatusService(session, config, clock)
        self.completion_repo = repositories.CompletionRepository(session)
        self.content_repo = repositories.WeekContentRepository(session)

    def get_history(self, user_id: str, contest_id: str, cursor: Optional[str] = None, limit: int = 10) -> dict:
        """Return one page of completions, most recent first.

        `next_cursor` is None when no further records exist.
        """
        if limit < 1 or limit > 100:
            raise ValidationError("limit must be between 1 and 100", {"limit": limit})
        after = decode_cursor(cursor) if cursor else None
        rows = self.completion_repo.page(user_id, contest_id, limit + 1, after)
        has_more = len(rows) > limit
        page = rows[:limit]
        return {
            "items": [history_item(r) for r in page],
            "next_cursor": encode_cursor(page[-1]) if has_more and page else None,
            "limit": limit,
        }

    def get_roadmap(self, user_id: str, contest_id: str, year: Optional[int] = None) -> List[dict]:
        """Classify weeks 1..current+lookahead as completed, current, missed or locked.

        Locked weeks of strict users carry `liberaEm`: the current window
        end for the next week, one more duration per week after that.
        """
        status = self.status_service.get_or_create(user_id, contest_id)
        current = status.current_week_number
        completed = {r.week_number: r for r in self.completion_repo.list_for_user(user_id, contest_id)}
        contents = {c.week_number: c for c in self.content_repo.list_for_contest(contest_id, year)}
        entries = []
        for week in range(1, current + self.config.roadmap_lookahead_weeks + 1):
            entry = {"numero_semana": week}
            if week in completed:
                entry["status"] = "completed"
                entry["pontuacao"] = completed[week].score
            elif week == current:
                entry["status"] = "current"
            elif week < current:
                entry["status"] = "missed"
            else:
                entry["status"] = "locked"
                if status.unlock_policy == STRICT:
                    entry["liberaEm"] = isoformat(status.window_end + (week - current - 1) * self.config.week_duration)
            content = contents.get(week)
            if content is not None:
                entry["ano"] = content.year
                entry["titulo"] = content.title
            entries.append(entry)
        return entries

    def get_roadmap_stats(self, user_id: str, contest_id: str) -> dict:
        status = self.status_service.get_or_create(user_id, contest_id)
        records = self.completion_repo.list_for_user(user_id, contest_id)
        scores = [r.score for r in records]
        return {
            "semana_atual": status.current_week_number,
            "semanas_concluidas": len(records),
            "pontuacao_media": round(sum(scores) / len(scores), 2) if scores else None,
            "melhor_pontuacao": max(scores) if scores else None,
        }

    def get_current_week(
        self,
        user_id: str,
        contest_id: str,
        include_roadmap: bool = True,
        include_history: bool = True,
        history_limit: int = 10,
    ) -> dict:
        """Compose the current week view: content, status and optional extras.

        Correct answers and explanations are only revealed once the week
        has been completed.
        """
        info = self.status_service.get_current_week_info(user_id, contest_id)
        week_number = info["week_number"]
        content = self.content_repo.get_week(contest_id, week_number)
        reveal = self.completion_repo.exists(user_id, contest_id, week_number)
        status_block = {
            "semana_atual": week_number,
            "inicio_semana_em": isoformat(info["window_start"]),
            "fim_semana_em": isoformat(info["window_end"]),
            "modo_desbloqueio": info["unlock_policy"],
            "pode_avancar": info["can_advance"],
            "concluida": reveal,
        }
        if "remaining_millis" in info:
            status_block["tempo_restante_ms"] = info["remaining_millis"]
            status_block["tempo_restante"] = info["remaining_millis"] // 1000
        data = {
            "questao_semanal": None,
            "questoes": [],
            "status": status_block,
        }
        if content is not None:
            data["questao_semanal"] = {
                "id": content.id,
                "numero_semana": content.week_number,
                "ano": content.year,
                "titulo": content.title,
                "descricao": content.description,
            }
            data["questoes"] = [_question_item(q, reveal) for q in content.questions or []]
        if include_history:
            data["historico"] = self.get_history(user_id, contest_id, limit=history_limit)["items"]
        if include_roadmap:
            data["roadmap"] = self.get_roadmap(user_id, contest_id)
        return data


class WeekContentImportService:
    """Publish weekly question sets from an import file."""
    def __init__(self, session: Session):
        self.session = session
        self.content_repo = repositories.WeekContentRepository(session)

    def import_sets(self, contest_id: str, items: list, dry_run: bool = False) -> dict:
        """Create a `WeekContentSet` per valid item of `items`.

        Items that fail validation are reported in `errors` by index. A set
        that already exists for the same contest, week and year is skipped.
        """
        created = 0
        skipped = 0
        errors = []
        for idx, raw in enumerate(items):
            try:
                item = WeekContentIn.model_validate(raw)
            except SchemaValidationError as e:
                errors.append({"index": idx, "error": str(e)})
                continue
            if self.content_repo.exists(contest_id, item.week_number, item.year):
                skipped += 1
                continue
            if not dry_run:
                self.content_repo.create(models.WeekContentSet(
                    contest_id=contest_id,
                    week_number=item.week_number,
                    year=item.year,
                    title=item.title,
                    description=item.description,
                    questions=[q.model_dump() for q in item.questions],
                    active=item.active,
                ))
            created += 1
        _log_event("week_content_imported", {
            "contest_id": contest_id,
            "created": created,
            "skipped": skipped,
            "errors": len(errors),
            "dry_run": dry_run,
        })
        return {"created": created, "skipped": skipped, "errors": errors}
