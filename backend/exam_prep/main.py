"""FastAPI application entrypoint and HTTP controllers.

This module defines the weekly questions endpoints of the exam-prep
backend. Controllers are intentionally thin: they validate input, resolve
identity and contest, delegate to services and wrap results in the
standard envelope (see `responses.py`).

Endpoints implemented:
- GET /api/v1/questoes-semanais/atual
- GET /api/v1/questoes-semanais/historico
- GET /api/v1/questoes-semanais/roadmap
- POST /api/v1/questoes-semanais/{numero_semana}/concluir
- GET /health
"""

import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session

from . import services
from .auth import get_contest_id, get_current_user_id
from .config import ProgressionConfig, settings
from .database import create_db_and_tables, engine, get_session
from .errors import ErrorCode, InternalError, WeeklyQuestionsError
from .jobs import AdvanceScheduler
from .responses import error_body, error_response, success_response
from .schemas import CompleteWeekIn
from .utils.rate_limit import InMemoryRateLimiter
from .utils.timeutil import utcnow

PREFIX = "/api/v1/questoes-semanais"

logger = logging.getLogger("exam_prep.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

# Invalid QS_* values raise ConfigurationError here and the process does not start.
progression_config = ProgressionConfig.from_env()
create_db_and_tables()


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.RUN_SCHEDULER:
        scheduler = AdvanceScheduler(engine, app.state.progression_config)
        scheduler.start()
    app.state.scheduler = scheduler
    yield
    if scheduler is not None:
        scheduler.stop()


app = FastAPI(title="Exam Prep Weekly Questions API", lifespan=lifespan)
app.state.progression_config = progression_config
app.state.clock = utcnow
app.state.complete_rate_limiter = InMemoryRateLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    correlation_id = request.headers.get("X-Correlation-ID")
    request.state.request_id = req_id
    request.state.correlation_id = correlation_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "correlation_id": correlation_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
        raise
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    response.headers["X-Request-ID"] = req_id
    if correlation_id:
        response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Server-Duration"] = str(elapsed_ms)
    if request.url.path.startswith(PREFIX):
        response.headers["X-Feature"] = "questoes-semanais"
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "correlation_id": correlation_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(WeeklyQuestionsError)
async def weekly_questions_error_handler(request: Request, exc: WeeklyQuestionsError):
    if exc.status_code >= 500:
        logger.error("request_error code=%s message=%s", exc.code.value, exc.message)
    return error_response(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = {}
    for err in exc.errors():
        path = ".".join(str(p) for p in err.get("loc", ()))
        fields.setdefault(path, []).append(err.get("msg", "invalid value"))
    only_missing = bool(exc.errors()) and all(err.get("type") == "missing" for err in exc.errors())
    code = ErrorCode.MISSING_REQUIRED_FIELD if only_missing else ErrorCode.VALIDATION_ERROR
    return JSONResponse(
        status_code=400,
        content=error_body(
            code.value,
            "invalid input data",
            {"fields": fields},
            getattr(request.state, "correlation_id", None),
            getattr(request.state, "request_id", None),
        ),
    )


def get_progression_config(request: Request) -> ProgressionConfig:
    return request.app.state.progression_config


def get_clock(request: Request):
    return request.app.state.clock


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)


def _call(operation: str, fn):
    """Run a service call, normalizing unexpected exceptions to INTERNAL_ERROR."""
    try:
        return fn()
    except WeeklyQuestionsError:
        raise
    except Exception as exc:
        logger.exception("unexpected_error operation=%s", operation)
        raise InternalError() from exc


@app.get(f"{PREFIX}/atual")
def get_current_week(
    request: Request,
    include_roadmap: bool = Query(True),
    include_historico: bool = Query(True),
    historico_limit: int = Query(10, ge=1, le=20),
    user_id: str = Depends(get_current_user_id),
    contest_id: str = Depends(get_contest_id),
    db: Session = Depends(get_session),
    config: ProgressionConfig = Depends(get_progression_config),
    clock=Depends(get_clock),
):
    """Return the user's current week: content, status and optional roadmap/history.

    `status.tempo_restante_ms` is present only while a strict window is open.
    """
    started = time.perf_counter()
    svc = services.WeeklyQuestionsService(db, config, clock)
    data = _call("get_current_week", lambda: svc.get_current_week(
        user_id,
        contest_id,
        include_roadmap=include_roadmap,
        include_history=include_historico,
        history_limit=historico_limit,
    ))
    return success_response(request, data, _elapsed_ms(started))


@app.get(f"{PREFIX}/historico")
def get_history(
    request: Request,
    cursor: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    contest_id: str = Depends(get_contest_id),
    db: Session = Depends(get_session),
    config: ProgressionConfig = Depends(get_progression_config),
    clock=Depends(get_clock),
):
    """Return completed weeks, most recent first, paginated by an opaque cursor."""
    started = time.perf_counter()
    svc = services.WeeklyQuestionsService(db, config, clock)
    page = _call("get_history", lambda: svc.get_history(user_id, contest_id, cursor, limit))
    pagination = {
        "limit": page["limit"],
        "count": len(page["items"]),
        "nextCursor": page["next_cursor"],
    }
    return success_response(request, page["items"], _elapsed_ms(started), pagination)


@app.get(f"{PREFIX}/roadmap")
def get_roadmap(
    request: Request,
    include_stats: bool = Query(False),
    ano: Optional[int] = Query(None, ge=2000, le=2100),
    user_id: str = Depends(get_current_user_id),
    contest_id: str = Depends(get_contest_id),
    db: Session = Depends(get_session),
    config: ProgressionConfig = Depends(get_progression_config),
    clock=Depends(get_clock),
):
    """Return per-week status (completed/current/missed/locked).

    With `include_stats=true` the data becomes `{semanas, estatisticas}`.
    """
    started = time.perf_counter()
    svc = services.WeeklyQuestionsService(db, config, clock)
    entries = _call("get_roadmap", lambda: svc.get_roadmap(user_id, contest_id, year=ano))
    data = entries
    if include_stats:
        data = {"semanas": entries, "estatisticas": _call("get_roadmap_stats", lambda: svc.get_roadmap_stats(user_id, contest_id))}
    return success_response(request, data, _elapsed_ms(started))


@app.post(f"{PREFIX}/{{numero_semana}}/concluir")
def complete_week(
    request: Request,
    payload: CompleteWeekIn,
    numero_semana: int = Path(..., ge=1),
    user_id: str = Depends(get_current_user_id),
    contest_id: str = Depends(get_contest_id),
    db: Session = Depends(get_session),
    config: ProgressionConfig = Depends(get_progression_config),
    clock=Depends(get_clock),
):
    """Complete the user's current week.

    Accelerated users advance immediately (`avancou=true`); strict users
    stay on the week until its window expires.
    """
    started = time.perf_counter()
    request.app.state.complete_rate_limiter.check(f"{user_id}:complete", settings.COMPLETE_RATE_LIMIT_PER_MIN, 60)
    svc = services.CompletionService(db, config, clock)
    submission = payload.model_dump(mode="json")
    result = _call("complete_week", lambda: svc.complete_week(user_id, contest_id, numero_semana, submission))
    return success_response(request, result, _elapsed_ms(started))


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
