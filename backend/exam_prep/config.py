"""Application settings and progression policy configuration."""

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError

STRICT = "strict"
ACCELERATED = "accelerated"
UNLOCK_POLICIES = (STRICT, ACCELERATED)

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'app.db'}"


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    DATABASE_URL: str
    LOG_LEVEL: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    RUN_SCHEDULER: bool
    COMPLETE_RATE_LIMIT_PER_MIN: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.DATABASE_URL = os.getenv("DATABASE_URL", _DEFAULT_DB_URL)
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.RUN_SCHEDULER = os.getenv("QS_RUN_SCHEDULER", "false").lower() == "true"
        self.COMPLETE_RATE_LIMIT_PER_MIN = int(os.getenv("QS_COMPLETE_RATE_LIMIT_PER_MIN", "30"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")


def _read_int(environ: Mapping[str, str], key: str, default: int, low: int, high: int) -> int:
    raw = environ.get(key, str(default))
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", key)
    if value < low or value > high:
        raise ConfigurationError(f"{key} must be between {low} and {high}, got {value}", key)
    return value


@dataclass(frozen=True)
class ProgressionConfig:
    """Unlock policy and timing constants for weekly question progression.

    Built once at process start (see `from_env`) and handed to the status
    store, the completion workflow and the catch-up job.
    """

    unlock_policy: str = STRICT
    week_duration_days: int = 7
    max_concurrent_advances: int = 10
    advance_check_interval_ms: int = 60_000
    roadmap_lookahead_weeks: int = 4

    def __post_init__(self):
        if self.unlock_policy not in UNLOCK_POLICIES:
            raise ConfigurationError(
                f"QS_UNLOCK_POLICY must be 'strict' or 'accelerated', got {self.unlock_policy!r}",
                "QS_UNLOCK_POLICY",
            )
        checks = (
            ("QS_WEEK_DURATION_DAYS", self.week_duration_days, 1, 365),
            ("QS_MAX_CONCURRENT_ADVANCES", self.max_concurrent_advances, 1, 100),
            ("QS_ADVANCE_CHECK_INTERVAL_MS", self.advance_check_interval_ms, 1_000, 300_000),
            ("QS_ROADMAP_LOOKAHEAD_WEEKS", self.roadmap_lookahead_weeks, 0, 52),
        )
        for key, value, low, high in checks:
            if not isinstance(value, int) or isinstance(value, bool) or value < low or value > high:
                raise ConfigurationError(f"{key} must be between {low} and {high}, got {value!r}", key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProgressionConfig":
        """Read and validate the QS_* variables, raising ConfigurationError on bad input."""
        env = os.environ if environ is None else environ
        policy = env.get("QS_UNLOCK_POLICY", STRICT).strip().lower()
        return cls(
            unlock_policy=policy,
            week_duration_days=_read_int(env, "QS_WEEK_DURATION_DAYS", 7, 1, 365),
            max_concurrent_advances=_read_int(env, "QS_MAX_CONCURRENT_ADVANCES", 10, 1, 100),
            advance_check_interval_ms=_read_int(env, "QS_ADVANCE_CHECK_INTERVAL_MS", 60_000, 1_000, 300_000),
            roadmap_lookahead_weeks=_read_int(env, "QS_ROADMAP_LOOKAHEAD_WEEKS", 4, 0, 52),
        )

    @property
    def week_duration(self) -> timedelta:
        return timedelta(days=self.week_duration_days)

    @property
    def is_strict(self) -> bool:
        return self.unlock_policy == STRICT

    @property
    def advance_check_interval_seconds(self) -> float:
        return self.advance_check_interval_ms / 1000.0


settings = Settings()
