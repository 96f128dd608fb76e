import threading
import time
from datetime import timedelta

from exam_prep.config import ProgressionConfig
from exam_prep.jobs import AdvanceScheduler
from exam_prep.services import ProgressionStatusService

from conftest import T0


def _seed(session, clock, config, users):
    svc = ProgressionStatusService(session, config, clock)
    for user_id in users:
        svc.get_or_create(user_id, "contest-1")
    return svc


def test_batch_advances_user_after_window_expires(session, clock):
    config = ProgressionConfig(unlock_policy="strict", week_duration_days=7)
    svc = _seed(session, clock, config, ["user-1"])

    clock.advance(days=1)
    info = svc.get_current_week_info("user-1", "contest-1")
    assert info["week_number"] == 1
    assert info["can_advance"] is False
    assert info["remaining_millis"] == int(timedelta(days=6).total_seconds() * 1000)
    assert svc.process_automatic_advances() == {"processed": 0, "advanced": 0, "errors": 0}

    now = clock.now = T0 + timedelta(days=7, seconds=1)
    assert svc.process_automatic_advances() == {"processed": 1, "advanced": 1, "errors": 0}
    status = svc.get_or_create("user-1", "contest-1")
    assert status.current_week_number == 2
    assert status.window_start == now
    assert status.window_end == now + timedelta(days=7)


def test_batch_skips_users_with_open_windows(session, clock):
    config = ProgressionConfig(unlock_policy="strict", week_duration_days=7)
    svc = _seed(session, clock, config, ["early"])
    clock.advance(days=3)
    _seed(session, clock, config, ["late"])
    clock.advance(days=5)
    assert svc.process_automatic_advances()["advanced"] == 1
    assert svc.get_or_create("early", "contest-1").current_week_number == 2
    assert svc.get_or_create("late", "contest-1").current_week_number == 1


def test_batch_is_a_noop_for_accelerated_policy(session, clock):
    config = ProgressionConfig(unlock_policy="accelerated")
    svc = _seed(session, clock, config, ["user-1"])
    clock.advance(days=30)
    assert svc.process_automatic_advances() == {"processed": 0, "advanced": 0, "errors": 0}


def test_batch_never_exceeds_concurrency_cap(session, clock, monkeypatch):
    config = ProgressionConfig(unlock_policy="strict", week_duration_days=7, max_concurrent_advances=2)
    svc = _seed(session, clock, config, [f"user-{i}" for i in range(5)])
    clock.advance(days=8)

    in_flight = 0
    peak = 0
    lock = threading.Lock()

    def fake_advance(self, user_id, contest_id):
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.05)
        with lock:
            in_flight -= 1
        return True

    monkeypatch.setattr(ProgressionStatusService, "advance_strict", fake_advance)
    result = svc.process_automatic_advances()
    assert result == {"processed": 2, "advanced": 2, "errors": 0}
    assert peak <= 2


def test_batch_isolates_individual_failures(session, clock, monkeypatch):
    config = ProgressionConfig(unlock_policy="strict", week_duration_days=7)
    svc = _seed(session, clock, config, ["ok-1", "broken", "ok-2"])
    clock.advance(days=8)
    real_advance = ProgressionStatusService.advance_strict

    def flaky_advance(self, user_id, contest_id):
        if user_id == "broken":
            raise RuntimeError("connection reset")
        return real_advance(self, user_id, contest_id)

    monkeypatch.setattr(ProgressionStatusService, "advance_strict", flaky_advance)
    result = svc.process_automatic_advances()
    assert result == {"processed": 3, "advanced": 2, "errors": 1}
    assert svc.get_or_create("ok-1", "contest-1").current_week_number == 2
    assert svc.get_or_create("broken", "contest-1").current_week_number == 1


def test_scheduler_run_once_uses_engine(engine, session, clock):
    config = ProgressionConfig(unlock_policy="strict", week_duration_days=7)
    _seed(session, clock, config, ["user-1"])
    clock.advance(days=7)
    scheduler = AdvanceScheduler(engine, config, clock)
    assert scheduler.run_once() == {"processed": 1, "advanced": 1, "errors": 0}
    assert scheduler.last_result["advanced"] == 1


def test_scheduler_start_and_stop(engine, clock):
    config = ProgressionConfig(unlock_policy="strict", advance_check_interval_ms=1000)
    scheduler = AdvanceScheduler(engine, config, clock)
    scheduler.start()
    assert scheduler.running
    deadline = time.time() + 5
    while scheduler.last_result is None and time.time() < deadline:
        time.sleep(0.02)
    scheduler.stop()
    assert not scheduler.running
    assert scheduler.last_result == {"processed": 0, "advanced": 0, "errors": 0}


def test_batch_results_are_visible_on_the_calling_session(session, clock):
    config = ProgressionConfig(unlock_policy="strict", week_duration_days=7)
    svc = _seed(session, clock, config, ["user-1"])
    held = svc.get_or_create("user-1", "contest-1")
    assert held.current_week_number == 1
    now = clock.advance(days=7, seconds=1)
    assert svc.process_automatic_advances()["advanced"] == 1
    info = svc.get_current_week_info("user-1", "contest-1")
    assert info["week_number"] == 2
    assert info["window_start"] == now
    assert held.current_week_number == 2
