import threading
from datetime import date, time

import pytest

from errors import Conflict
from timer import TimerService

from conftest import USER, make_entry


def test_start_timer_creates_open_entry_with_baseline_snapshot(timer, baselines, store):
    baselines.update_baseline(USER, weekly_minutes=1800, daily_minutes=360, workdays_per_week=4)

    e = timer.start_timer(USER)

    assert e.work_date == date(2024, 3, 6)
    assert e.start_time == time(9, 0, 0)
    assert e.end_time is None and e.is_running
    assert (e.break_seconds, e.break_minutes, e.is_on_break) == (0, 0, False)
    assert e.baseline_weekly_minutes_at_time == 1800
    assert e.baseline_daily_minutes_at_time == 360
    assert e.workdays_per_week_at_time == 4

    # later config edits leave the snapshot alone
    baselines.update_baseline(USER, weekly_minutes=2400)
    assert store.get(e.id, USER).baseline_weekly_minutes_at_time == 1800


def test_start_twice_conflicts(timer):
    timer.start_timer(USER)
    with pytest.raises(Conflict):
        timer.start_timer(USER)


def test_start_overlapping_closed_entry_conflicts_and_writes_nothing(timer, store, clock):
    store.insert(make_entry(date(2024, 3, 6), "09:00:00", "17:00:00"))
    clock.set(2024, 3, 6, 10, 0, 0)

    with pytest.raises(Conflict):
        timer.start_timer(USER)

    assert len(store.query_range(USER, date(2024, 3, 6), date(2024, 3, 6))) == 1
    assert store.find_active_for_user(USER) is None


def test_start_after_closed_entry_is_fine(timer, store, clock):
    store.insert(make_entry(date(2024, 3, 6), "07:00:00", "08:30:00"))
    assert timer.start_timer(USER).start_time == time(9)


def test_stop_timer(timer, clock):
    timer.start_timer(USER)
    clock.advance(hours=8, minutes=15, seconds=30)

    e = timer.stop_timer(USER)

    assert e.end_time == time(17, 15, 30)
    assert e.is_running is False
    assert timer.current(USER) is None


def test_stop_in_same_second_still_moves_forward(timer):
    timer.start_timer(USER)
    e = timer.stop_timer(USER)
    assert e.end_time == time(9, 0, 1)
    assert e.end_time > e.start_time


def test_stop_with_clock_behind_start(timer, clock):
    timer.start_timer(USER)
    clock.set(2024, 3, 6, 8, 59, 50)
    assert timer.stop_timer(USER).end_time == time(9, 0, 1)


def test_stop_at_last_second_of_day_is_rejected(timer, clock):
    clock.set(2024, 3, 6, 23, 59, 59)
    timer.start_timer(USER)
    with pytest.raises(Conflict):
        timer.stop_timer(USER)


def test_stop_without_running_timer_conflicts(timer):
    with pytest.raises(Conflict):
        timer.stop_timer(USER)


def test_break_without_elapsed_time_keeps_counters(timer):
    timer.start_timer(USER)
    timer.start_break(USER)
    e = timer.stop_break(USER)
    assert (e.break_seconds, e.break_minutes) == (0, 0)
    assert e.is_on_break is False and e.break_started_at is None


def test_break_accumulates_seconds(timer, clock):
    timer.start_timer(USER)
    clock.advance(hours=1)

    e = timer.start_break(USER)
    assert e.is_on_break and e.break_started_at == time(10, 0)

    clock.advance(seconds=125)
    e = timer.stop_break(USER)
    assert (e.break_seconds, e.break_minutes) == (125, 2)

    timer.start_break(USER)
    clock.advance(seconds=60)
    e = timer.stop_break(USER)
    assert (e.break_seconds, e.break_minutes) == (185, 3)


def test_break_preconditions(timer):
    with pytest.raises(Conflict):
        timer.start_break(USER)

    timer.start_timer(USER)
    with pytest.raises(Conflict):
        timer.stop_break(USER)

    timer.start_break(USER)
    with pytest.raises(Conflict):
        timer.start_break(USER)


def test_stop_timer_finalizes_open_break(timer, clock):
    timer.start_timer(USER)
    clock.set(2024, 3, 6, 12, 0, 0)
    timer.start_break(USER)
    clock.set(2024, 3, 6, 12, 30, 0)

    e = timer.stop_timer(USER)

    assert e.end_time == time(12, 30)
    assert (e.break_seconds, e.break_minutes) == (1800, 30)
    assert e.is_on_break is False and e.break_started_at is None


def test_stale_session_blocks_today(timer, clock):
    clock.set(2024, 3, 5, 9, 0, 0)
    timer.start_timer(USER)
    clock.set(2024, 3, 6, 8, 0, 0)

    assert timer.current(USER) is None
    with pytest.raises(Conflict):
        timer.start_timer(USER)
    with pytest.raises(Conflict):
        timer.stop_timer(USER)
    with pytest.raises(Conflict):
        timer.start_break(USER)


def _race(fn, n=2):
    barrier = threading.Barrier(n)
    outcomes = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            fn()
            result = "ok"
        except Conflict:
            result = "conflict"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return sorted(outcomes)


def test_concurrent_start_timer_yields_one_session(store, baselines, clock):
    # one service per thread, as with separate requests
    outcomes = _race(lambda: TimerService(store, baselines, clock).start_timer(USER), n=4)

    assert outcomes == ["conflict", "conflict", "conflict", "ok"]
    active = [e for e in store.query_range(USER, date(2024, 3, 6), date(2024, 3, 6)) if e.is_open]
    assert len(active) == 1


def test_concurrent_start_break_yields_one_success(timer, store, baselines, clock):
    timer.start_timer(USER)
    outcomes = _race(lambda: TimerService(store, baselines, clock).start_break(USER))
    assert outcomes == ["conflict", "ok"]


def test_concurrent_stop_timer_yields_one_success(timer, store, baselines, clock):
    timer.start_timer(USER)
    clock.advance(hours=1)
    outcomes = _race(lambda: TimerService(store, baselines, clock).stop_timer(USER))
    assert outcomes == ["conflict", "ok"]
    assert store.find_active_for_user(USER) is None
