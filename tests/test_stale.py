from datetime import date, time

import pytest

from dates import END_OF_DAY
from errors import Conflict, InvalidInput, NotFound

from conftest import USER, make_entry


@pytest.fixture
def stale_entry(timer, clock):
    clock.set(2024, 3, 5, 9, 0, 0)
    e = timer.start_timer(USER)
    clock.set(2024, 3, 6, 8, 0, 0)
    return e


def test_no_stale_session(resolver):
    assert resolver.find_stale_session(USER) is None


def test_todays_session_is_not_stale(resolver, timer):
    timer.start_timer(USER)
    assert resolver.find_stale_session(USER) is None


def test_find_stale_session(resolver, stale_entry):
    s = resolver.find_stale_session(USER)
    assert s.id == stale_entry.id
    assert s.work_date == date(2024, 3, 5)
    assert s.to_dict() == {"id": stale_entry.id, "work_date": "2024-03-05", "start_time": "09:00", "note": None}


def test_stop_eod_closes_at_last_second(resolver, store, stale_entry):
    closed = resolver.resolve_stale(USER, "stop_eod")

    assert closed.end_time == END_OF_DAY == time(23, 59, 59)
    assert closed.is_running is False
    assert store.find_active_for_user(USER) is None
    assert resolver.find_stale_session(USER) is None


def test_stop_eod_finalizes_open_break(resolver, timer, clock):
    clock.set(2024, 3, 5, 9, 0, 0)
    timer.start_timer(USER)
    clock.set(2024, 3, 5, 23, 0, 0)
    timer.start_break(USER)
    clock.set(2024, 3, 6, 7, 30, 0)

    closed = resolver.resolve_stale(USER, "stop_eod")

    assert (closed.break_seconds, closed.break_minutes) == (3599, 59)
    assert closed.is_on_break is False and closed.break_started_at is None


def test_discard_deletes_the_session(resolver, store, stale_entry):
    assert resolver.resolve_stale(USER, "discard") is None
    assert store.get(stale_entry.id, USER) is None


def test_resolve_twice_is_not_found(resolver, stale_entry):
    resolver.resolve_stale(USER, "discard")
    with pytest.raises(NotFound):
        resolver.resolve_stale(USER, "stop_eod")


def test_invalid_action(resolver, stale_entry):
    with pytest.raises(InvalidInput):
        resolver.resolve_stale(USER, "keep")


def test_timer_usable_after_resolution(resolver, timer, stale_entry):
    resolver.resolve_stale(USER, "stop_eod")
    assert timer.start_timer(USER).work_date == date(2024, 3, 6)


def test_stop_eod_on_last_second_start_conflicts(resolver, store):
    store.insert(make_entry(date(2024, 3, 5), "23:59:59"))
    with pytest.raises(Conflict):
        resolver.resolve_stale(USER, "stop_eod")
