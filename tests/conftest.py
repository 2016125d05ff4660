from datetime import date, datetime, time, timedelta

import pytest
from fastapi.testclient import TestClient

from baseline import BaselineStore
from config import COOKIE_NAME
from main import app, build_services, get_services, make_token
from stale import StaleSessionResolver
from store import EntryStore, WorkEntry, init_db
from timer import TimerService

USER = "user-1"
OTHER_USER = "user-2"

# Wednesday
NOW = datetime(2024, 3, 6, 9, 0, 0)


class FakeClock:
    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current

    def set(self, *args) -> None:
        self.current = datetime(*args)

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeHolidays:
    def __init__(self, days=()):
        self.days = set(days)
        self.calls = []

    def holidays_in_range(self, from_date, to_date):
        self.calls.append((from_date, to_date))
        return {d for d in self.days if from_date <= d <= to_date}


def make_entry(
    work_date: date,
    start: str,
    end: str = None,
    break_minutes: int = 0,
    weekly: int = 2400,
    workdays: int = 5,
    user_id: str = USER,
    **kwargs,
) -> WorkEntry:
    return WorkEntry(
        user_id=user_id,
        work_date=work_date,
        start_time=time.fromisoformat(start),
        end_time=time.fromisoformat(end) if end else None,
        break_minutes=break_minutes,
        break_seconds=break_minutes * 60,
        is_running=end is None,
        baseline_daily_minutes_at_time=480,
        baseline_weekly_minutes_at_time=weekly,
        workdays_per_week_at_time=workdays,
        **kwargs,
    )


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "workhours-test.db"
    init_db(path)
    return path


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def holidays():
    return FakeHolidays()


@pytest.fixture
def store(db_path):
    return EntryStore(db_path)


@pytest.fixture
def baselines(db_path):
    return BaselineStore(db_path)


@pytest.fixture
def timer(store, baselines, clock):
    return TimerService(store, baselines, clock)


@pytest.fixture
def resolver(store, clock):
    return StaleSessionResolver(store, clock)


@pytest.fixture
def services(db_path, clock, holidays):
    return build_services(db_path, clock, holidays)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app, cookies={COOKIE_NAME: make_token(USER)}) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def anon_client(services):
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
