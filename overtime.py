"""Overtime accounting over closed work entries.

Entries are grouped into Monday-based calendar weeks. Each week is measured
against the weekly baseline snapshotted on its earliest entry, spread over
the configured workdays; public holidays on a configured workday count as
met target. The week in progress only counts days up to yesterday.

All figures are integer minutes. Positive overtime means ahead of target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Set

from dates import local_now, min_to_hhmm, seconds_between, week_start
from store import EntryStore, WorkEntry

logger = logging.getLogger("workhours.overtime")

DAYS_PER_WEEK = 7


class HolidayProvider(Protocol):
    def holidays_in_range(self, from_date: date, to_date: date) -> Set[date]: ...


# ======================================================
# RESULTS
# ======================================================
@dataclass(frozen=True)
class WeekResult:
    week_start: date
    worked: int
    credit: int
    expected: int

    @property
    def overtime(self) -> int:
        return (self.worked + self.credit) - self.expected

    def to_dict(self) -> dict:
        return {
            "week_start": self.week_start.isoformat(),
            "worked_minutes": self.worked,
            "credit_minutes": self.credit,
            "expected_minutes": self.expected,
            "overtime_minutes": self.overtime,
        }


@dataclass(frozen=True)
class OvertimeSummary:
    total_worked_minutes: int = 0
    weeks_count: int = 0
    days_count: int = 0
    overtime_total_minutes: int = 0
    weeks: List[WeekResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_worked_minutes": self.total_worked_minutes,
            "weeks_count": self.weeks_count,
            "days_count": self.days_count,
            "overtime_total_minutes": self.overtime_total_minutes,
            "overtime_hhmm": min_to_hhmm(self.overtime_total_minutes),
            "weeks": [w.to_dict() for w in self.weeks],
        }


# ======================================================
# PER ENTRY / PER WEEK
# ======================================================
def entry_worked_minutes(entry: WorkEntry) -> int:
    if entry.end_time is None:
        return 0
    raw = (seconds_between(entry.start_time, entry.end_time) + 30) // 60
    return max(0, raw - int(entry.break_minutes or 0))


@dataclass
class WeekBucket:
    week_start: date
    entries: List[WorkEntry]
    baseline_minutes: int
    workdays: int

    def worked_until(self, cutoff: date) -> int:
        return sum(entry_worked_minutes(e) for e in self.entries if e.work_date <= cutoff)


def snapshot_entry(entries: Iterable[WorkEntry]) -> WorkEntry:
    """The entry whose baseline snapshot speaks for the week: earliest date, then earliest start."""
    return min(entries, key=lambda e: (e.work_date, e.start_time))


def group_by_week(entries: Iterable[WorkEntry]) -> Dict[date, WeekBucket]:
    grouped: Dict[date, List[WorkEntry]] = {}
    for e in entries:
        grouped.setdefault(week_start(e.work_date), []).append(e)

    buckets = {}
    for ws in sorted(grouped):
        first = snapshot_entry(grouped[ws])
        buckets[ws] = WeekBucket(
            week_start=ws,
            entries=grouped[ws],
            baseline_minutes=int(first.baseline_weekly_minutes_at_time or 0),
            workdays=int(first.workdays_per_week_at_time or 0),
        )
    return buckets


def clamp_workdays(workdays: int) -> int:
    return min(DAYS_PER_WEEK, max(1, int(workdays or 0)))


def distribute_weekly_target(week_baseline: int, workdays: int) -> List[int]:
    """Per-weekday targets, Monday first; the remainder lands on the last workday."""
    wd = clamp_workdays(workdays)
    base = week_baseline // wd
    targets = [base if i < wd else 0 for i in range(DAYS_PER_WEEK)]
    targets[wd - 1] += week_baseline - base * wd
    return targets


def expected_minutes(ws: date, targets: List[int], cutoff: Optional[date] = None) -> int:
    total = 0
    for i, target in enumerate(targets):
        if cutoff is not None and ws + timedelta(days=i) > cutoff:
            break
        total += target
    return total


def holiday_credit(
    ws: date,
    targets: List[int],
    workdays: int,
    holidays: Set[date],
    cutoff: Optional[date] = None,
) -> int:
    credit = 0
    for i in range(clamp_workdays(workdays)):
        day = ws + timedelta(days=i)
        if cutoff is not None and day > cutoff:
            break
        if day in holidays:
            credit += targets[i]
    return credit


def account_week(bucket: WeekBucket, holidays: Set[date], yesterday: date) -> Optional[WeekResult]:
    """Week figures counted up to ``yesterday``; None if the week has not started yet."""
    cutoff = min(bucket.week_start + timedelta(days=DAYS_PER_WEEK - 1), yesterday)
    if cutoff < bucket.week_start:
        return None

    targets = distribute_weekly_target(bucket.baseline_minutes, bucket.workdays)
    return WeekResult(
        week_start=bucket.week_start,
        worked=bucket.worked_until(cutoff),
        credit=holiday_credit(bucket.week_start, targets, bucket.workdays, holidays, cutoff),
        expected=expected_minutes(bucket.week_start, targets, cutoff),
    )


# ======================================================
# AGGREGATE
# ======================================================
def compute_overtime(entries: Iterable[WorkEntry], holiday_provider: HolidayProvider, today: date) -> OvertimeSummary:
    closed = [e for e in entries if e.end_time is not None]
    if not closed:
        return OvertimeSummary()

    weeks = group_by_week(closed)
    span_from = min(weeks)
    span_to = max(weeks) + timedelta(days=DAYS_PER_WEEK - 1)
    holidays = set(holiday_provider.holidays_in_range(span_from, span_to))

    yesterday = today - timedelta(days=1)
    results = []
    for bucket in weeks.values():
        r = account_week(bucket, holidays, yesterday)
        if r is not None:
            results.append(r)

    return OvertimeSummary(
        total_worked_minutes=sum(entry_worked_minutes(e) for e in closed),
        weeks_count=len(weeks),
        days_count=len({e.work_date for e in closed}),
        overtime_total_minutes=sum(r.overtime for r in results),
        weeks=results,
    )


class OvertimeEngine:
    def __init__(
        self,
        store: EntryStore,
        holiday_provider: HolidayProvider,
        clock: Callable = local_now,
    ):
        self.store = store
        self.holiday_provider = holiday_provider
        self.clock = clock

    def summary(self, user_id: str) -> OvertimeSummary:
        entries = self.store.query_closed(user_id)
        result = compute_overtime(entries, self.holiday_provider, self.clock().date())
        logger.debug(
            "overtime for user %s: %s min over %s weeks",
            user_id,
            result.overtime_total_minutes,
            result.weeks_count,
        )
        return result
