"""Timer state machine: Idle -> Running <-> RunningOnBreak -> Stopped.

The current timer is not held in memory; it is whatever entry the store
reports as active for the user. Every transition reads that entry and writes
it back inside ``EntryStore.atomic()``, using the read state as the
compare-and-set precondition, so concurrent requests for the same user
serialise and only one of two identical transitions succeeds.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Any, Callable, Dict, Optional

from baseline import BaselineStore
from dates import add_one_second, local_now, seconds_between
from errors import Conflict
from store import EntryStore, WorkEntry

logger = logging.getLogger("workhours.timer")

Clock = Callable[[], datetime]


def session_state(entry: WorkEntry) -> Dict[str, Any]:
    """Columns that identify where an entry is in the state machine."""
    return {
        "end_time": entry.end_time,
        "is_running": entry.is_running,
        "is_on_break": entry.is_on_break,
        "break_started_at": entry.break_started_at,
    }


def finalize_break(entry: WorkEntry, at: time) -> Dict[str, Any]:
    """Patch that closes ``entry``'s break (if any) at time-of-day ``at``."""
    seconds = entry.break_seconds
    if entry.is_on_break and entry.break_started_at is not None:
        seconds += max(0, seconds_between(entry.break_started_at, at))
    return {
        "break_seconds": seconds,
        "break_minutes": seconds // 60,
        "is_on_break": False,
        "break_started_at": None,
    }


class TimerService:
    def __init__(self, store: EntryStore, baselines: BaselineStore, clock: Clock = local_now):
        self.store = store
        self.baselines = baselines
        self.clock = clock

    def _now(self):
        current = self.clock().replace(microsecond=0)
        return current.date(), current.time()

    def _todays_active(self, tx: EntryStore, user_id: str, today: date) -> WorkEntry:
        entry = tx.find_active_for_user(user_id)
        if entry is None:
            raise Conflict("No running timer")
        if entry.work_date != today:
            raise Conflict(f"A timer from {entry.work_date.isoformat()} is still open; resolve it first")
        return entry

    def _transition(self, tx: EntryStore, entry: WorkEntry, patch: Dict[str, Any], lost: str) -> WorkEntry:
        updated = tx.compare_and_set(entry.id, entry.user_id, session_state(entry), patch)
        if updated is None:
            raise Conflict(lost)
        return updated

    # ---------------- queries ----------------
    def current(self, user_id: str) -> Optional[WorkEntry]:
        """Today's running entry, if any."""
        today, _ = self._now()
        entry = self.store.find_active_for_user(user_id)
        if entry is None or entry.work_date != today:
            return None
        return entry

    # ---------------- transitions ----------------
    def start_timer(self, user_id: str) -> WorkEntry:
        today, t = self._now()
        baseline = self.baselines.get_baseline(user_id)

        with self.store.atomic() as tx:
            if tx.find_active_for_user(user_id) is not None:
                raise Conflict("A timer is already running")
            entry = tx.insert(
                WorkEntry(
                    user_id=user_id,
                    work_date=today,
                    start_time=t,
                    end_time=None,
                    is_running=True,
                    baseline_daily_minutes_at_time=baseline.daily_minutes,
                    baseline_weekly_minutes_at_time=baseline.weekly_minutes,
                    workdays_per_week_at_time=baseline.workdays_per_week,
                )
            )

        logger.info("timer started: user=%s entry=%s at %s %s", user_id, entry.id, today, t)
        return entry

    def stop_timer(self, user_id: str) -> WorkEntry:
        today, t = self._now()

        with self.store.atomic() as tx:
            entry = self._todays_active(tx, user_id, today)

            end = t
            if end <= entry.start_time:
                end = add_one_second(entry.start_time)
                if end is None:
                    raise Conflict("Invalid stop time")

            patch = {"end_time": end, "is_running": False}
            patch.update(finalize_break(entry, end))
            entry = self._transition(tx, entry, patch, "No running timer")

        logger.info("timer stopped: user=%s entry=%s at %s", user_id, entry.id, end)
        return entry

    def start_break(self, user_id: str) -> WorkEntry:
        today, t = self._now()

        with self.store.atomic() as tx:
            entry = self._todays_active(tx, user_id, today)
            if entry.is_on_break:
                raise Conflict("Already on break")
            entry = self._transition(
                tx,
                entry,
                {"is_on_break": True, "break_started_at": t},
                "Already on break",
            )

        logger.info("break started: user=%s entry=%s at %s", user_id, entry.id, t)
        return entry

    def stop_break(self, user_id: str) -> WorkEntry:
        today, t = self._now()

        with self.store.atomic() as tx:
            entry = self._todays_active(tx, user_id, today)
            if not entry.is_on_break:
                raise Conflict("Not currently on break")
            entry = self._transition(tx, entry, finalize_break(entry, t), "Not currently on break")

        logger.info("break stopped: user=%s entry=%s break_seconds=%s", user_id, entry.id, entry.break_seconds)
        return entry
