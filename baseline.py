from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from config import DEFAULT_DAILY_MINUTES, DEFAULT_WEEKLY_MINUTES, DEFAULT_WORKDAYS
from errors import InvalidInput, NotFound
from store import connect, now, translate_errors

logger = logging.getLogger("workhours.baseline")

MAX_WEEKLY_MINUTES = 7 * 24 * 60
MAX_DAILY_MINUTES = 24 * 60
MAX_NAME_LEN = 60


@dataclass(frozen=True)
class BaselineConfig:
    weekly_minutes: int
    daily_minutes: int
    workdays_per_week: int

    def to_dict(self) -> dict:
        return {
            "baseline_weekly_minutes": self.weekly_minutes,
            "baseline_daily_minutes": self.daily_minutes,
            "workdays_per_week": self.workdays_per_week,
        }


DEFAULT_BASELINE = BaselineConfig(DEFAULT_WEEKLY_MINUTES, DEFAULT_DAILY_MINUTES, DEFAULT_WORKDAYS)


def _check_range(name: str, value: Optional[int], lo: int, hi: int) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer")
    if value < lo or value > hi:
        raise InvalidInput(f"{name} out of range ({lo}..{hi})")


class BaselineStore:
    """Per-user target configuration. Entries snapshot it on creation."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)

    def _fetch(self, conn, user_id: str):
        return conn.execute("SELECT * FROM user_settings WHERE user_id=?", (user_id,)).fetchone()

    def get_baseline(self, user_id: str) -> BaselineConfig:
        with translate_errors():
            conn = connect(self.db_path)
            try:
                return self.get_baseline_row(conn, user_id)
            finally:
                conn.close()

    def update_baseline(
        self,
        user_id: str,
        weekly_minutes: Optional[int] = None,
        daily_minutes: Optional[int] = None,
        workdays_per_week: Optional[int] = None,
    ) -> BaselineConfig:
        _check_range("baseline_weekly_minutes", weekly_minutes, 0, MAX_WEEKLY_MINUTES)
        _check_range("baseline_daily_minutes", daily_minutes, 0, MAX_DAILY_MINUTES)
        _check_range("workdays_per_week", workdays_per_week, 1, 7)

        with translate_errors():
            conn = connect(self.db_path)
            try:
                conn.execute("BEGIN IMMEDIATE")
                cur = self.get_baseline_row(conn, user_id)
                new = BaselineConfig(
                    weekly_minutes=cur.weekly_minutes if weekly_minutes is None else weekly_minutes,
                    daily_minutes=cur.daily_minutes if daily_minutes is None else daily_minutes,
                    workdays_per_week=cur.workdays_per_week if workdays_per_week is None else workdays_per_week,
                )
                conn.execute(
                    """
                    INSERT INTO user_settings(user_id,baseline_weekly_minutes,baseline_daily_minutes,workdays_per_week,updated_at)
                    VALUES (?,?,?,?,?)
                    ON CONFLICT(user_id) DO UPDATE SET
                      baseline_weekly_minutes=excluded.baseline_weekly_minutes,
                      baseline_daily_minutes=excluded.baseline_daily_minutes,
                      workdays_per_week=excluded.workdays_per_week,
                      updated_at=excluded.updated_at
                    """,
                    (user_id, new.weekly_minutes, new.daily_minutes, new.workdays_per_week, now()),
                )
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

        logger.info("baseline updated for user %s: %s", user_id, new)
        return new

    def get_baseline_row(self, conn, user_id: str) -> BaselineConfig:
        r = self._fetch(conn, user_id)
        if not r:
            return DEFAULT_BASELINE
        return BaselineConfig(
            int(r["baseline_weekly_minutes"]),
            int(r["baseline_daily_minutes"]),
            int(r["workdays_per_week"]),
        )

    # ---------------- display name ----------------
    def get_display_name(self, user_id: str) -> str:
        with translate_errors():
            conn = connect(self.db_path)
            try:
                r = self._fetch(conn, user_id)
            finally:
                conn.close()
        return (r["display_name"] if r else None) or ""

    def set_display_name(self, user_id: str, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidInput("Name is required")
        if len(name) > MAX_NAME_LEN:
            raise InvalidInput(f"Name is too long (max {MAX_NAME_LEN})")

        d = DEFAULT_BASELINE
        with translate_errors():
            conn = connect(self.db_path)
            try:
                conn.execute(
                    """
                    INSERT INTO user_settings(user_id,baseline_weekly_minutes,baseline_daily_minutes,workdays_per_week,display_name,updated_at)
                    VALUES (?,?,?,?,?,?)
                    ON CONFLICT(user_id) DO UPDATE SET
                      display_name=excluded.display_name,
                      updated_at=excluded.updated_at
                    """,
                    (user_id, d.weekly_minutes, d.daily_minutes, d.workdays_per_week, name, now()),
                )
                r = self._fetch(conn, user_id)
            finally:
                conn.close()
        if not r:
            raise NotFound("User not found")
        return r["display_name"]
