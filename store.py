"""Entry Store: durable work entries on sqlite3.

The store, not the callers, owns the hard invariants:

* one active (open or running) entry per user, via a partial unique index;
* no two entries of a user overlap on the same day, via triggers (an open
  entry occupies the rest of its day);
* ``end_time > start_time`` and the break bookkeeping, via CHECK constraints.

Every violation is reported as :class:`errors.Conflict`, anything else sqlite
raises as :class:`errors.StoreError`.

Atomic state transition
-----------------------
``EntryStore.atomic()`` opens a ``BEGIN IMMEDIATE`` transaction (sqlite's
single-writer lock) and yields a store bound to it. Reads and the conditional
write of a transition run inside that block, so two concurrent transitions of
the same user are serialised and the second one sees the first one's result.
``compare_and_set`` additionally re-checks the precondition in the UPDATE's
WHERE clause and reports a lost race as ``None``.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from dates import hhmm, hms
from errors import Conflict, NotFound, StoreError

logger = logging.getLogger("workhours.store")

# sentinel upper bound for an open entry: it occupies the rest of its day
OPEN_END = "24:00:00"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS user_settings(
    user_id TEXT PRIMARY KEY,
    baseline_weekly_minutes INTEGER NOT NULL,
    baseline_daily_minutes INTEGER NOT NULL,
    workdays_per_week INTEGER NOT NULL CHECK (workdays_per_week BETWEEN 1 AND 7),
    display_name TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS work_entries(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    work_date TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    break_minutes INTEGER NOT NULL DEFAULT 0,
    break_seconds INTEGER NOT NULL DEFAULT 0,
    is_on_break INTEGER NOT NULL DEFAULT 0,
    break_started_at TEXT,
    is_running INTEGER NOT NULL DEFAULT 0,
    note TEXT,
    baseline_daily_minutes_at_time INTEGER NOT NULL,
    baseline_weekly_minutes_at_time INTEGER NOT NULL,
    workdays_per_week_at_time INTEGER NOT NULL,
    created_at TEXT,
    CONSTRAINT valid_range CHECK (end_time IS NULL OR end_time > start_time),
    CONSTRAINT break_state CHECK ((is_on_break = 1) = (break_started_at IS NOT NULL)),
    CONSTRAINT break_rounding CHECK (break_seconds >= 0 AND break_minutes = break_seconds / 60)
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_work_entries_one_active
    ON work_entries(user_id) WHERE end_time IS NULL OR is_running = 1;

CREATE INDEX IF NOT EXISTS ix_work_entries_user_date
    ON work_entries(user_id, work_date, start_time);

CREATE TRIGGER IF NOT EXISTS work_entries_no_overlap_insert
BEFORE INSERT ON work_entries
WHEN EXISTS (
    SELECT 1 FROM work_entries o
    WHERE o.user_id = NEW.user_id
      AND o.work_date = NEW.work_date
      AND o.start_time < coalesce(NEW.end_time, '{OPEN_END}')
      AND NEW.start_time < coalesce(o.end_time, '{OPEN_END}')
)
BEGIN
    SELECT RAISE(ABORT, 'work_entries overlap');
END;

CREATE TRIGGER IF NOT EXISTS work_entries_no_overlap_update
BEFORE UPDATE OF user_id, work_date, start_time, end_time ON work_entries
WHEN EXISTS (
    SELECT 1 FROM work_entries o
    WHERE o.id != NEW.id
      AND o.user_id = NEW.user_id
      AND o.work_date = NEW.work_date
      AND o.start_time < coalesce(NEW.end_time, '{OPEN_END}')
      AND NEW.start_time < coalesce(o.end_time, '{OPEN_END}')
)
BEGIN
    SELECT RAISE(ABORT, 'work_entries overlap');
END;
"""

# columns a caller may write through update/compare_and_set
MUTABLE_COLUMNS = {
    "work_date",
    "start_time",
    "end_time",
    "break_minutes",
    "break_seconds",
    "is_on_break",
    "break_started_at",
    "is_running",
    "note",
}


# ======================================================
# DB
# ======================================================
def now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds")


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    # autocommit: transactions are always opened explicitly
    conn = sqlite3.connect(str(db_path), timeout=30, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db(db_path: Union[str, Path]) -> None:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript(SCHEMA)
    finally:
        conn.close()
    logger.info("database ready at %s", db_path)


def _conflict_message(err: sqlite3.IntegrityError) -> str:
    msg = str(err)
    if "overlap" in msg:
        return "This entry overlaps with an existing one"
    if "UNIQUE" in msg:
        return "A timer is already running"
    if "valid_range" in msg:
        return "end_time must be after start_time"
    return "Invalid entry state"


@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise Conflict(_conflict_message(e)) from e
    except sqlite3.Error as e:
        logger.error("sqlite failure: %s", e)
        raise StoreError(f"Database error: {e}") from e


def _to_db(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return hms(value)
    return value


def _time_or_none(s: Optional[str]) -> Optional[time]:
    return time.fromisoformat(s) if s else None


# ======================================================
# MODEL
# ======================================================
@dataclass
class WorkEntry:
    user_id: str
    work_date: date
    start_time: time
    end_time: Optional[time] = None
    break_minutes: int = 0
    break_seconds: int = 0
    is_on_break: bool = False
    break_started_at: Optional[time] = None
    is_running: bool = False
    note: Optional[str] = None
    baseline_daily_minutes_at_time: int = 0
    baseline_weekly_minutes_at_time: int = 0
    workdays_per_week_at_time: int = 5
    id: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None or self.is_running

    @classmethod
    def from_row(cls, r: sqlite3.Row) -> "WorkEntry":
        return cls(
            id=int(r["id"]),
            user_id=r["user_id"],
            work_date=date.fromisoformat(r["work_date"]),
            start_time=time.fromisoformat(r["start_time"]),
            end_time=_time_or_none(r["end_time"]),
            break_minutes=int(r["break_minutes"] or 0),
            break_seconds=int(r["break_seconds"] or 0),
            is_on_break=bool(int(r["is_on_break"] or 0)),
            break_started_at=_time_or_none(r["break_started_at"]),
            is_running=bool(int(r["is_running"] or 0)),
            note=r["note"],
            baseline_daily_minutes_at_time=int(r["baseline_daily_minutes_at_time"]),
            baseline_weekly_minutes_at_time=int(r["baseline_weekly_minutes_at_time"]),
            workdays_per_week_at_time=int(r["workdays_per_week_at_time"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "work_date": self.work_date.isoformat(),
            "start_time": hhmm(self.start_time),
            "end_time": hhmm(self.end_time),
            "break_minutes": self.break_minutes,
            "break_seconds": self.break_seconds,
            "is_on_break": self.is_on_break,
            "break_started_at": hms(self.break_started_at),
            "is_running": self.is_running,
            "note": self.note,
            "baseline_daily_minutes_at_time": self.baseline_daily_minutes_at_time,
            "baseline_weekly_minutes_at_time": self.baseline_weekly_minutes_at_time,
            "workdays_per_week_at_time": self.workdays_per_week_at_time,
        }


ENTRY_COLUMNS = (
    "user_id,work_date,start_time,end_time,break_minutes,break_seconds,"
    "is_on_break,break_started_at,is_running,note,"
    "baseline_daily_minutes_at_time,baseline_weekly_minutes_at_time,workdays_per_week_at_time,"
    "created_at"
)


# ======================================================
# STORE
# ======================================================
class EntryStore:
    def __init__(self, db_path: Union[str, Path], conn: Optional[sqlite3.Connection] = None):
        self.db_path = str(db_path)
        self._conn = conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with translate_errors():
            if self._conn is not None:
                yield self._conn
                return
            conn = connect(self.db_path)
            try:
                yield conn
            finally:
                conn.close()

    @contextmanager
    def atomic(self) -> Iterator["EntryStore"]:
        """Run the block as one serialised write transaction."""
        if self._conn is not None:
            yield self
            return
        with translate_errors():
            conn = connect(self.db_path)
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield EntryStore(self.db_path, conn=conn)
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    # ---------------- writes ----------------
    def insert(self, entry: WorkEntry) -> WorkEntry:
        values = (
            entry.user_id,
            _to_db(entry.work_date),
            _to_db(entry.start_time),
            _to_db(entry.end_time),
            int(entry.break_minutes),
            int(entry.break_seconds),
            _to_db(bool(entry.is_on_break)),
            _to_db(entry.break_started_at),
            _to_db(bool(entry.is_running)),
            entry.note,
            int(entry.baseline_daily_minutes_at_time),
            int(entry.baseline_weekly_minutes_at_time),
            int(entry.workdays_per_week_at_time),
            now(),
        )
        with self._session() as conn:
            cur = conn.execute(
                f"INSERT INTO work_entries({ENTRY_COLUMNS}) VALUES ({','.join('?' * len(values))})",
                values,
            )
            return replace(entry, id=int(cur.lastrowid))

    def compare_and_set(
        self,
        entry_id: int,
        user_id: str,
        expect: Dict[str, Any],
        patch: Dict[str, Any],
    ) -> Optional[WorkEntry]:
        """Apply ``patch`` only if every ``expect`` column still holds its value.

        Returns the updated entry, or None when the row is gone or the
        precondition no longer holds (nothing written).
        """
        unknown = (set(patch) | set(expect)) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"not writable: {sorted(unknown)}")
        if not patch:
            raise ValueError("empty patch")

        sets = ", ".join(f"{col}=?" for col in patch)
        where = "".join(f" AND {col} IS ?" for col in expect)
        params = [_to_db(v) for v in patch.values()] + [entry_id, user_id] + [_to_db(v) for v in expect.values()]

        with self._session() as conn:
            n = conn.execute(
                f"UPDATE work_entries SET {sets} WHERE id=? AND user_id=?{where}",
                params,
            ).rowcount
            if not n:
                return None
            row = conn.execute(
                "SELECT * FROM work_entries WHERE id=? AND user_id=?",
                (entry_id, user_id),
            ).fetchone()
            return WorkEntry.from_row(row)

    def update_by_id(self, entry_id: int, user_id: str, patch: Dict[str, Any]) -> WorkEntry:
        updated = self.compare_and_set(entry_id, user_id, {}, patch)
        if updated is None:
            raise NotFound("Entry not found")
        return updated

    def delete_by_id(self, entry_id: int, user_id: str, expect: Optional[Dict[str, Any]] = None) -> bool:
        expect = expect or {}
        unknown = set(expect) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"not comparable: {sorted(unknown)}")
        where = "".join(f" AND {col} IS ?" for col in expect)
        with self._session() as conn:
            n = conn.execute(
                f"DELETE FROM work_entries WHERE id=? AND user_id=?{where}",
                [entry_id, user_id] + [_to_db(v) for v in expect.values()],
            ).rowcount
        return bool(n)

    # ---------------- reads ----------------
    def get(self, entry_id: int, user_id: str) -> Optional[WorkEntry]:
        with self._session() as conn:
            r = conn.execute(
                "SELECT * FROM work_entries WHERE id=? AND user_id=?",
                (entry_id, user_id),
            ).fetchone()
        return WorkEntry.from_row(r) if r else None

    def find_active_for_user(self, user_id: str) -> Optional[WorkEntry]:
        with self._session() as conn:
            r = conn.execute(
                """
                SELECT * FROM work_entries
                WHERE user_id=? AND (end_time IS NULL OR is_running=1)
                ORDER BY work_date DESC, start_time DESC
                LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        return WorkEntry.from_row(r) if r else None

    def find_stale_for_user(self, user_id: str, before: date) -> Optional[WorkEntry]:
        with self._session() as conn:
            r = conn.execute(
                """
                SELECT * FROM work_entries
                WHERE user_id=? AND work_date < ? AND (end_time IS NULL OR is_running=1)
                ORDER BY work_date DESC, start_time DESC
                LIMIT 1
                """,
                (user_id, before.isoformat()),
            ).fetchone()
        return WorkEntry.from_row(r) if r else None

    def query_range(self, user_id: str, from_date: date, to_date: date) -> List[WorkEntry]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM work_entries
                WHERE user_id=? AND work_date BETWEEN ? AND ?
                ORDER BY work_date ASC, start_time ASC
                """,
                (user_id, from_date.isoformat(), to_date.isoformat()),
            ).fetchall()
        return [WorkEntry.from_row(r) for r in rows]

    def query_closed(self, user_id: str) -> List[WorkEntry]:
        """Every entry with an end time, read in a single statement."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM work_entries
                WHERE user_id=? AND end_time IS NOT NULL
                ORDER BY work_date ASC, start_time ASC
                """,
                (user_id,),
            ).fetchall()
        return [WorkEntry.from_row(r) for r in rows]
