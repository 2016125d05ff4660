from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time
from typing import Optional

from dates import END_OF_DAY, hhmm, local_now
from errors import InvalidInput, NotFound
from store import EntryStore, WorkEntry
from timer import Clock, finalize_break, session_state

logger = logging.getLogger("workhours.stale")

STOP_EOD = "stop_eod"
DISCARD = "discard"
STALE_ACTIONS = (STOP_EOD, DISCARD)


@dataclass(frozen=True)
class StaleSession:
    """An entry left open past the day it started on."""

    id: int
    work_date: date
    start_time: time
    note: Optional[str]

    @classmethod
    def from_entry(cls, e: WorkEntry) -> "StaleSession":
        return cls(id=e.id, work_date=e.work_date, start_time=e.start_time, note=e.note)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "work_date": self.work_date.isoformat(),
            "start_time": hhmm(self.start_time),
            "note": self.note,
        }


class StaleSessionResolver:
    def __init__(self, store: EntryStore, clock: Clock = local_now):
        self.store = store
        self.clock = clock

    def find_stale_session(self, user_id: str) -> Optional[StaleSession]:
        entry = self.store.find_stale_for_user(user_id, self.clock().date())
        return StaleSession.from_entry(entry) if entry else None

    def resolve_stale(self, user_id: str, action: str) -> Optional[WorkEntry]:
        """Close (``stop_eod``) or delete (``discard``) the stale session.

        Returns the closed entry, or None when it was discarded.
        """
        if action not in STALE_ACTIONS:
            raise InvalidInput("Invalid action")

        today = self.clock().date()
        with self.store.atomic() as tx:
            entry = tx.find_stale_for_user(user_id, today)
            if entry is None:
                raise NotFound("No stale timer found")

            if action == DISCARD:
                if not tx.delete_by_id(entry.id, user_id, expect=session_state(entry)):
                    raise NotFound("No stale timer found")
                logger.info("stale timer discarded: user=%s entry=%s (%s)", user_id, entry.id, entry.work_date)
                return None

            patch = {"end_time": END_OF_DAY, "is_running": False}
            patch.update(finalize_break(entry, END_OF_DAY))
            closed = tx.compare_and_set(entry.id, user_id, session_state(entry), patch)
            if closed is None:
                raise NotFound("No stale timer found")

        logger.info("stale timer closed at end of day: user=%s entry=%s (%s)", user_id, closed.id, closed.work_date)
        return closed
