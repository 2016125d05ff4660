from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bank_holidays import PublicHolidays
from baseline import BaselineStore
from config import APP_SECRET, COOKIE_AGE, COOKIE_NAME, DB_PATH, configure_logging
from dates import hhmm, local_now, parse_hhmm, parse_ymd, seconds_between
from errors import Conflict, InvalidInput, NotFound, Unauthorized, WorkHoursError
from overtime import HolidayProvider, OvertimeEngine
from stale import StaleSessionResolver
from store import EntryStore, WorkEntry, init_db
from timer import Clock, TimerService, finalize_break, session_state

logger = configure_logging()

app = FastAPI(title="Work Hours Tracker", version="10.0")


# ======================================================
# SERVICES
# ======================================================
@dataclass
class Services:
    store: EntryStore
    baselines: BaselineStore
    timer: TimerService
    stale: StaleSessionResolver
    overtime: OvertimeEngine
    holidays: HolidayProvider


def build_services(
    db_path: Union[str, Path] = DB_PATH,
    clock: Clock = local_now,
    holiday_provider: Optional[HolidayProvider] = None,
) -> Services:
    init_db(db_path)
    store = EntryStore(db_path)
    baselines = BaselineStore(db_path)
    holidays = holiday_provider or PublicHolidays()
    return Services(
        store=store,
        baselines=baselines,
        timer=TimerService(store, baselines, clock),
        stale=StaleSessionResolver(store, clock),
        overtime=OvertimeEngine(store, holidays, clock),
        holidays=holidays,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()


@app.exception_handler(WorkHoursError)
async def workhours_error_handler(request: Request, exc: WorkHoursError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


# ======================================================
# IDENTITY (signed session cookie)
# ======================================================
# Sessions are issued by the auth service; this side only verifies them.
def sign(data: str) -> str:
    return hmac.new(APP_SECRET, data.encode("utf-8"), hashlib.sha256).hexdigest()


def _epoch() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def make_token(uid: str) -> str:
    ts = str(_epoch())
    rnd = secrets.token_hex(8)
    payload = f"{uid}.{ts}.{rnd}"
    return f"{payload}.{sign(payload)}"


def verify_token(tok: str) -> Optional[str]:
    try:
        uid, ts, rnd, sig = tok.rsplit(".", 3)
        issued = int(ts)
    except ValueError:
        return None
    payload = f"{uid}.{ts}.{rnd}"
    if not hmac.compare_digest(sig, sign(payload)):
        return None
    if _epoch() - issued > COOKIE_AGE:
        return None
    return uid or None


def require_user(req: Request) -> str:
    tok = req.cookies.get(COOKIE_NAME)
    uid = verify_token(tok) if tok else None
    if not uid:
        raise Unauthorized()
    return uid


# ======================================================
# MODELS
# ======================================================
class EntryCreate(BaseModel):
    work_date: str  # yyyy-mm-dd
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    break_minutes: int = 0
    note: Optional[str] = None


class EntryPatch(BaseModel):
    work_date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    break_minutes: Optional[int] = None
    note: Optional[str] = None


class SettingsPatch(BaseModel):
    baseline_weekly_minutes: Optional[int] = None
    baseline_daily_minutes: Optional[int] = None
    workdays_per_week: Optional[int] = None


class NamePatch(BaseModel):
    name: str


class StaleResolveIn(BaseModel):
    action: str  # "stop_eod" | "discard"


def check_range(start, end, break_minutes: int) -> int:
    """Worked minutes of a closed same-day interval; InvalidInput if it makes no sense."""
    if end <= start:
        raise InvalidInput("end_time must be after start_time")
    if break_minutes < 0:
        raise InvalidInput("break_minutes must be >= 0")
    raw = seconds_between(start, end) // 60
    if break_minutes > raw:
        raise InvalidInput("break_minutes is too large")
    return raw - break_minutes


def clean_note(note: Optional[str]) -> Optional[str]:
    return note.strip() if note and note.strip() else None


def parse_range(from_s: str, to_s: str) -> tuple[date, date]:
    d_from, d_to = parse_ymd(from_s), parse_ymd(to_s)
    if d_from > d_to:
        raise InvalidInput("from must not be after to")
    return d_from, d_to


# ======================================================
# ME
# ======================================================
@app.get("/api/me")
def me(req: Request):
    uid = require_user(req)
    return {"ok": True, "user_id": uid}


# ======================================================
# TIMER
# ======================================================
@app.get("/api/timer/status")
def timer_status(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    entry = svc.timer.current(uid)
    stale = svc.stale.find_stale_session(uid)
    return {
        "ok": True,
        "running": entry is not None,
        "entry": entry.to_dict() if entry else None,
        "stale_entry": stale.to_dict() if stale else None,
    }


@app.post("/api/timer/start")
def timer_start(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    e = svc.timer.start_timer(uid)
    return {"ok": True, "running": True, "entry_id": e.id, "start_time": hhmm(e.start_time)}


@app.post("/api/timer/stop")
def timer_stop(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    e = svc.timer.stop_timer(uid)
    return {
        "ok": True,
        "running": False,
        "entry_id": e.id,
        "start_time": hhmm(e.start_time),
        "end_time": hhmm(e.end_time),
        "break_minutes": e.break_minutes,
        "break_seconds": e.break_seconds,
    }


@app.post("/api/timer/break/start")
def break_start(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    svc.timer.start_break(uid)
    return {"ok": True, "is_on_break": True}


@app.post("/api/timer/break/stop")
def break_stop(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    e = svc.timer.stop_break(uid)
    return {"ok": True, "is_on_break": False, "break_seconds": e.break_seconds, "break_minutes": e.break_minutes}


@app.post("/api/timer/stale/resolve")
def stale_resolve(p: StaleResolveIn, req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    closed = svc.stale.resolve_stale(uid, p.action)
    return {"ok": True, "action": p.action, "entry": closed.to_dict() if closed else None}


# ======================================================
# ENTRIES
# ======================================================
@app.get("/api/entries")
def list_entries(
    req: Request,
    from_: str = Query(..., alias="from"),
    to: str = Query(...),
    svc: Services = Depends(get_services),
):
    uid = require_user(req)
    d_from, d_to = parse_range(from_, to)
    return {"ok": True, "entries": [e.to_dict() for e in svc.store.query_range(uid, d_from, d_to)]}


@app.post("/api/entries")
def create_entry(p: EntryCreate, req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)

    work_date = parse_ymd(p.work_date)
    start, end = parse_hhmm(p.start_time), parse_hhmm(p.end_time)
    check_range(start, end, p.break_minutes)

    baseline = svc.baselines.get_baseline(uid)
    e = svc.store.insert(
        WorkEntry(
            user_id=uid,
            work_date=work_date,
            start_time=start,
            end_time=end,
            break_minutes=p.break_minutes,
            break_seconds=p.break_minutes * 60,
            note=clean_note(p.note),
            baseline_daily_minutes_at_time=baseline.daily_minutes,
            baseline_weekly_minutes_at_time=baseline.weekly_minutes,
            workdays_per_week_at_time=baseline.workdays_per_week,
        )
    )
    logger.info("entry created: user=%s entry=%s %s", uid, e.id, e.work_date)
    return {"ok": True, "entry": e.to_dict()}


@app.put("/api/entries/{entry_id}")
def update_entry(entry_id: int, p: EntryPatch, req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)

    patch: Dict[str, Any] = {}
    if p.work_date is not None:
        patch["work_date"] = parse_ymd(p.work_date)
    if p.start_time is not None:
        patch["start_time"] = parse_hhmm(p.start_time)
    if p.end_time is not None:
        patch["end_time"] = parse_hhmm(p.end_time)
    if p.break_minutes is not None:
        patch["break_minutes"] = p.break_minutes
        patch["break_seconds"] = p.break_minutes * 60
    if p.note is not None:
        patch["note"] = clean_note(p.note)
    if not patch:
        raise InvalidInput("Nothing to update")

    with svc.store.atomic() as tx:
        cur = tx.get(entry_id, uid)
        if not cur:
            raise NotFound("Entry not found")

        start = patch.get("start_time", cur.start_time)
        end = patch.get("end_time", cur.end_time)
        if end is not None:
            check_range(start, end, patch.get("break_minutes", cur.break_minutes))

        # setting an end on an open entry closes the session
        if cur.is_open and "end_time" in patch:
            patch["is_running"] = False
            if "break_minutes" not in patch:
                patch.update(finalize_break(cur, end))
            else:
                patch.update(is_on_break=False, break_started_at=None)

        e = tx.compare_and_set(entry_id, uid, session_state(cur), patch)
        if e is None:
            raise Conflict("Entry changed concurrently, try again")

    logger.info("entry updated: user=%s entry=%s", uid, entry_id)
    return {"ok": True, "entry": e.to_dict()}


@app.delete("/api/entries/{entry_id}")
def delete_entry(entry_id: int, req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    if not svc.store.delete_by_id(entry_id, uid):
        raise NotFound("Entry not found")
    logger.info("entry deleted: user=%s entry=%s", uid, entry_id)
    return {"ok": True}


# ======================================================
# SETTINGS / PROFILE
# ======================================================
@app.get("/api/settings")
def get_settings(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    return {"ok": True, "settings": svc.baselines.get_baseline(uid).to_dict()}


@app.put("/api/settings")
def put_settings(p: SettingsPatch, req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    b = svc.baselines.update_baseline(
        uid,
        weekly_minutes=p.baseline_weekly_minutes,
        daily_minutes=p.baseline_daily_minutes,
        workdays_per_week=p.workdays_per_week,
    )
    return {"ok": True, "settings": b.to_dict()}


@app.get("/api/user/name")
def get_name(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    return {"ok": True, "name": svc.baselines.get_display_name(uid)}


@app.put("/api/user/name")
def put_name(p: NamePatch, req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    return {"ok": True, "name": svc.baselines.set_display_name(uid, p.name)}


# ======================================================
# HOLIDAYS / STATS
# ======================================================
@app.get("/api/holidays")
def list_holidays(
    req: Request,
    from_: str = Query(..., alias="from"),
    to: str = Query(...),
    svc: Services = Depends(get_services),
):
    require_user(req)
    d_from, d_to = parse_range(from_, to)
    days = sorted(svc.holidays.holidays_in_range(d_from, d_to))
    return {"ok": True, "holidays": [d.isoformat() for d in days]}


@app.get("/api/stats")
def stats(req: Request, svc: Services = Depends(get_services)):
    uid = require_user(req)
    baseline = svc.baselines.get_baseline(uid)
    summary = svc.overtime.summary(uid)
    return {
        "ok": True,
        "stats": {
            "baseline_weekly_minutes": baseline.weekly_minutes,
            "baseline_daily_minutes": baseline.daily_minutes,
            **summary.to_dict(),
        },
    }
