import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

import config
from errors import QuotaExceeded
from queries import count_records_between, get_photos_per_day


def app_tz() -> ZoneInfo:
    return ZoneInfo(config.APP_TIMEZONE)


def local_now(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(app_tz())


def day_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """[startOfToday, startOfTomorrow) in APP_TIMEZONE, as naive UTC."""
    today = local_now(now).date()
    tz = app_tz()
    start = datetime.combine(today, time.min, tzinfo=tz)
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def remaining_uploads(db: Session, user_id: int, photos_per_day: int, now: datetime | None = None) -> int:
    start, end = day_bounds(now)
    used = count_records_between(db, user_id, start, end)
    return max(photos_per_day - used, 0)


def check_quota(db: Session, user_id: int, attempted: int, now: datetime | None = None) -> int:
    """
    Admit or reject a whole batch. Re-reads the user's current quota so
    plan changes apply immediately. Returns the remaining count on admit.
    """
    remaining = remaining_uploads(db, user_id, get_photos_per_day(db, user_id), now)
    if attempted > remaining:
        raise QuotaExceeded(remaining=remaining, attempted=attempted)
    return remaining


# ---------- per-user admission lock ----------
_locks: dict[int, threading.Lock] = defaultdict(threading.Lock)
_locks_guard = threading.Lock()


@contextmanager
def user_quota_lock(user_id: int):
    """
    Serialize count -> detect -> persist for one user within this process.
    """
    with _locks_guard:
        lock = _locks[user_id]
    with lock:
        yield
