"""
Epoch-millisecond and UTC calendar-day helpers shared by the analytics code
"""
import time
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List


def now_ms() -> int:
    return int(time.time() * 1000)


def to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def date_key(ms: int) -> str:
    """YYYY-MM-DD (UTC) for an epoch-millisecond timestamp"""
    return to_datetime(ms).date().isoformat()


def iso_timestamp(ms: int) -> str:
    """ISO-8601 with millisecond precision and a Z suffix, e.g. 2024-05-01T10:00:00.000Z"""
    return to_datetime(ms).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iter_date_keys(start_ms: int, end_ms: int) -> Iterator[str]:
    """Every calendar day in [start, end], inclusive"""
    current: date = to_datetime(start_ms).date()
    last: date = to_datetime(end_ms).date()
    while current <= last:
        yield current.isoformat()
        current += timedelta(days=1)


def trailing_date_keys(now: int, days: int) -> List[str]:
    """The last `days` calendar days ending with (and including) today"""
    today = to_datetime(now).date()
    return [(today - timedelta(days=i)).isoformat() for i in range(max(0, days))]
