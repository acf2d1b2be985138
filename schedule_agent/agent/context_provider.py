from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Optional, TypeVar
from zoneinfo import ZoneInfo

from ..config import LIST_EVENTS_LIMIT
from ..errors import BackendError, BackendTimeout, SchedulerError
from ..utils import _log_debug
from .calendar_backend import CalendarBackend
from .normalizer import add_local_days, start_of_day
from .schemas import TimeRange

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TODAY_WORDS = ("today", "今日", "きょう")
_TOMORROW_WORDS = ("tomorrow", "明日", "あした")
_WEEK_WORDS = ("this week", "今週")


async def call_backend(awaitable: Awaitable[T], operation: str,
                       timeout_seconds: float) -> T:
  """Await one backend call under a timeout. Failures are never retried."""
  try:
    return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
  except asyncio.TimeoutError as exc:
    raise BackendTimeout(operation, timeout_seconds) from exc
  except SchedulerError:
    raise
  except Exception as exc:
    raise BackendError(f"Failed to {operation}: {exc}") from exc


def day_range(now: datetime, zone: ZoneInfo, offset_days: int = 0,
              days: int = 1) -> TimeRange:
  start = add_local_days(start_of_day(now, zone), offset_days, zone)
  return TimeRange(start=start, end=add_local_days(start, days, zone))


def default_query_range(now: datetime, zone: ZoneInfo, days: int) -> TimeRange:
  """Start of today through ``days`` days later."""
  return day_range(now, zone, 0, max(days, 1))


def enclosing_days(time_range: TimeRange, zone: ZoneInfo) -> TimeRange:
  start = start_of_day(time_range.start, zone)
  end = start_of_day(time_range.end, zone)
  if end < time_range.end:
    end = add_local_days(end, 1, zone)
  return TimeRange(start=start, end=end)


def week_range(now: datetime, zone: ZoneInfo) -> TimeRange:
  local = now.astimezone(zone)
  return day_range(now, zone, -local.weekday(), 7)


def range_hint_from_text(text: str, now: datetime,
                         zone: ZoneInfo) -> Optional[TimeRange]:
  lowered = (text or "").lower()
  if any(word in lowered for word in _TOMORROW_WORDS):
    return day_range(now, zone, 1)
  if any(word in lowered for word in _TODAY_WORDS):
    return day_range(now, zone, 0)
  if any(word in lowered for word in _WEEK_WORDS):
    return week_range(now, zone)
  return None


async def load_context(backend: CalendarBackend,
                       now: datetime,
                       zone: ZoneInfo,
                       timeout_seconds: float,
                       verbose: bool = False) -> str:
  """Short calendar summary handed to the intent source with each turn."""
  local_now = now.astimezone(zone)
  lines = [
      f"Current time: {local_now.isoformat(timespec='minutes')}",
      f"Timezone: {zone.key}",
  ]
  today = day_range(now, zone, 0)
  tomorrow = day_range(now, zone, 1)
  try:
    events = await call_backend(
        backend.list_events(TimeRange(start=today.start, end=tomorrow.end),
                            LIST_EVENTS_LIMIT),
        "load calendar context",
        timeout_seconds,
    )
  except SchedulerError as exc:
    logger.warning("calendar context unavailable: %s", exc)
    _log_debug(f"[CONTEXT] counts skipped: {exc}", verbose)
    return "\n".join(lines)

  today_count = sum(1 for e in events if e.time_range.overlaps(today))
  tomorrow_count = sum(1 for e in events if e.time_range.overlaps(tomorrow))
  lines.append(f"Events today: {today_count}")
  lines.append(f"Events tomorrow: {tomorrow_count}")
  return "\n".join(lines)


def min_duration_from(value: Optional[int], default: int) -> timedelta:
  if isinstance(value, int) and value > 0:
    return timedelta(minutes=value)
  return timedelta(minutes=default)
