from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List

from .schemas import TimeRange


def find_free_slots(busy: Iterable[TimeRange],
                    window: TimeRange,
                    min_duration: timedelta) -> List[TimeRange]:
  """Gaps inside ``window`` not covered by ``busy`` and at least ``min_duration`` long.

  Busy ranges may overlap each other, arrive unsorted, or stick out of the
  window; the cursor only ever moves forward.
  """
  if min_duration <= timedelta(0):
    raise ValueError("min_duration must be positive")

  ordered = sorted(busy, key=lambda item: item.start)
  slots: List[TimeRange] = []
  cursor: datetime = window.start
  for item in ordered:
    if item.end <= window.start or item.start >= window.end:
      continue
    if item.start - cursor >= min_duration:
      slots.append(TimeRange(start=cursor, end=item.start))
    cursor = max(cursor, item.end)
  if window.end - cursor >= min_duration:
    slots.append(TimeRange(start=cursor, end=window.end))
  return slots


def total_free_time(slots: Iterable[TimeRange]) -> timedelta:
  total = timedelta(0)
  for slot in slots:
    total += slot.duration()
  return total
