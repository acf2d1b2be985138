from __future__ import annotations

from typing import Iterable, List

from .schemas import Event, TimeRange


def has_conflict(existing: Iterable[TimeRange], candidate: TimeRange) -> bool:
  """True when ``candidate`` overlaps any existing range.

  Ranges are half-open, so back-to-back appointments do not conflict.
  """
  return any(candidate.start < item.end and candidate.end > item.start
             for item in existing)


def find_conflicts(events: Iterable[Event], candidate: TimeRange) -> List[Event]:
  conflicts = [event for event in events if has_conflict([event.time_range], candidate)]
  conflicts.sort(key=lambda event: event.start)
  return conflicts
