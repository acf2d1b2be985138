"""Calendar capability consumed by the dispatcher.

Implementations live next to their transport: the in-memory store in
``schedule_agent.state`` and Google Calendar in ``schedule_agent.gcal``.
"""

from __future__ import annotations

import os
from typing import List, Optional, Protocol

from ..config import CALENDAR_BACKEND, LIST_EVENTS_LIMIT
from .schemas import Event, EventSpec, TimeRange


# Passed as ``limit`` to fetch every overlapping event.
UNLIMITED = 0


class CalendarBackend(Protocol):

  async def list_events(self,
                        time_range: TimeRange,
                        limit: int = LIST_EVENTS_LIMIT) -> List[Event]:
    """Events overlapping ``time_range``, ordered by start.

    ``limit`` caps the result; zero or less returns everything.
    """
    ...

  async def create_event(self, spec: EventSpec) -> str:
    """Create the event and return its id."""
    ...

  async def update_event(self, event_id: str, spec: EventSpec) -> None:
    """Replace the event's fields with ``spec``; raises EventNotFound."""
    ...

  async def delete_event(self, event_id: str) -> None:
    ...


def select_calendar_backend(name: Optional[str] = None) -> CalendarBackend:
  """Pick a backend from ``CALENDAR_BACKEND`` (``local`` or ``google``)."""
  choice = (name or os.getenv("CALENDAR_BACKEND") or CALENDAR_BACKEND).strip().lower()
  if choice == "google":
    from ..gcal import GoogleCalendarBackend
    return GoogleCalendarBackend()
  if choice in ("local", "memory", ""):
    from ..state import LocalCalendarBackend
    return LocalCalendarBackend()
  raise ValueError(f"Unknown calendar backend: {choice}")
