from __future__ import annotations

from typing import Dict, Iterable, List, Optional
import copy
import uuid

from .agent.schemas import Event, EventSpec, TimeRange
from .config import LIST_EVENTS_LIMIT
from .errors import EventNotFound


class LocalCalendarBackend:
    """In-memory calendar used when Google Calendar is not configured.

    Nothing is written to disk; events live as long as the process.
    """

    def __init__(self, events: Optional[Iterable[Event]] = None) -> None:
        self._events: Dict[str, Event] = {}
        for event in events or []:
            self._events[event.id] = event

    def _next_id(self) -> str:
        return uuid.uuid4().hex[:12]

    def store_event(self, spec: EventSpec, event_id: Optional[str] = None) -> Event:
        event = Event(
            id=event_id or self._next_id(),
            title=spec.title,
            description=spec.description,
            location=spec.location,
            time_range=spec.time_range,
            attendees=list(spec.attendees),
            priority=spec.priority,
        )
        self._events[event.id] = event
        return event

    def all_events(self) -> List[Event]:
        return sorted((copy.deepcopy(e) for e in self._events.values()),
                      key=lambda e: e.start)

    async def list_events(self,
                          time_range: TimeRange,
                          limit: int = LIST_EVENTS_LIMIT) -> List[Event]:
        matches = [e for e in self._events.values() if e.time_range.overlaps(time_range)]
        matches.sort(key=lambda e: e.start)
        if limit > 0:
            matches = matches[:limit]
        return [copy.deepcopy(e) for e in matches]

    async def create_event(self, spec: EventSpec) -> str:
        return self.store_event(spec).id

    async def update_event(self, event_id: str, spec: EventSpec) -> None:
        current = self._events.get(event_id)
        if current is None:
            raise EventNotFound(event_id)
        updated = self.store_event(spec, event_id=event_id)
        updated.status = current.status

    async def delete_event(self, event_id: str) -> None:
        if event_id not in self._events:
            raise EventNotFound(event_id)
        del self._events[event_id]
