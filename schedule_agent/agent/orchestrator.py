from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..config import (
    AGENT_VERBOSE,
    BACKEND_TIMEOUT_SECONDS,
    DEFAULT_FREE_SLOT_MINUTES,
    DEFAULT_RANGE_DAYS,
    LIST_EVENTS_LIMIT,
    RECENT_TURNS_FOR_INTENT,
    SEARCH_RANGE_DAYS,
)
from ..errors import (
    AmbiguousEventTarget,
    EventNotFound,
    EventValidationError,
    SchedulerError,
    SchedulingConflict,
)
from ..utils import _log_debug
from .calendar_backend import UNLIMITED, CalendarBackend
from .conflict_manager import find_conflicts
from .context_provider import (
    call_backend,
    default_query_range,
    enclosing_days,
    min_duration_from,
)
from .normalizer import DateTimeResolver
from .question_agent import build_clarification_question
from .response_agent import (
    GENERAL_FALLBACK_MESSAGE,
    describe_error,
    format_created,
    format_deleted,
    format_event_details,
    format_event_list,
    format_free_slots,
    format_search_results,
    format_updated,
)
from .schemas import DispatchResult, Event, EventSpec, Intent, TimeRange
from .state import ConversationState
from .time_block_planner import find_free_slots

logger = logging.getLogger(__name__)


class DispatcherConfig(BaseModel):
  model_config = ConfigDict(extra="forbid")

  verbose: bool = False
  backend_timeout_seconds: float = Field(default=BACKEND_TIMEOUT_SECONDS, gt=0)
  list_limit: int = Field(default=LIST_EVENTS_LIMIT, ge=1)
  default_range_days: int = Field(default=DEFAULT_RANGE_DAYS, ge=1)
  search_range_days: int = Field(default=SEARCH_RANGE_DAYS, ge=1)
  default_free_slot_minutes: int = Field(default=DEFAULT_FREE_SLOT_MINUTES, ge=1)
  recent_turns: int = Field(default=RECENT_TURNS_FOR_INTENT, ge=0)


def load_dispatcher_config() -> DispatcherConfig:
  return DispatcherConfig(verbose=AGENT_VERBOSE)


class _Outcome(BaseModel):
  model_config = ConfigDict(extra="forbid")

  reply: str
  event_id: Optional[str] = None


class IntentDispatcher:
  """Turns one structured intent into calendar calls and one reply.

  Each call to :meth:`dispatch` is a full cycle: the user turn is recorded,
  the intent either asks a follow-up question or runs against the backend,
  and exactly one assistant turn is appended. Nothing carries over between
  cycles except the conversation log.
  """

  def __init__(self,
               backend: CalendarBackend,
               conversation: ConversationState,
               resolver: DateTimeResolver,
               config: Optional[DispatcherConfig] = None,
               clock: Optional[Callable[[], datetime]] = None) -> None:
    self.backend = backend
    self.conversation = conversation
    self.resolver = resolver
    self.config = config or DispatcherConfig()
    self._clock = clock or (lambda: datetime.now(timezone.utc))

  @property
  def zone(self):
    return self.resolver.zone

  def _debug(self, message: str) -> None:
    _log_debug(f"[DISPATCH] {message}", self.config.verbose)

  async def dispatch(self, user_text: str, intent: Intent) -> DispatchResult:
    self.conversation.add_user_turn(user_text)
    self._debug(f"received action={intent.action} missing={intent.missing}")

    if intent.missing is not None:
      question = build_clarification_question(intent.missing)
      self.conversation.add_assistant_turn(question)
      self._debug(f"needs_info missing={intent.missing}")
      return DispatchResult(state="needs_info", reply=question)

    try:
      outcome = await self._execute(intent)
    except SchedulerError as exc:
      reply = describe_error(exc, self.zone)
      self.conversation.add_assistant_turn(reply)
      self._debug(f"failed kind={exc.kind} detail={exc}")
      if exc.kind in ("backend_error", "timeout"):
        logger.warning("calendar backend failure: %s", exc)
      return DispatchResult(state="failed", reply=reply, error_kind=exc.kind)

    self.conversation.add_assistant_turn(outcome.reply, outcome.event_id)
    self._debug(f"executed action={intent.action}")
    return DispatchResult(state="executed",
                          reply=outcome.reply,
                          event_id=outcome.event_id)

  async def _execute(self, intent: Intent) -> _Outcome:
    if intent.action == "create_event":
      return await self._create_event(intent)
    if intent.action == "list_events":
      return await self._list_events(intent)
    if intent.action == "update_event":
      return await self._update_event(intent)
    if intent.action == "delete_event":
      return await self._delete_event(intent)
    if intent.action == "search_events":
      return await self._search_events(intent)
    if intent.action == "get_event_details":
      return await self._event_details(intent)
    if intent.action == "find_free_slots":
      return await self._free_slots(intent)
    return _Outcome(reply=intent.response_text or GENERAL_FALLBACK_MESSAGE)

  # ---------------------------------------------------------------------------
  #  Backend access
  # ---------------------------------------------------------------------------

  async def _list(self, time_range: TimeRange) -> List[Event]:
    return await call_backend(
        self.backend.list_events(time_range, self.config.list_limit),
        "list events",
        self.config.backend_timeout_seconds,
    )

  async def _list_all(self, time_range: TimeRange) -> List[Event]:
    """Every event in ``time_range``; busy-time checks must not be truncated."""
    return await call_backend(
        self.backend.list_events(time_range, UNLIMITED),
        "list events",
        self.config.backend_timeout_seconds,
    )

  def _now(self) -> datetime:
    return self._clock()

  def _query_range(self, intent: Intent, days: int) -> TimeRange:
    if intent.range_hint is not None:
      return intent.range_hint
    return default_query_range(self._now(), self.zone, days)

  # ---------------------------------------------------------------------------
  #  Actions
  # ---------------------------------------------------------------------------

  def _end_from_duration(self, start: datetime,
                         minutes: Optional[int]) -> Optional[datetime]:
    # Zero or negative durations count as no duration at all.
    if not minutes or minutes <= 0:
      return None
    try:
      return start + timedelta(minutes=minutes)
    except OverflowError as exc:
      raise EventValidationError("invalid_duration", "end_time") from exc

  def _resolve_create_range(self, intent: Intent) -> Tuple[str, TimeRange]:
    partial = intent.partial_event
    start = self.resolver.resolve_optional(partial.start)
    end = self.resolver.resolve_optional(partial.end)
    if start is not None and end is None:
      end = self._end_from_duration(start, partial.duration_minutes)
    time_range = None
    if start is not None and end is not None:
      time_range = TimeRange.between(start, end)

    title = (partial.title or "").strip()
    if not title:
      raise EventValidationError("missing_field", "title")
    if start is None:
      raise EventValidationError("missing_field", "start_time")
    if time_range is None:
      raise EventValidationError("missing_field", "end_time")
    return title, time_range

  async def _check_conflicts(self, time_range: TimeRange,
                             ignore_id: Optional[str] = None) -> None:
    existing = await self._list_all(enclosing_days(time_range, self.zone))
    conflicts = [e for e in find_conflicts(existing, time_range) if e.id != ignore_id]
    if conflicts:
      raise SchedulingConflict(conflicts)

  async def _create_event(self, intent: Intent) -> _Outcome:
    title, time_range = self._resolve_create_range(intent)
    await self._check_conflicts(time_range)

    partial = intent.partial_event
    spec = EventSpec(
        title=title,
        description=partial.description,
        location=partial.location,
        time_range=time_range,
        attendees=list(partial.attendees),
        priority=partial.priority or "medium",
    )
    event_id = await call_backend(self.backend.create_event(spec),
                                  "create event",
                                  self.config.backend_timeout_seconds)
    return _Outcome(reply=format_created(title, time_range, self.zone),
                    event_id=event_id)

  async def _list_events(self, intent: Intent) -> _Outcome:
    time_range = self._query_range(intent, self.config.default_range_days)
    events = await self._list(time_range)
    return _Outcome(reply=format_event_list(events, time_range, self.zone))

  def _match_delete_target(self, intent: Intent, events: List[Event]) -> Event:
    needle = (intent.partial_event.title or "").strip().lower()
    if needle:
      matches = [e for e in events if needle in e.title.lower()]
    else:
      haystack = intent.free_text.lower()
      matches = [e for e in events if e.title.strip() and e.title.lower() in haystack]
    if not matches:
      raise EventNotFound(needle or intent.free_text)
    if len(matches) > 1 and needle:
      exact = [e for e in matches if e.title.lower() == needle]
      if len(exact) == 1:
        return exact[0]
    if len(matches) > 1:
      raise AmbiguousEventTarget(matches)
    return matches[0]

  async def _delete_event(self, intent: Intent) -> _Outcome:
    event_id = (intent.partial_event.id or "").strip()
    if event_id:
      title = intent.partial_event.title or event_id
    else:
      events = await self._list_all(self._query_range(intent, self.config.search_range_days))
      target = self._match_delete_target(intent, events)
      event_id, title = target.id, target.title
    await call_backend(self.backend.delete_event(event_id),
                       "delete event",
                       self.config.backend_timeout_seconds)
    return _Outcome(reply=format_deleted(title), event_id=event_id)

  async def _find_update_target(self, intent: Intent) -> Event:
    events = await self._list_all(self._query_range(intent, self.config.search_range_days))
    event_id = (intent.partial_event.id or "").strip()
    if not event_id:
      return self._match_delete_target(intent, events)
    for event in events:
      if event.id == event_id:
        return event
    raise EventNotFound(event_id)

  def _updated_range(self, intent: Intent, current: TimeRange) -> TimeRange:
    """Apply new start/end/duration to ``current``.

    A new start alone keeps the event's length; a duration alone keeps its
    start.
    """
    partial = intent.partial_event
    start = self.resolver.resolve_optional(partial.start)
    end = self.resolver.resolve_optional(partial.end)
    if start is None and end is None and (partial.duration_minutes or 0) <= 0:
      return current
    if start is None:
      start = current.start
    if end is None:
      end = self._end_from_duration(start, partial.duration_minutes)
    if end is None:
      try:
        end = start + current.duration()
      except OverflowError as exc:
        raise EventValidationError("invalid_duration", "end_time") from exc
    return TimeRange.between(start, end)

  async def _update_event(self, intent: Intent) -> _Outcome:
    target = await self._find_update_target(intent)
    partial = intent.partial_event
    time_range = self._updated_range(intent, target.time_range)
    # Without an explicit id the title names the target, so it is kept.
    title = target.title
    if (partial.id or "").strip() and (partial.title or "").strip():
      title = partial.title.strip()

    if time_range != target.time_range:
      await self._check_conflicts(time_range, ignore_id=target.id)

    spec = EventSpec(
        title=title,
        description=partial.description if partial.description is not None else target.description,
        location=partial.location if partial.location is not None else target.location,
        time_range=time_range,
        attendees=list(partial.attendees) or list(target.attendees),
        priority=partial.priority or target.priority,
    )
    await call_backend(self.backend.update_event(target.id, spec),
                       "update event",
                       self.config.backend_timeout_seconds)
    return _Outcome(reply=format_updated(title, time_range, self.zone),
                    event_id=target.id)

  def _search_query(self, intent: Intent) -> str:
    partial = intent.partial_event
    for value in (partial.title, partial.description, partial.location):
      if value and value.strip():
        return value.strip()
    return intent.free_text.strip()

  def _filter(self, events: List[Event], query: str) -> List[Event]:
    needle = query.lower()
    return [
        e for e in events
        if needle in e.title.lower()
        or needle in (e.description or "").lower()
        or needle in (e.location or "").lower()
    ]

  async def _search_events(self, intent: Intent) -> _Outcome:
    query = self._search_query(intent)
    events = await self._list(self._query_range(intent, self.config.search_range_days))
    return _Outcome(reply=format_search_results(query, self._filter(events, query), self.zone))

  async def _event_details(self, intent: Intent) -> _Outcome:
    events = await self._list_all(self._query_range(intent, self.config.search_range_days))
    event_id = (intent.partial_event.id or "").strip()
    if event_id:
      matches = [e for e in events if e.id == event_id]
    else:
      matches = self._filter(events, self._search_query(intent))
    if not matches:
      raise EventNotFound(event_id or self._search_query(intent))
    if len(matches) > 1:
      raise AmbiguousEventTarget(matches)
    event = matches[0]
    return _Outcome(reply=format_event_details(event, self.zone), event_id=event.id)

  async def _free_slots(self, intent: Intent) -> _Outcome:
    window = self._query_range(intent, self.config.default_range_days)
    now = self._now()
    minutes = intent.partial_event.duration_minutes or 0
    if minutes <= 0:
      minutes = self.config.default_free_slot_minutes
    # Past time is never offered.
    if window.end <= now:
      return _Outcome(reply=format_free_slots([], window, minutes, self.zone))
    if window.start < now:
      window = TimeRange(start=now, end=window.end)
    events = await self._list_all(window)
    slots = find_free_slots([e.time_range for e in events], window,
                            min_duration_from(minutes, self.config.default_free_slot_minutes))
    return _Outcome(reply=format_free_slots(slots, window, minutes, self.zone))
