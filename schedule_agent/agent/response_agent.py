from __future__ import annotations

from typing import List, Sequence
from zoneinfo import ZoneInfo

from ..errors import (
    AmbiguousEventTarget,
    BackendError,
    BackendTimeout,
    DateParseError,
    EventNotFound,
    EventValidationError,
    SchedulerError,
    SchedulingConflict,
)
from ..utils import format_clock, format_long, format_short
from .question_agent import build_clarification_question
from .schemas import Event, TimeRange
from .time_block_planner import total_free_time

NO_EVENTS_MESSAGE = "You have no events scheduled for that period."
GENERAL_FALLBACK_MESSAGE = "I can add, list, search, update, or delete events for you. What would you like to do?"
EMPTY_INPUT_MESSAGE = "Please type a request, for example \"show today's events\"."

_PRIORITY_LABELS = {
    "low": "Low",
    "medium": "Medium",
    "high": "High",
    "urgent": "Urgent",
}
_STATUS_LABELS = {
    "scheduled": "Scheduled",
    "in_progress": "In progress",
    "completed": "Completed",
    "cancelled": "Cancelled",
}


def format_event_line(event: Event, zone: ZoneInfo) -> str:
  return (f"• {event.title} ({format_short(event.start, zone)}-"
          f"{format_clock(event.end, zone)})")


def format_range(time_range: TimeRange, zone: ZoneInfo) -> str:
  return f"{format_short(time_range.start, zone)} to {format_short(time_range.end, zone)}"


def format_event_list(events: Sequence[Event], time_range: TimeRange,
                      zone: ZoneInfo) -> str:
  if not events:
    return NO_EVENTS_MESSAGE
  ordered = sorted(events, key=lambda e: e.start)
  lines = [f"Events from {format_range(time_range, zone)} ({len(ordered)}):"]
  lines.extend(format_event_line(event, zone) for event in ordered)
  return "\n".join(lines)


def format_search_results(query: str, events: Sequence[Event], zone: ZoneInfo) -> str:
  if not events:
    return f"No events matched \"{query}\"."
  ordered = sorted(events, key=lambda e: e.start)
  lines = [f"Search results for \"{query}\" ({len(ordered)}):"]
  lines.extend(format_event_line(event, zone) for event in ordered)
  return "\n".join(lines)


def format_event_details(event: Event, zone: ZoneInfo) -> str:
  lines = [
      "Event details:",
      f"Title: {event.title}",
      f"Start: {format_long(event.start, zone)}",
      f"End: {format_long(event.end, zone)}",
      f"Priority: {_PRIORITY_LABELS.get(event.priority, event.priority)}",
      f"Status: {_STATUS_LABELS.get(event.status, event.status)}",
  ]
  if event.description:
    lines.append(f"Description: {event.description}")
  if event.location:
    lines.append(f"Location: {event.location}")
  if event.attendees:
    lines.append(f"Attendees: {', '.join(event.attendees)}")
  return "\n".join(lines)


def format_free_slots(slots: Sequence[TimeRange], window: TimeRange,
                      minutes: int, zone: ZoneInfo) -> str:
  if not slots:
    return (f"I couldn't find a free block of {minutes} minutes "
            f"from {format_range(window, zone)}.")
  hours = total_free_time(slots).total_seconds() / 3600
  lines = [f"Free time from {format_range(window, zone)} ({hours:.1f}h total):"]
  for slot in slots:
    lines.append(f"• {format_short(slot.start, zone)}-{format_clock(slot.end, zone)}")
  return "\n".join(lines)


def format_created(title: str, time_range: TimeRange, zone: ZoneInfo) -> str:
  return (f"Added \"{title}\" ({format_short(time_range.start, zone)}-"
          f"{format_clock(time_range.end, zone)}).")


def format_updated(title: str, time_range: TimeRange, zone: ZoneInfo) -> str:
  return (f"Updated \"{title}\" ({format_short(time_range.start, zone)}-"
          f"{format_clock(time_range.end, zone)}).")


def format_deleted(title: str) -> str:
  return f"Deleted \"{title}\"."


def _candidate_titles(candidates: List[Event], zone: ZoneInfo) -> str:
  return "\n".join(format_event_line(event, zone) for event in candidates[:8])


def describe_error(exc: SchedulerError, zone: ZoneInfo) -> str:
  if isinstance(exc, DateParseError):
    if exc.reason == "ambiguous_local_time":
      return (f"\"{exc.text}\" falls in a daylight saving change and could mean two "
              "different times. Please give the time with an offset.")
    return f"I couldn't understand the date or time \"{exc.text}\"."
  if isinstance(exc, EventValidationError):
    if exc.reason == "end_before_start":
      return "The end time must be after the start time."
    if exc.reason == "invalid_duration":
      return "That duration is too long. Please give an end time instead."
    return build_clarification_question(exc.field)
  if isinstance(exc, SchedulingConflict):
    return ("That time overlaps with an existing event:\n"
            f"{_candidate_titles(exc.conflicts, zone)}")
  if isinstance(exc, EventNotFound):
    return "I couldn't find a matching event."
  if isinstance(exc, AmbiguousEventTarget):
    return ("Several events match. Which one did you mean?\n"
            f"{_candidate_titles(exc.candidates, zone)}")
  if isinstance(exc, BackendTimeout):
    return f"Calendar request timed out: {exc}"
  if isinstance(exc, BackendError):
    return f"Calendar error: {exc.message}"
  return f"Something went wrong: {exc}"
