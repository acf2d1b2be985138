from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import EventValidationError

ActionName = Literal[
    "create_event",
    "list_events",
    "update_event",
    "search_events",
    "delete_event",
    "get_event_details",
    "general_response",
    "find_free_slots",
]
MissingField = Literal["title", "start_time", "end_time", "all"]
Priority = Literal["low", "medium", "high", "urgent"]
EventStatus = Literal["scheduled", "in_progress", "completed", "cancelled"]
Role = Literal["user", "assistant", "system"]
DispatchState = Literal["needs_info", "executed", "failed"]

_PRIORITY_VALUES = ("low", "medium", "high", "urgent")


def normalize_priority(value: Any) -> Optional[str]:
  if not isinstance(value, str):
    return None
  cleaned = value.strip().lower()
  if cleaned in _PRIORITY_VALUES:
    return cleaned
  return None


# ---------------------------------------------------------------------------
#  Time
# ---------------------------------------------------------------------------

class TimeRange(BaseModel):
  """Half-open [start, end) interval of UTC instants."""
  model_config = ConfigDict(extra="ignore", frozen=True)

  start: datetime
  end: datetime

  @field_validator("start", "end")
  @classmethod
  def _as_utc(cls, value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
      raise ValueError("timestamp must carry a timezone")
    return value.astimezone(timezone.utc)

  @model_validator(mode="after")
  def _check_order(self) -> "TimeRange":
    if self.end <= self.start:
      raise ValueError("end must be after start")
    return self

  @classmethod
  def between(cls, start: datetime, end: datetime) -> "TimeRange":
    if end <= start:
      raise EventValidationError("end_before_start")
    return cls(start=start, end=end)

  def duration(self) -> timedelta:
    return self.end - self.start

  def overlaps(self, other: "TimeRange") -> bool:
    return self.start < other.end and self.end > other.start


# ---------------------------------------------------------------------------
#  Calendar entities
# ---------------------------------------------------------------------------

class EventSpec(BaseModel):
  model_config = ConfigDict(extra="ignore")

  title: str = Field(min_length=1)
  description: Optional[str] = None
  location: Optional[str] = None
  time_range: TimeRange
  attendees: List[str] = Field(default_factory=list)
  priority: Priority = "medium"


class Event(BaseModel):
  model_config = ConfigDict(extra="ignore")

  id: str
  title: str
  description: Optional[str] = None
  location: Optional[str] = None
  time_range: TimeRange
  attendees: List[str] = Field(default_factory=list)
  priority: Priority = "medium"
  status: EventStatus = "scheduled"

  @field_validator("attendees")
  @classmethod
  def _unique_attendees(cls, value: List[str]) -> List[str]:
    seen: List[str] = []
    for item in value:
      cleaned = item.strip()
      if cleaned and cleaned not in seen:
        seen.append(cleaned)
    return seen

  @property
  def start(self) -> datetime:
    return self.time_range.start

  @property
  def end(self) -> datetime:
    return self.time_range.end


# ---------------------------------------------------------------------------
#  Intent
# ---------------------------------------------------------------------------

class PartialEventFields(BaseModel):
  """Event fields as the intent source saw them; times stay unparsed."""
  model_config = ConfigDict(extra="ignore", frozen=True)

  id: Optional[str] = None
  title: Optional[str] = None
  start: Optional[str] = None
  end: Optional[str] = None
  description: Optional[str] = None
  location: Optional[str] = None
  attendees: List[str] = Field(default_factory=list)
  priority: Optional[Priority] = None
  duration_minutes: Optional[int] = None

  @field_validator("priority", mode="before")
  @classmethod
  def _coerce_priority(cls, value: Any) -> Optional[str]:
    return normalize_priority(value)


class Intent(BaseModel):
  model_config = ConfigDict(extra="ignore", frozen=True)

  action: ActionName
  partial_event: PartialEventFields = Field(default_factory=PartialEventFields)
  missing: Optional[MissingField] = None
  range_hint: Optional[TimeRange] = None
  free_text: str = ""
  response_text: Optional[str] = None


# ---------------------------------------------------------------------------
#  Structured model output
# ---------------------------------------------------------------------------

class LLMEventData(BaseModel):
  model_config = ConfigDict(extra="ignore")

  id: Optional[str] = None
  title: Optional[str] = None
  description: Optional[str] = None
  start_time: Optional[str] = None
  end_time: Optional[str] = None
  location: Optional[str] = None
  attendees: Optional[List[str]] = None
  priority: Optional[str] = None
  duration_minutes: Optional[int] = None


class LLMIntentOutput(BaseModel):
  """Intent model output. Action names are matched loosely later."""
  model_config = ConfigDict(extra="ignore")

  action: str = "general_response"
  event_data: Optional[LLMEventData] = None
  response_text: Optional[str] = None
  missing_data: Optional[str] = None
  range_start: Optional[str] = None
  range_end: Optional[str] = None


# ---------------------------------------------------------------------------
#  Conversation and dispatch results
# ---------------------------------------------------------------------------

class ConversationTurn(BaseModel):
  model_config = ConfigDict(extra="forbid", frozen=True)

  id: str
  role: Role
  content: str
  timestamp: datetime
  related_event_id: Optional[str] = None


class ConversationSummary(BaseModel):
  model_config = ConfigDict(extra="forbid")

  total_turns: int
  by_role: Dict[str, int] = Field(default_factory=dict)
  recent_preview: List[str] = Field(default_factory=list)


class DispatchResult(BaseModel):
  model_config = ConfigDict(extra="forbid")

  state: DispatchState
  reply: str
  error_kind: Optional[str] = None
  event_id: Optional[str] = None
