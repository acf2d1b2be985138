from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from ..config import AGENT_INTENT_MODEL, DEFAULT_TIMEZONE, INTENT_SOURCE
from ..errors import DateParseError, EventValidationError
from ..utils import _log_debug, normalize_text
from .context_provider import range_hint_from_text
from .llm_provider import llm_configured, run_structured_completion
from .normalizer import DateTimeResolver, get_zone
from .schemas import (
    ConversationTurn,
    Intent,
    LLMIntentOutput,
    PartialEventFields,
    TimeRange,
)


class IntentSource(Protocol):

  async def resolve_intent(self,
                           user_text: str,
                           context: str,
                           recent_turns: Sequence[ConversationTurn]) -> Intent:
    ...


# ---------------------------------------------------------------------------
#  Output normalization
# ---------------------------------------------------------------------------

_ACTION_ALIASES = {
    "createevent": "create_event",
    "addevent": "create_event",
    "listevents": "list_events",
    "updateevent": "update_event",
    "editevent": "update_event",
    "modifyevent": "update_event",
    "rescheduleevent": "update_event",
    "searchevents": "search_events",
    "findevents": "search_events",
    "deleteevent": "delete_event",
    "removeevent": "delete_event",
    "geteventdetails": "get_event_details",
    "eventdetails": "get_event_details",
    "findfreeslots": "find_free_slots",
    "findfreetime": "find_free_slots",
    "generalresponse": "general_response",
}
_MISSING_ALIASES = {
    "title": "title",
    "starttime": "start_time",
    "endtime": "end_time",
    "all": "all",
}


def _alias_key(value: Any) -> str:
  if not isinstance(value, str):
    return ""
  return re.sub(r"[^a-z]", "", value.lower())


def normalize_action(value: Any) -> str:
  """Map CREATE_EVENT / CreateEvent / create_event alike; unknown is general."""
  return _ACTION_ALIASES.get(_alias_key(value), "general_response")


def normalize_missing(value: Any) -> Optional[str]:
  return _MISSING_ALIASES.get(_alias_key(value))


def _resolve_range_hint(start_text: Optional[str], end_text: Optional[str],
                        resolver: DateTimeResolver) -> Optional[TimeRange]:
  if not start_text or not end_text:
    return None
  try:
    return TimeRange.between(resolver.resolve(start_text), resolver.resolve(end_text))
  except (DateParseError, EventValidationError):
    return None


def intent_from_output(output: LLMIntentOutput, user_text: str,
                       resolver: DateTimeResolver) -> Intent:
  data = output.event_data
  partial = PartialEventFields()
  if data is not None:
    partial = PartialEventFields(
        id=data.id,
        title=(data.title or "").strip() or None,
        start=data.start_time,
        end=data.end_time,
        description=data.description,
        location=data.location,
        attendees=[a for a in (data.attendees or []) if isinstance(a, str)],
        priority=data.priority,
        duration_minutes=data.duration_minutes,
    )
  return Intent(
      action=normalize_action(output.action),
      partial_event=partial,
      missing=normalize_missing(output.missing_data),
      range_hint=_resolve_range_hint(output.range_start, output.range_end, resolver),
      free_text=user_text,
      response_text=(output.response_text or "").strip() or None,
  )


# ---------------------------------------------------------------------------
#  LLM-backed source
# ---------------------------------------------------------------------------

INTENT_SYSTEM_PROMPT_TEMPLATE = """Intent extractor for a calendar assistant.
Return JSON only. No markdown.
Current: {now_iso}. Timezone: {timezone}.

Output schema:
{{
  "action": "CREATE_EVENT" | "UPDATE_EVENT" | "LIST_EVENTS" | "SEARCH_EVENTS" | "DELETE_EVENT" | "GET_EVENT_DETAILS" | "FIND_FREE_SLOTS" | "GENERAL_RESPONSE",
  "event_data": {{
    "id": string?, "title": string?, "description": string?,
    "start_time": string?, "end_time": string?, "location": string?,
    "attendees": [string]?, "priority": "Low" | "Medium" | "High" | "Urgent"?,
    "duration_minutes": integer?
  }},
  "missing_data": "Title" | "StartTime" | "EndTime" | "All" | null,
  "range_start": string?, "range_end": string?,
  "response_text": string
}}

Rules:
1) Times are RFC3339 with offset, e.g. 2025-07-01T15:30:00+09:00.
2) For CREATE_EVENT set missing_data when the title, start or end cannot be taken from the user text or recent turns.
3) Set range_start/range_end only when the user names a period ("this week", "July 3").
4) For DELETE_EVENT, SEARCH_EVENTS and GET_EVENT_DETAILS put the event name in event_data.title.
   For UPDATE_EVENT put the current event name in event_data.title and only the changed fields elsewhere.
5) FIND_FREE_SLOTS uses duration_minutes for the requested block length.
6) response_text is a short reply in the user's language.
"""


def _fallback_reply(meta: Dict[str, Any], raw_text: str) -> str:
  if meta.get("llm_available") is False:
    return "The language model is not configured, so I couldn't read that request."
  if meta.get("llm_output_empty_or_error"):
    return "I couldn't reach the language model. Please try again in a moment."
  if isinstance(raw_text, str) and raw_text.strip():
    return "Sorry, I couldn't understand that request. Could you rephrase it?"
  return "Sorry, I didn't catch that. Could you say it another way?"


class LLMIntentSource:

  def __init__(self,
               model: str = AGENT_INTENT_MODEL,
               timezone_name: str = DEFAULT_TIMEZONE,
               clock: Optional[Callable[[], datetime]] = None,
               verbose: bool = False) -> None:
    self.model = model
    self.resolver = DateTimeResolver(timezone_name)
    self._clock = clock or (lambda: datetime.now(timezone.utc))
    self.verbose = verbose

  def _payload(self, user_text: str, context: str, now_iso: str,
               recent_turns: Sequence[ConversationTurn]) -> Dict[str, Any]:
    return {
        "user_text": user_text,
        "now_iso": now_iso,
        "timezone": self.resolver.zone.key,
        "context": context,
        "recent_turns": [
            {"role": turn.role, "content": turn.content} for turn in recent_turns
        ],
    }

  async def resolve_intent(self,
                           user_text: str,
                           context: str,
                           recent_turns: Sequence[ConversationTurn]) -> Intent:
    now_iso = self.resolver.to_local(self._clock()).isoformat(timespec="seconds")
    system_prompt = INTENT_SYSTEM_PROMPT_TEMPLATE.format(
        now_iso=now_iso, timezone=self.resolver.zone.key)
    parsed, raw_text, meta = await run_structured_completion(
        model=self.model,
        system_prompt=system_prompt,
        user_payload=self._payload(user_text, context, now_iso, recent_turns),
        response_model=LLMIntentOutput,
        verbose=self.verbose,
    )
    if parsed is None:
      _log_debug(f"[INTENT] no structured output: {meta}", self.verbose)
      return Intent(action="general_response",
                    free_text=user_text,
                    response_text=_fallback_reply(meta, raw_text))
    intent = intent_from_output(parsed, user_text, self.resolver)
    _log_debug(f"[INTENT] {intent.model_dump(exclude_none=True)}", self.verbose)
    return intent


# ---------------------------------------------------------------------------
#  Keyword source (offline)
# ---------------------------------------------------------------------------

_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("find_free_slots", ("free", "available", "空き", "空いて")),
    ("update_event", ("update", "reschedule", "move ", "change", "変更", "移動")),
    ("delete_event", ("delete", "remove", "cancel", "削除", "消して")),
    ("create_event", ("add ", "create", "schedule a", "book", "set up", "追加", "作成", "入れて")),
    ("get_event_details", ("detail", "詳細")),
    ("search_events", ("search", "find", "look for", "検索", "探して")),
    ("list_events", ("list", "show", "what's on", "events", "schedule", "予定", "一覧")),
]

_QUOTED_RE = re.compile(r"[\"“「『]([^\"”」』]+)[\"”」』]")
_TIMESTAMP_RE = re.compile(
    r"\d{4}-\d{1,2}-\d{1,2}(?:[T ]\d{1,2}:\d{2}(?::\d{2})?(?:Z|[+-]\d{2}:?\d{2})?)?"
    r"|\d{4}/\d{1,2}/\d{1,2}(?: \d{1,2}:\d{2}(?::\d{2})?)?"
    r"|\d{4}年\d{1,2}月\d{1,2}日(?: ?\d{1,2}(?::\d{2}|時\d{1,2}分))?")
_MINUTES_RE = re.compile(r"(\d+)\s*(?:minutes?|mins?|分)", re.IGNORECASE)
_HOURS_RE = re.compile(r"(\d+)\s*(?:hours?|hrs?|時間)", re.IGNORECASE)


def _match_action(lowered: str) -> Tuple[str, Optional[str]]:
  for action, words in _KEYWORDS:
    for word in words:
      if word in lowered:
        return action, word
  return "general_response", None


def _duration_minutes(text: str) -> Optional[int]:
  match = _MINUTES_RE.search(text)
  if match:
    return int(match.group(1))
  match = _HOURS_RE.search(text)
  if match:
    return int(match.group(1)) * 60
  if re.search(r"\ban hour\b|\bone hour\b", text, re.IGNORECASE):
    return 60
  return None


def _query_after(text: str, keyword: Optional[str]) -> Optional[str]:
  if not keyword:
    return None
  index = text.lower().find(keyword)
  if index == -1:
    return None
  remainder = text[index + len(keyword):].strip(" :?.!")
  remainder = re.sub(r"^(for|the|my|event|events)\s+", "", remainder, flags=re.IGNORECASE)
  return remainder or None


def _missing_for(partial: PartialEventFields) -> Optional[str]:
  has_end = bool(partial.end) or bool(partial.duration_minutes)
  present = {
      "title": bool(partial.title),
      "start_time": bool(partial.start),
      "end_time": has_end,
  }
  if not any(present.values()):
    return "all"
  for name in ("title", "start_time", "end_time"):
    if not present[name]:
      return name
  return None


class KeywordIntentSource:
  """Deterministic intent source used when no language model is configured."""

  def __init__(self,
               timezone_name: str = DEFAULT_TIMEZONE,
               clock: Optional[Callable[[], datetime]] = None) -> None:
    self.zone = get_zone(timezone_name)
    self._clock = clock or (lambda: datetime.now(timezone.utc))

  async def resolve_intent(self,
                           user_text: str,
                           context: str,
                           recent_turns: Sequence[ConversationTurn]) -> Intent:
    text = normalize_text(user_text)
    action, keyword = _match_action(text.lower())
    quoted = _QUOTED_RE.search(text)
    title = quoted.group(1).strip() if quoted else None
    stamps = _TIMESTAMP_RE.findall(text)
    range_hint = range_hint_from_text(text, self._clock(), self.zone)

    if action == "create_event":
      partial = PartialEventFields(
          title=title,
          start=stamps[0] if stamps else None,
          end=stamps[1] if len(stamps) > 1 else None,
          duration_minutes=_duration_minutes(text),
      )
      return Intent(action=action,
                    partial_event=partial,
                    missing=_missing_for(partial),
                    free_text=text)

    if action == "update_event":
      return Intent(action=action,
                    partial_event=PartialEventFields(
                        title=title,
                        start=stamps[0] if stamps else None,
                        end=stamps[1] if len(stamps) > 1 else None,
                        duration_minutes=_duration_minutes(text),
                    ),
                    free_text=text)

    if action in ("search_events", "get_event_details", "delete_event"):
      if title is None and action != "delete_event":
        title = _query_after(text, keyword)
      return Intent(action=action,
                    partial_event=PartialEventFields(title=title),
                    range_hint=range_hint,
                    free_text=text)

    if action == "find_free_slots":
      return Intent(action=action,
                    partial_event=PartialEventFields(duration_minutes=_duration_minutes(text)),
                    range_hint=range_hint,
                    free_text=text)

    if action == "list_events":
      return Intent(action=action, range_hint=range_hint, free_text=text)

    return Intent(action="general_response", free_text=text)


def select_intent_source(name: Optional[str] = None,
                         timezone_name: str = DEFAULT_TIMEZONE,
                         verbose: bool = False) -> IntentSource:
  """``llm`` / ``keyword`` / ``auto`` (LLM when an API key is configured)."""
  choice = (name or INTENT_SOURCE or "auto").strip().lower()
  if choice == "auto":
    choice = "llm" if llm_configured() else "keyword"
  if choice == "llm":
    return LLMIntentSource(timezone_name=timezone_name, verbose=verbose)
  if choice == "keyword":
    return KeywordIntentSource(timezone_name=timezone_name)
  raise ValueError(f"Unknown intent source: {choice}")
