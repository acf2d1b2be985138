from __future__ import annotations

import asyncio
import json
import logging
import pathlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials
from google.auth.transport.requests import Request as GoogleRequest
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .agent.normalizer import get_zone
from .agent.schemas import Event, EventSpec, TimeRange, normalize_priority
from .config import (
    DEFAULT_TIMEZONE,
    GCAL_SCOPES,
    GOOGLE_CALENDAR_ID,
    GOOGLE_TOKEN_PATH,
    LIST_EVENTS_LIMIT,
)
from .errors import BackendError, EventNotFound

logger = logging.getLogger(__name__)

# Google caps maxResults at 2500; pages are fetched until exhausted.
GCAL_PAGE_SIZE = 250

_STATUS_MAP = {
    "confirmed": "scheduled",
    "tentative": "scheduled",
    "cancelled": "cancelled",
}


def load_gcal_token(token_path: pathlib.Path) -> Optional[Dict[str, Any]]:
  if not token_path.exists():
    return None
  try:
    data = json.loads(token_path.read_text(encoding="utf-8"))
  except (OSError, ValueError) as exc:
    logger.warning("unreadable Google token at %s: %s", token_path, exc)
    return None
  return data if isinstance(data, dict) else None


def save_gcal_token(token_path: pathlib.Path, data: Dict[str, Any]) -> None:
  token_path.parent.mkdir(parents=True, exist_ok=True)
  token_path.write_text(json.dumps(data), encoding="utf-8")


def get_gcal_service(token_path: pathlib.Path = GOOGLE_TOKEN_PATH):
  token_data = load_gcal_token(token_path)
  if not token_data:
    raise BackendError(f"Google OAuth token not found at {token_path}.")

  creds = Credentials.from_authorized_user_info(token_data, GCAL_SCOPES)

  if creds.expired and creds.refresh_token:
    creds.refresh(GoogleRequest())
    save_gcal_token(token_path, json.loads(creds.to_json()))

  return build("calendar", "v3", credentials=creds)


def _rfc3339(value: datetime) -> str:
  return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _http_status(exc: HttpError) -> Optional[int]:
  return getattr(getattr(exc, "resp", None), "status", None)


def _convert_gcal_time(obj: Dict[str, Any], zone_name: str) -> Optional[datetime]:
  if not isinstance(obj, dict):
    return None

  dt_value = obj.get("dateTime")
  if isinstance(dt_value, str):
    try:
      return datetime.fromisoformat(dt_value.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
      return None

  # All-day events carry a bare date; pin it to midnight in the event zone.
  date_value = obj.get("date")
  if isinstance(date_value, str):
    try:
      day = datetime.strptime(date_value, "%Y-%m-%d")
    except ValueError:
      return None
    zone = get_zone(obj.get("timeZone") or zone_name)
    return day.replace(tzinfo=zone).astimezone(timezone.utc)

  return None


def _normalize_gcal_event(raw: Dict[str, Any], zone_name: str) -> Optional[Event]:
  start = _convert_gcal_time(raw.get("start") or {}, zone_name)
  end = _convert_gcal_time(raw.get("end") or {}, zone_name)
  if start is None:
    return None
  if end is None or end <= start:
    end = start + timedelta(hours=1)

  attendees: List[str] = []
  attendees_raw = raw.get("attendees")
  if isinstance(attendees_raw, list):
    for item in attendees_raw:
      if not isinstance(item, dict):
        continue
      email = item.get("email")
      if isinstance(email, str) and email.strip():
        attendees.append(email.strip())

  private = ((raw.get("extendedProperties") or {}).get("private") or {})
  return Event(
      id=str(raw.get("id")),
      title=raw.get("summary") or "(no title)",
      description=raw.get("description"),
      location=raw.get("location"),
      time_range=TimeRange(start=start, end=end),
      attendees=attendees,
      priority=normalize_priority(private.get("priority")) or "medium",
      status=_STATUS_MAP.get(raw.get("status") or "", "scheduled"),
  )


def _build_gcal_event_body(spec: EventSpec, zone_name: str) -> Dict[str, Any]:
  zone = get_zone(zone_name)
  event_body: Dict[str, Any] = {
      "summary": spec.title,
      "start": {
          "dateTime": spec.time_range.start.astimezone(zone).isoformat(),
          "timeZone": zone_name,
      },
      "end": {
          "dateTime": spec.time_range.end.astimezone(zone).isoformat(),
          "timeZone": zone_name,
      },
      "extendedProperties": {
          "private": {
              "priority": spec.priority,
          },
      },
  }
  if spec.description:
    event_body["description"] = spec.description
  if spec.location:
    event_body["location"] = spec.location
  if spec.attendees:
    event_body["attendees"] = [{"email": email} for email in spec.attendees]
  return event_body


class GoogleCalendarBackend:
  """Google Calendar v3 through google-api-python-client.

  The client library is synchronous, so every call runs in a worker thread.
  """

  def __init__(self,
               token_path: pathlib.Path = GOOGLE_TOKEN_PATH,
               calendar_id: str = GOOGLE_CALENDAR_ID,
               timezone_name: str = DEFAULT_TIMEZONE,
               service: Any = None) -> None:
    self.token_path = token_path
    self.calendar_id = calendar_id
    self.timezone_name = timezone_name
    self._service = service

  def _get_service(self):
    if self._service is None:
      self._service = get_gcal_service(self.token_path)
    return self._service

  def _list_events_sync(self, time_range: TimeRange, limit: int) -> List[Event]:
    service = self._get_service()
    items: List[Any] = []
    page_token = None
    while True:
      page_size = limit if limit > 0 else GCAL_PAGE_SIZE
      response = service.events().list(
          calendarId=self.calendar_id,
          timeMin=_rfc3339(time_range.start),
          timeMax=_rfc3339(time_range.end),
          singleEvents=True,
          orderBy="startTime",
          maxResults=page_size,
          pageToken=page_token,
      ).execute()
      items.extend(response.get("items", []))
      page_token = response.get("nextPageToken")
      # A positive limit is served by a single page.
      if limit > 0 or not page_token:
        break

    events: List[Event] = []
    for raw in items:
      if not isinstance(raw, dict) or raw.get("status") == "cancelled":
        continue
      event = _normalize_gcal_event(raw, self.timezone_name)
      if event is not None:
        events.append(event)
    events.sort(key=lambda e: e.start)
    return events

  def _create_event_sync(self, spec: EventSpec) -> str:
    service = self._get_service()
    created = service.events().insert(
        calendarId=self.calendar_id,
        body=_build_gcal_event_body(spec, self.timezone_name),
    ).execute()
    event_id = created.get("id")
    if not event_id:
      raise BackendError("Google Calendar did not return an event id.")
    return event_id

  def _update_event_sync(self, event_id: str, spec: EventSpec) -> None:
    service = self._get_service()
    service.events().patch(
        calendarId=self.calendar_id,
        eventId=event_id,
        body=_build_gcal_event_body(spec, self.timezone_name),
    ).execute()

  def _delete_event_sync(self, event_id: str) -> None:
    service = self._get_service()
    service.events().delete(calendarId=self.calendar_id, eventId=event_id).execute()

  async def list_events(self,
                        time_range: TimeRange,
                        limit: int = LIST_EVENTS_LIMIT) -> List[Event]:
    try:
      return await asyncio.to_thread(self._list_events_sync, time_range, limit)
    except HttpError as exc:
      raise BackendError(f"Google Calendar list failed: {exc}") from exc

  async def create_event(self, spec: EventSpec) -> str:
    try:
      return await asyncio.to_thread(self._create_event_sync, spec)
    except HttpError as exc:
      raise BackendError(f"Google Calendar insert failed: {exc}") from exc

  async def update_event(self, event_id: str, spec: EventSpec) -> None:
    if not event_id:
      raise ValueError("event_id is empty")
    try:
      await asyncio.to_thread(self._update_event_sync, event_id, spec)
    except HttpError as exc:
      if _http_status(exc) in (404, 410):
        raise EventNotFound(event_id) from exc
      raise BackendError(f"Google Calendar update failed: {exc}") from exc

  async def delete_event(self, event_id: str) -> None:
    if not event_id:
      raise ValueError("event_id is empty")
    try:
      await asyncio.to_thread(self._delete_event_sync, event_id)
    except HttpError as exc:
      if _http_status(exc) in (404, 410):
        raise EventNotFound(event_id) from exc
      raise BackendError(f"Google Calendar delete failed: {exc}") from exc
