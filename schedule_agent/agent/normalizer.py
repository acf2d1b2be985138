from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Union
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import DEFAULT_TIMEZONE
from ..errors import DateParseError

ZoneLike = Union[str, ZoneInfo]

_RFC3339_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$")

_ZONED_FORMATS = (
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%dT%H:%M%z",
    "%Y-%m-%d %H:%M%z",
)

_NAIVE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y年%m月%d日 %H:%M",
    "%Y年%m月%d日 %H時%M分",
    "%Y年%m月%d日%H時%M分",
)

# Date-only forms resolve to local midnight.
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y年%m月%d日",
)


def get_zone(zone: ZoneLike) -> ZoneInfo:
  if isinstance(zone, ZoneInfo):
    return zone
  return ZoneInfo(zone)


def resolve_timezone(requested_timezone: Optional[str]) -> str:
  for candidate in (requested_timezone, DEFAULT_TIMEZONE, "UTC"):
    if not isinstance(candidate, str):
      continue
    cleaned = candidate.strip()
    if not cleaned:
      continue
    try:
      ZoneInfo(cleaned)
      return cleaned
    except (ZoneInfoNotFoundError, ValueError):
      continue
  return "UTC"


def now_in_timezone(timezone_name: ZoneLike) -> datetime:
  return datetime.now(get_zone(timezone_name))


def to_local(instant: datetime, zone: ZoneLike) -> datetime:
  return instant.astimezone(get_zone(zone))


def start_of_day(instant: datetime, zone: ZoneLike) -> datetime:
  """Local midnight of the day containing ``instant``, as UTC."""
  tz = get_zone(zone)
  local = instant.astimezone(tz)
  midnight = datetime(local.year, local.month, local.day, tzinfo=tz)
  return midnight.astimezone(timezone.utc)


def add_local_days(instant: datetime, days: int, zone: ZoneLike) -> datetime:
  """Shift by calendar days in ``zone`` so DST days keep their wall-clock."""
  tz = get_zone(zone)
  local = instant.astimezone(tz)
  naive = local.replace(tzinfo=None) + timedelta(days=days)
  return naive.replace(tzinfo=tz).astimezone(timezone.utc)


def _parse_rfc3339(raw: str) -> Optional[datetime]:
  match = _RFC3339_RE.match(raw)
  if not match:
    return None
  date_part, time_part, fraction, offset = match.groups()
  if fraction:
    fraction = "." + (fraction[1:] + "000000")[:6]
  else:
    fraction = ""
  if offset in ("Z", "z"):
    offset = "+00:00"
  try:
    return datetime.fromisoformat(f"{date_part}T{time_part}{fraction}{offset}")
  except ValueError:
    return None


def _parse_zoned(raw: str) -> Optional[datetime]:
  for fmt in _ZONED_FORMATS:
    try:
      return datetime.strptime(raw, fmt)
    except ValueError:
      continue
  return None


def _parse_naive(raw: str) -> Optional[datetime]:
  for fmt in _NAIVE_FORMATS + _DATE_FORMATS:
    try:
      return datetime.strptime(raw, fmt)
    except ValueError:
      continue
  return None


def localize(naive: datetime, zone: ZoneLike, text: str = "") -> datetime:
  """Attach ``zone`` to a wall-clock time, refusing DST gaps and folds."""
  tz = get_zone(zone)
  early = naive.replace(tzinfo=tz, fold=0)
  late = naive.replace(tzinfo=tz, fold=1)
  try:
    if early.utcoffset() != late.utcoffset():
      raise DateParseError("ambiguous_local_time", text or naive.isoformat())
    return early.astimezone(timezone.utc)
  except OverflowError as exc:
    # Wall-clock times at the edge of the datetime range have no UTC form.
    raise DateParseError("unrecognized", text or naive.isoformat()) from exc


def resolve_datetime(text: str, local_zone: ZoneLike) -> datetime:
  if not isinstance(text, str):
    raise DateParseError("unrecognized", repr(text))
  raw = re.sub(r"\s+", " ", text.strip())
  if not raw:
    raise DateParseError("unrecognized", text)

  parsed = _parse_rfc3339(raw)
  if parsed is None:
    parsed = _parse_zoned(raw)
  if parsed is not None:
    try:
      return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
      raise DateParseError("unrecognized", text) from exc

  naive = _parse_naive(raw)
  if naive is None:
    raise DateParseError("unrecognized", text)
  return localize(naive, local_zone, text)


class DateTimeResolver:
  """Parses user and model supplied timestamps into UTC instants."""

  def __init__(self, local_zone: ZoneLike = DEFAULT_TIMEZONE) -> None:
    self.zone = get_zone(local_zone)

  def resolve(self, text: str) -> datetime:
    return resolve_datetime(text, self.zone)

  def resolve_optional(self, text: Optional[str]) -> Optional[datetime]:
    if text is None or not text.strip():
      return None
    return self.resolve(text)

  def to_local(self, instant: datetime) -> datetime:
    return to_local(instant, self.zone)
