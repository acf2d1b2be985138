from __future__ import annotations

from datetime import datetime
from typing import Optional
import re
from zoneinfo import ZoneInfo

from .config import PREVIEW_MAX_CHARS


def _log_debug(message: str, verbose: bool) -> None:
    if verbose:
        print(message, flush=True)


def normalize_text(text: Optional[str]) -> str:
    t = (text or "").strip()
    t = re.sub(r"\s+", " ", t)
    return t


def truncate_text(text: str, limit: int = PREVIEW_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit - 3]}..."


def format_short(value: datetime, zone: ZoneInfo) -> str:
    return value.astimezone(zone).strftime("%m/%d %H:%M")


def format_clock(value: datetime, zone: ZoneInfo) -> str:
    return value.astimezone(zone).strftime("%H:%M")


def format_long(value: datetime, zone: ZoneInfo) -> str:
    return value.astimezone(zone).strftime("%Y-%m-%d %H:%M")
