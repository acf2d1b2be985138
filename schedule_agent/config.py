from __future__ import annotations

import os
import pathlib

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Asia/Tokyo").strip() or "Asia/Tokyo"
AGENT_VERBOSE = os.getenv("AGENT_VERBOSE", "0") == "1"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# -------------------------
# Backend / intent source selection
# -------------------------
CALENDAR_BACKEND = os.getenv("CALENDAR_BACKEND", "local").strip().lower()
INTENT_SOURCE = os.getenv("INTENT_SOURCE", "auto").strip().lower()
AGENT_INTENT_MODEL = os.getenv("AGENT_INTENT_MODEL", "gpt-5-mini").strip()

# -------------------------
# Google Calendar
# -------------------------
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GOOGLE_TOKEN_PATH = pathlib.Path(
    os.getenv("GOOGLE_TOKEN_PATH", str(BASE_DIR / "gcal_tokens" / "token.json")))
GCAL_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]

# -------------------------
# Runtime limits and defaults
# -------------------------
API_BASE = os.getenv("API_BASE", "/api")
BACKEND_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))
LIST_EVENTS_LIMIT = int(os.getenv("LIST_EVENTS_LIMIT", "50"))
DEFAULT_RANGE_DAYS = int(os.getenv("DEFAULT_RANGE_DAYS", "7"))
SEARCH_RANGE_DAYS = int(os.getenv("SEARCH_RANGE_DAYS", "30"))
DEFAULT_FREE_SLOT_MINUTES = 60
RECENT_TURNS_FOR_INTENT = int(os.getenv("RECENT_TURNS_FOR_INTENT", "5"))
SUMMARY_PREVIEW_TURNS = 10
PREVIEW_MAX_CHARS = 100
