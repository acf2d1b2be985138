from __future__ import annotations

import logging
from threading import Lock
from typing import Dict, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from .agent import (
    CalendarBackend,
    IntentSource,
    Scheduler,
    load_dispatcher_config,
    select_calendar_backend,
    select_intent_source,
)
from .agent.response_agent import EMPTY_INPUT_MESSAGE
from .agent.state import drop_conversation, get_conversation
from .config import API_BASE, DEFAULT_TIMEZONE
from .models import AgentTurnRequest, AgentTurnResponse, HistoryResponse, TurnView

router = APIRouter(prefix=API_BASE)
logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"

_SCHEDULERS: Dict[str, Scheduler] = {}
_SCHEDULERS_LOCK = Lock()
_shared: Dict[str, object] = {}


def _shared_backend() -> CalendarBackend:
  backend = _shared.get("backend")
  if backend is None:
    backend = select_calendar_backend()
    _shared["backend"] = backend
  return backend  # type: ignore[return-value]


def _shared_intent_source() -> IntentSource:
  source = _shared.get("intent_source")
  if source is None:
    config = load_dispatcher_config()
    source = select_intent_source(timezone_name=DEFAULT_TIMEZONE, verbose=config.verbose)
    _shared["intent_source"] = source
  return source  # type: ignore[return-value]


def _session_key(raw: Optional[str]) -> str:
  cleaned = (raw or "").strip()
  return cleaned or DEFAULT_SESSION_ID


def get_scheduler(session_id: str) -> Scheduler:
  with _SCHEDULERS_LOCK:
    scheduler = _SCHEDULERS.get(session_id)
    if scheduler is None:
      scheduler = Scheduler(
          intent_source=_shared_intent_source(),
          backend=_shared_backend(),
          conversation=get_conversation(session_id),
          config=load_dispatcher_config(),
          timezone_name=DEFAULT_TIMEZONE,
      )
      _SCHEDULERS[session_id] = scheduler
    return scheduler


def reset_sessions() -> None:
  with _SCHEDULERS_LOCK:
    for key in list(_SCHEDULERS):
      drop_conversation(key)
    _SCHEDULERS.clear()
  _shared.clear()


@router.post("/agent/turn", response_model=AgentTurnResponse)
async def agent_turn(body: AgentTurnRequest):
  session_id = _session_key(body.session_id)
  scheduler = get_scheduler(session_id)
  try:
    result = await scheduler.run_turn(body.input_as_text or "")
  except Exception as exc:
    logger.exception("agent turn failed for session %s", session_id)
    raise HTTPException(status_code=502, detail=f"Agent turn error: {exc}") from exc
  if result is None:
    return AgentTurnResponse(session_id=session_id, reply=EMPTY_INPUT_MESSAGE)
  return AgentTurnResponse(
      session_id=session_id,
      reply=result.reply,
      state=result.state,
      error_kind=result.error_kind,
  )


@router.get("/agent/history", response_model=HistoryResponse)
def agent_history(session_id: Optional[str] = Query(default=None)):
  key = _session_key(session_id)
  conversation = get_scheduler(key).conversation
  summary = conversation.summary()
  return HistoryResponse(
      session_id=key,
      total_turns=summary.total_turns,
      by_role=summary.by_role,
      recent_preview=summary.recent_preview,
      turns=[
          TurnView(
              role=turn.role,
              content=turn.content,
              timestamp=turn.timestamp.isoformat(),
              related_event_id=turn.related_event_id,
          ) for turn in conversation.turns
      ],
  )


@router.get("/agent/history/log", response_class=PlainTextResponse)
def agent_history_log(session_id: Optional[str] = Query(default=None)):
  return get_scheduler(_session_key(session_id)).conversation_log()


@router.get("/agent/history/summary", response_class=PlainTextResponse)
def agent_history_summary(session_id: Optional[str] = Query(default=None)):
  return get_scheduler(_session_key(session_id)).conversation_summary()


@router.delete("/agent/history")
def agent_history_clear(session_id: Optional[str] = Query(default=None)):
  key = _session_key(session_id)
  get_scheduler(key).clear_history()
  return {"ok": True, "session_id": key}
