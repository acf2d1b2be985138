from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class AgentTurnRequest(BaseModel):
    input_as_text: str = ""
    session_id: Optional[str] = None


class AgentTurnResponse(BaseModel):
    session_id: str
    reply: str
    state: Optional[str] = None
    error_kind: Optional[str] = None


class TurnView(BaseModel):
    role: str
    content: str
    timestamp: str
    related_event_id: Optional[str] = None


class HistoryResponse(BaseModel):
    session_id: str
    total_turns: int
    by_role: Dict[str, int] = Field(default_factory=dict)
    recent_preview: List[str] = Field(default_factory=list)
    turns: List[TurnView] = Field(default_factory=list)
