from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from ..config import PREVIEW_MAX_CHARS, SUMMARY_PREVIEW_TURNS
from ..utils import truncate_text
from .schemas import ConversationSummary, ConversationTurn, Role

Clock = Callable[[], datetime]

_ROLE_LABELS = {
    "user": "User",
    "assistant": "Assistant",
    "system": "System",
}


def _utc_now() -> datetime:
  return datetime.now(timezone.utc)


class ConversationState:
  """Append-only dialogue log for one session.

  Not safe for concurrent mutation; give every session its own instance.
  """

  def __init__(self, clock: Optional[Clock] = None) -> None:
    self._clock = clock or _utc_now
    self._turns: List[ConversationTurn] = []
    self.created_at = self._now()
    self.updated_at = self.created_at

  def _now(self) -> datetime:
    return self._clock().astimezone(timezone.utc)

  @property
  def turns(self) -> List[ConversationTurn]:
    return list(self._turns)

  def __len__(self) -> int:
    return len(self._turns)

  def add_turn(self,
               role: Role,
               content: str,
               related_event_id: Optional[str] = None) -> ConversationTurn:
    timestamp = self._now()
    if self._turns and timestamp <= self._turns[-1].timestamp:
      timestamp = self._turns[-1].timestamp + timedelta(microseconds=1)
    turn = ConversationTurn(
        id=uuid.uuid4().hex,
        role=role,
        content=content,
        timestamp=timestamp,
        related_event_id=related_event_id,
    )
    self._turns.append(turn)
    self.updated_at = timestamp
    return turn

  def add_user_turn(self, content: str) -> ConversationTurn:
    return self.add_turn("user", content)

  def add_assistant_turn(self,
                         content: str,
                         related_event_id: Optional[str] = None) -> ConversationTurn:
    return self.add_turn("assistant", content, related_event_id)

  def recent(self, n: int) -> List[ConversationTurn]:
    if n <= 0:
      return []
    return list(self._turns[-n:])

  def summary(self, preview_turns: int = SUMMARY_PREVIEW_TURNS) -> ConversationSummary:
    by_role: Dict[str, int] = {"user": 0, "assistant": 0, "system": 0}
    for turn in self._turns:
      by_role[turn.role] = by_role.get(turn.role, 0) + 1
    preview = [
        f"{turn.role}: {truncate_text(turn.content, PREVIEW_MAX_CHARS)}"
        for turn in self.recent(preview_turns)
    ]
    return ConversationSummary(
        total_turns=len(self._turns),
        by_role=by_role,
        recent_preview=preview,
    )

  def context_string(self, max_turns: int) -> str:
    return "\n".join(f"{turn.role}: {turn.content}" for turn in self.recent(max_turns))

  def render_log(self) -> str:
    lines = [
        "=== Schedule assistant conversation log ===",
        f"Created: {self.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"Total turns: {len(self._turns)}",
        "",
    ]
    for index, turn in enumerate(self._turns, start=1):
      stamp = turn.timestamp.strftime("%Y-%m-%d %H:%M:%S")
      label = _ROLE_LABELS.get(turn.role, turn.role)
      lines.append(f"[{index}] {stamp} {label}: {turn.content}")
    return "\n".join(lines)

  def clear(self) -> None:
    self._turns = []
    self.created_at = self._now()
    self.updated_at = self.created_at


# One ConversationState per session id.
_conversations: Dict[str, ConversationState] = {}


def get_conversation(session_id: str) -> ConversationState:
  stored = _conversations.get(session_id)
  if stored is None:
    stored = ConversationState()
    _conversations[session_id] = stored
  return stored


def clear_conversation(session_id: str) -> None:
  if not session_id:
    return
  stored = _conversations.get(session_id)
  if stored is not None:
    stored.clear()


def drop_conversation(session_id: str) -> None:
  _conversations.pop(session_id, None)
