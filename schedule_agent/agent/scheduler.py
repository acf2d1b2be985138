from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

from ..config import DEFAULT_TIMEZONE
from ..utils import _log_debug, normalize_text
from .calendar_backend import CalendarBackend
from .context_provider import load_context
from .intent_router import IntentSource
from .normalizer import DateTimeResolver, resolve_timezone
from .orchestrator import DispatcherConfig, IntentDispatcher
from .response_agent import EMPTY_INPUT_MESSAGE
from .schemas import DispatchResult
from .state import ConversationState


class Scheduler:
  """Per-session coordinator: text in, assistant reply out.

  Turns are processed one at a time; a second ``handle_turn`` waits for the
  first to finish.
  """

  def __init__(self,
               intent_source: IntentSource,
               backend: CalendarBackend,
               conversation: Optional[ConversationState] = None,
               config: Optional[DispatcherConfig] = None,
               timezone_name: Optional[str] = None,
               clock: Optional[Callable[[], datetime]] = None) -> None:
    self.intent_source = intent_source
    self.backend = backend
    self.conversation = conversation if conversation is not None else ConversationState(clock)
    self.config = config or DispatcherConfig()
    self.resolver = DateTimeResolver(resolve_timezone(timezone_name or DEFAULT_TIMEZONE))
    self._clock = clock or (lambda: datetime.now(timezone.utc))
    self.dispatcher = IntentDispatcher(
        backend=backend,
        conversation=self.conversation,
        resolver=self.resolver,
        config=self.config,
        clock=self._clock,
    )
    self._lock = asyncio.Lock()

  async def handle_turn(self, user_text: str) -> str:
    result = await self.run_turn(user_text)
    if result is None:
      return EMPTY_INPUT_MESSAGE
    return result.reply

  async def run_turn(self, user_text: str) -> Optional[DispatchResult]:
    """Like :meth:`handle_turn` but keeps the dispatch outcome; None for blank input."""
    text = normalize_text(user_text)
    if not text:
      return None
    async with self._lock:
      context = await load_context(
          self.backend,
          self._clock(),
          self.resolver.zone,
          self.config.backend_timeout_seconds,
          verbose=self.config.verbose,
      )
      recent = self.conversation.recent(self.config.recent_turns)
      intent = await self.intent_source.resolve_intent(text, context, recent)
      _log_debug(f"[SCHEDULER] intent={intent.action} text={text!r}", self.config.verbose)
      return await self.dispatcher.dispatch(text, intent)

  def conversation_summary(self) -> str:
    summary = self.conversation.summary()
    if summary.total_turns == 0:
      return "No conversation history yet."
    lines = [
        "Conversation stats:",
        f"  • Total turns: {summary.total_turns}",
        f"  • User turns: {summary.by_role.get('user', 0)}",
        f"  • Assistant turns: {summary.by_role.get('assistant', 0)}",
        "",
        f"Recent turns (last {len(summary.recent_preview)}):",
    ]
    lines.extend(f"  {index}. {line}"
                 for index, line in enumerate(summary.recent_preview, start=1))
    return "\n".join(lines)

  def conversation_log(self) -> str:
    return self.conversation.render_log()

  def clear_history(self) -> None:
    self.conversation.clear()
