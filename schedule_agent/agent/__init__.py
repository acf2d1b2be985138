"""
Scheduling agent: intent dispatch over a calendar backend
"""

from .calendar_backend import CalendarBackend, select_calendar_backend
from .intent_router import IntentSource, KeywordIntentSource, LLMIntentSource, select_intent_source
from .normalizer import DateTimeResolver, resolve_datetime
from .orchestrator import DispatcherConfig, IntentDispatcher, load_dispatcher_config
from .scheduler import Scheduler
from .state import ConversationState

__all__ = [
    "CalendarBackend",
    "select_calendar_backend",
    "IntentSource",
    "KeywordIntentSource",
    "LLMIntentSource",
    "select_intent_source",
    "DateTimeResolver",
    "resolve_datetime",
    "DispatcherConfig",
    "IntentDispatcher",
    "load_dispatcher_config",
    "Scheduler",
    "ConversationState",
]
