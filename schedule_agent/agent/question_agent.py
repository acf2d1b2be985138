from __future__ import annotations

from typing import Optional

CLARIFICATION_QUESTIONS = {
    "title": "Could you tell me the event's title?",
    "start_time": "Could you tell me the event's start time?",
    "end_time": "Could you tell me the event's end time?",
    "all": "Could you tell me the event's title, start time, and end time?",
}


def _default_question() -> str:
  return "Please share the required details so I can continue."


def build_clarification_question(missing: Optional[str]) -> str:
  if not isinstance(missing, str):
    return _default_question()
  return CLARIFICATION_QUESTIONS.get(missing, _default_question())
