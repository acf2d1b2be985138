from __future__ import annotations

from typing import Any, List, Optional


class SchedulerError(Exception):
  """Base class for failures that end a dispatch cycle with a message."""

  kind = "error"


class DateParseError(SchedulerError):

  kind = "date_parse"

  def __init__(self, reason: str, text: str) -> None:
    super().__init__(f"{reason}: {text!r}")
    self.reason = reason
    self.text = text


class EventValidationError(SchedulerError):

  kind = "validation"

  def __init__(self, reason: str, field: Optional[str] = None) -> None:
    detail = reason if field is None else f"{reason}:{field}"
    super().__init__(detail)
    self.reason = reason
    self.field = field


class SchedulingConflict(SchedulerError):

  kind = "scheduling_conflict"

  def __init__(self, conflicts: List[Any]) -> None:
    titles = ", ".join(getattr(item, "title", str(item)) for item in conflicts)
    super().__init__(f"conflicts with {titles}")
    self.conflicts = list(conflicts)


class EventNotFound(SchedulerError):

  kind = "not_found"

  def __init__(self, target: str = "") -> None:
    super().__init__(target or "event not found")
    self.target = target


class AmbiguousEventTarget(SchedulerError):

  kind = "ambiguous"

  def __init__(self, candidates: List[Any]) -> None:
    super().__init__(f"{len(candidates)} events match")
    self.candidates = list(candidates)


class BackendError(SchedulerError):

  kind = "backend_error"

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class BackendTimeout(SchedulerError):

  kind = "timeout"

  def __init__(self, operation: str, seconds: float) -> None:
    super().__init__(f"{operation} did not finish within {seconds:g}s")
    self.operation = operation
    self.seconds = seconds
