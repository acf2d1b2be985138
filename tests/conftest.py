"""Shared fixtures for schedule-agent tests.

All tests run against a fixed clock: 2025-07-01 00:00 UTC, which is
Tuesday 09:00 in Asia/Tokyo.
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from schedule_agent.agent.schemas import EventSpec, TimeRange
from schedule_agent.state import LocalCalendarBackend


UTC = timezone.utc
TOKYO = ZoneInfo("Asia/Tokyo")
NOW = datetime(2025, 7, 1, 0, 0, tzinfo=UTC)


def jst(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=TOKYO)


def jst_range(day, start_hour, end_hour, start_minute=0, end_minute=0, month=7):
    return TimeRange(
        start=jst(2025, month, day, start_hour, start_minute),
        end=jst(2025, month, day, end_hour, end_minute),
    )


def seed(backend, title, time_range, **fields):
    return backend.store_event(EventSpec(title=title, time_range=time_range, **fields))


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def backend():
    return LocalCalendarBackend()
