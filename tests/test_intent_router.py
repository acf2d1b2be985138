"""Intent sources: model output normalization and the keyword fallback."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from schedule_agent.agent.intent_router import (
    KeywordIntentSource,
    LLMIntentSource,
    intent_from_output,
    normalize_action,
    normalize_missing,
    select_intent_source,
)
from schedule_agent.agent.normalizer import DateTimeResolver
from schedule_agent.agent.schemas import LLMEventData, LLMIntentOutput, TimeRange
from schedule_agent.agent.state import ConversationState

from .conftest import NOW, jst


UTC = timezone.utc


class TestNormalizeAction:

    @pytest.mark.parametrize("raw,expected", [
        ("CREATE_EVENT", "create_event"),
        ("CreateEvent", "create_event"),
        ("create_event", "create_event"),
        ("LIST_EVENTS", "list_events"),
        ("get-event-details", "get_event_details"),
        ("FIND_FREE_SLOTS", "find_free_slots"),
        ("DELETE_EVENT", "delete_event"),
        ("UPDATE_EVENT", "update_event"),
        ("EditEvent", "update_event"),
        ("dance", "general_response"),
        (None, "general_response"),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_action(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("StartTime", "start_time"),
        ("end_time", "end_time"),
        ("Title", "title"),
        ("All", "all"),
        ("Location", None),
        (None, None),
    ])
    def test_missing_aliases(self, raw, expected):
        assert normalize_missing(raw) == expected


class TestIntentFromOutput:

    def setup_method(self):
        self.resolver = DateTimeResolver("Asia/Tokyo")

    def test_create_with_range(self):
        output = LLMIntentOutput(
            action="CREATE_EVENT",
            event_data=LLMEventData(title="  Standup ", start_time="2025-07-01T10:00:00+09:00",
                                    priority="High", attendees=["a@example.com"]),
            missing_data="EndTime",
            range_start="2025-07-01",
            range_end="2025-07-02",
            response_text="  ",
        )

        intent = intent_from_output(output, "add standup", self.resolver)

        assert intent.action == "create_event"
        assert intent.partial_event.title == "Standup"
        assert intent.partial_event.start == "2025-07-01T10:00:00+09:00"
        assert intent.partial_event.priority == "high"
        assert intent.missing == "end_time"
        assert intent.range_hint == TimeRange(start=jst(2025, 7, 1), end=jst(2025, 7, 2))
        assert intent.free_text == "add standup"
        assert intent.response_text is None

    @pytest.mark.parametrize("start,end", [
        ("soon", "2025-07-02"),
        ("2025-07-02", "2025-07-01"),
        ("2025-07-01", None),
    ])
    def test_unusable_range_dropped(self, start, end):
        output = LLMIntentOutput(action="LIST_EVENTS", range_start=start, range_end=end)
        assert intent_from_output(output, "list", self.resolver).range_hint is None

    def test_general_response_keeps_text(self):
        output = LLMIntentOutput(action="GENERAL_RESPONSE", response_text="Hello!")
        intent = intent_from_output(output, "hi", self.resolver)
        assert intent.action == "general_response"
        assert intent.response_text == "Hello!"


class TestLLMIntentSource:

    @pytest.mark.asyncio
    async def test_sends_context_and_recent_turns(self):
        conversation = ConversationState(clock=lambda: NOW)
        conversation.add_user_turn("add lunch")
        conversation.add_assistant_turn("Could you tell me the event's start time?")
        parsed = LLMIntentOutput(action="LIST_EVENTS")
        completion = AsyncMock(return_value=(parsed, '{"action": "LIST_EVENTS"}', {"llm_available": True}))
        source = LLMIntentSource(model="gpt-5-mini", timezone_name="Asia/Tokyo", clock=lambda: NOW)

        with patch("schedule_agent.agent.intent_router.run_structured_completion", new=completion):
            intent = await source.resolve_intent("tomorrow at noon", "Events today: 0",
                                                 conversation.recent(5))

        assert intent.action == "list_events"
        kwargs = completion.await_args.kwargs
        assert kwargs["response_model"] is LLMIntentOutput
        assert "2025-07-01T09:00:00+09:00" in kwargs["system_prompt"]
        assert kwargs["user_payload"]["context"] == "Events today: 0"
        assert [t["role"] for t in kwargs["user_payload"]["recent_turns"]] == ["user", "assistant"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("meta,raw,fragment", [
        ({"llm_available": False}, "", "not configured"),
        ({"llm_available": True, "llm_output_empty_or_error": True}, "", "couldn't reach"),
        ({"llm_available": True}, "not json at all", "rephrase"),
    ])
    async def test_unparsed_output_becomes_general_response(self, meta, raw, fragment):
        completion = AsyncMock(return_value=(None, raw, meta))
        source = LLMIntentSource(timezone_name="Asia/Tokyo", clock=lambda: NOW)

        with patch("schedule_agent.agent.intent_router.run_structured_completion", new=completion):
            intent = await source.resolve_intent("blah", "", [])

        assert intent.action == "general_response"
        assert fragment in intent.response_text
        assert intent.free_text == "blah"


class TestKeywordIntentSource:

    def setup_method(self):
        self.source = KeywordIntentSource(timezone_name="Asia/Tokyo", clock=lambda: NOW)

    async def _resolve(self, text):
        return await self.source.resolve_intent(text, "", [])

    @pytest.mark.asyncio
    async def test_create_with_two_timestamps(self):
        intent = await self._resolve('add "Standup" 2025-07-01 10:00 2025-07-01 10:30')
        assert intent.action == "create_event"
        assert intent.partial_event.title == "Standup"
        assert intent.partial_event.start == "2025-07-01 10:00"
        assert intent.partial_event.end == "2025-07-01 10:30"
        assert intent.missing is None

    @pytest.mark.asyncio
    async def test_create_with_duration(self):
        intent = await self._resolve('add "Gym" 2025-07-01 18:00 for 45 minutes')
        assert intent.partial_event.duration_minutes == 45
        assert intent.missing is None

    @pytest.mark.asyncio
    async def test_create_japanese(self):
        intent = await self._resolve("「定例会議」を2025年7月1日 15:00から2025年7月1日 16:00で追加して")
        assert intent.action == "create_event"
        assert intent.partial_event.title == "定例会議"
        assert intent.partial_event.start == "2025年7月1日 15:00"
        assert intent.partial_event.end == "2025年7月1日 16:00"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text,missing", [
        ("add a meeting", "all"),
        ('add "Lunch"', "start_time"),
        ('add "Lunch" 2025-07-01 12:00', "end_time"),
        ("add 2025-07-01 12:00 2025-07-01 13:00", "title"),
    ])
    async def test_missing_fields(self, text, missing):
        intent = await self._resolve(text)
        assert intent.missing == missing

    @pytest.mark.asyncio
    async def test_list_tomorrow(self):
        intent = await self._resolve("show tomorrow's events")
        assert intent.action == "list_events"
        assert intent.range_hint == TimeRange(start=jst(2025, 7, 2), end=jst(2025, 7, 3))

    @pytest.mark.asyncio
    async def test_free_slots_this_week(self):
        intent = await self._resolve("find me a free hour this week")
        assert intent.action == "find_free_slots"
        assert intent.partial_event.duration_minutes is None
        assert intent.range_hint.start == datetime(2025, 6, 29, 15, 0, tzinfo=UTC)
        assert intent.range_hint.end == datetime(2025, 7, 6, 15, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_search_query(self):
        intent = await self._resolve("search dentist")
        assert intent.action == "search_events"
        assert intent.partial_event.title == "dentist"

    @pytest.mark.asyncio
    async def test_delete_quoted_title(self):
        intent = await self._resolve('delete "Standup"')
        assert intent.action == "delete_event"
        assert intent.partial_event.title == "Standup"

    @pytest.mark.asyncio
    async def test_delete_unquoted_keeps_free_text(self):
        intent = await self._resolve("cancel the team sync")
        assert intent.action == "delete_event"
        assert intent.partial_event.title is None
        assert intent.free_text == "cancel the team sync"

    @pytest.mark.asyncio
    async def test_general(self):
        intent = await self._resolve("hello there")
        assert intent.action == "general_response"

    @pytest.mark.asyncio
    async def test_reschedule_is_update(self):
        intent = await self._resolve('reschedule a meeting "Standup" to 2025-07-02 11:00')
        assert intent.action == "update_event"
        assert intent.partial_event.title == "Standup"
        assert intent.partial_event.start == "2025-07-02 11:00"
        assert intent.partial_event.end is None
        assert intent.missing is None

    @pytest.mark.asyncio
    async def test_update_japanese(self):
        intent = await self._resolve("「定例会議」を2025年7月2日 10:00に変更して")
        assert intent.action == "update_event"
        assert intent.partial_event.title == "定例会議"
        assert intent.partial_event.start == "2025年7月2日 10:00"


class TestSelectIntentSource:

    def test_auto_without_key_uses_keywords(self):
        with patch("schedule_agent.agent.intent_router.llm_configured", return_value=False):
            assert isinstance(select_intent_source("auto"), KeywordIntentSource)

    def test_auto_with_key_uses_llm(self):
        with patch("schedule_agent.agent.intent_router.llm_configured", return_value=True):
            assert isinstance(select_intent_source("auto"), LLMIntentSource)

    def test_explicit_choice(self):
        assert isinstance(select_intent_source("keyword"), KeywordIntentSource)
        assert isinstance(select_intent_source("LLM"), LLMIntentSource)

    def test_unknown(self):
        with pytest.raises(ValueError):
            select_intent_source("oracle")
