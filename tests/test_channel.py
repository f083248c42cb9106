"""Tests for outbound event channels and event serialization."""

from __future__ import annotations

import io
import json

from cliwire.channel import EventCollector, JsonlChannel
from cliwire.events import (
    CompletionEvent,
    ErrorEvent,
    InvocationRequest,
    ResponseDeltaEvent,
    SessionCreatedEvent,
)


class TestEventSerialization:
    def test_completion_uses_camel_case(self) -> None:
        event = CompletionEvent(
            correlation_token="t", exit_code=0, is_new_session=True, session_id="s"
        )
        assert json.loads(event.model_dump_json(by_alias=True)) == {
            "correlationToken": "t",
            "type": "completion",
            "exitCode": 0,
            "isNewSession": True,
            "sessionId": "s",
        }

    def test_error_session_is_optional(self) -> None:
        event = ErrorEvent(message="boom")
        data = json.loads(event.model_dump_json(by_alias=True))
        assert data["sessionId"] is None
        assert data["type"] == "error"

    def test_request_accepts_wire_names(self) -> None:
        request = InvocationRequest.model_validate(
            {"priorSessionId": "abc", "projectPath": "/p", "correlationToken": [1]}
        )
        assert request.prior_session_id == "abc"
        assert request.project_path == "/p"
        assert request.has_prompt is False


class TestJsonlChannel:
    async def test_writes_one_line_per_event(self) -> None:
        buf = io.StringIO()
        channel = JsonlChannel(buf)
        await channel(SessionCreatedEvent(correlation_token=1, session_id="abc"))
        await channel(ResponseDeltaEvent(correlation_token=1, text="line\nbreak"))
        lines = buf.getvalue().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["sessionId"] == "abc"
        assert json.loads(lines[1])["text"] == "line\nbreak"
        assert channel.event_count == 2

    async def test_drops_after_close(self) -> None:
        buf = io.StringIO()
        channel = JsonlChannel(buf)
        channel.close()
        await channel(ResponseDeltaEvent(text="x"))
        assert buf.getvalue() == ""
        assert channel.event_count == 0


class TestEventCollector:
    async def test_helpers(self) -> None:
        sink = EventCollector()
        await sink(ResponseDeltaEvent(correlation_token="a", text="Hi"))
        await sink(ResponseDeltaEvent(correlation_token="b", text="Yo"))
        await sink(ResponseDeltaEvent(correlation_token="a", text=" there"))
        assert sink.types() == ["response-delta"] * 3
        assert len(sink.of_type("response-delta")) == 3
        assert [e.text for e in sink.for_token("a")] == ["Hi", " there"]
        assert sink.text == "Hi Yo there"
