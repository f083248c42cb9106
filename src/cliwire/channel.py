"""Outbound event channels — where canonical events are delivered."""

from __future__ import annotations

from typing import IO, Any

import click

from cliwire.events import OutboundEvent


class JsonlChannel:
    """Writes each event as one JSON line (camelCase field names).

    Silently drops events after ``close()``.
    """

    def __init__(self, file: IO[str] | None = None) -> None:
        self._file = file
        self._closed = False
        self._count = 0

    @property
    def event_count(self) -> int:
        return self._count

    async def __call__(self, event: OutboundEvent) -> None:
        if self._closed:
            return
        click.echo(event.model_dump_json(by_alias=True), file=self._file)
        self._count += 1

    def close(self) -> None:
        self._closed = True


class EventCollector:
    """Buffers events in memory for non-streaming callers and tests."""

    def __init__(self) -> None:
        self.events: list[OutboundEvent] = []

    async def __call__(self, event: OutboundEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, kind: str) -> list[OutboundEvent]:
        return [event for event in self.events if event.type == kind]

    def for_token(self, token: Any) -> list[OutboundEvent]:
        """Events belonging to the invocation with *token*, in order."""
        return [event for event in self.events if event.correlation_token == token]

    @property
    def text(self) -> str:
        """Concatenated ``response-delta`` text, as a UI would render it."""
        return "".join(
            event.text for event in self.events if event.type == "response-delta"
        )
