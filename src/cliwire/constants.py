"""Shared constants and type aliases for the cliwire runtime."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from cliwire.events import OutboundEvent

#: Environment variable asking the agent CLI for its streaming JSON dialect.
OUTPUT_FORMAT_ENV = "CLAUDE_CODE_OUTPUT_FORMAT"

#: Prefix for registry keys used before any session identity is known.
PLACEHOLDER_PREFIX = "temp-"

#: Callback type for the outbound event channel.
EventSink = Callable[[OutboundEvent], Awaitable[None]]
