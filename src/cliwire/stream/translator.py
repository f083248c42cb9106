"""Translate decoded envelopes into canonical outbound events.

Two dialects share one envelope-shape table:

* **streaming** (``--output-format stream-json``) — text arrives as many
  ``content_block_delta`` fragments; complete ``assistant`` messages are a
  fallback for CLIs that do not stream partial output.
* **batch** (``--output-format json``) — a single terminal result carries
  the whole answer; assistant messages are only used when it is empty
  or never arrives.

Translators never emit ``completion`` themselves.  They flag a terminal
envelope on the returned ``Translation`` and the orchestrator routes it
through the completion guard.  Session ids are likewise left to the
session reconciler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from cliwire.events import ResponseDeltaEvent
from cliwire.stream.envelopes import (
    AssistantMessage,
    Envelope,
    EnvelopeBatch,
    ResultEnvelope,
    SystemEnvelope,
    TextDelta,
    UnknownEnvelope,
    iter_envelopes,
)

logger = logging.getLogger(__name__)


@dataclass
class Translation:
    """Visible events produced by one envelope, plus the terminal flag."""

    events: list[ResponseDeltaEvent] = field(default_factory=list)
    completed: bool = False


class Dialect:
    """Shared envelope-shape table; subclasses decide how text is surfaced."""

    name = "base"

    def __init__(self, correlation_token: Any = None) -> None:
        self._token = correlation_token
        # Full response text, kept for diagnostics only.
        self._transcript: list[str] = []

    @property
    def transcript(self) -> str:
        return "".join(self._transcript)

    def translate(self, envelope: Envelope) -> Translation:
        out = Translation()
        for leaf in iter_envelopes(envelope):
            self._translate_leaf(leaf, out)
        return out

    def _translate_leaf(self, envelope: Envelope, out: Translation) -> None:
        match envelope:
            case TextDelta(text=text):
                self._on_delta(text, out)
            case AssistantMessage(text=text):
                self._on_assistant(text, out)
            case ResultEnvelope():
                if envelope.is_error:
                    logger.warning(
                        "result envelope reported an error (subtype=%s): %s",
                        envelope.subtype,
                        envelope.text[:200],
                    )
                self._on_result(envelope.text, out)
                out.completed = True
            case SystemEnvelope():
                logger.debug("system envelope (subtype=%s)", envelope.subtype)
            case UnknownEnvelope(tag=tag):
                logger.debug("ignoring unrecognized envelope (type=%s)", tag)
            case EnvelopeBatch():
                # Flattened by translate(); nested batches are never leaves.
                pass

    def drain(self) -> list[ResponseDeltaEvent]:
        """Text still held back when the stream ends without a result."""
        return []

    def _emit(self, text: str, out: Translation) -> None:
        self._transcript.append(text)
        out.events.append(
            ResponseDeltaEvent(correlation_token=self._token, text=text)
        )

    def _on_delta(self, text: str, out: Translation) -> None:
        self._emit(text, out)

    def _on_assistant(self, text: str, out: Translation) -> None:
        raise NotImplementedError

    def _on_result(self, text: str, out: Translation) -> None:
        raise NotImplementedError


class StreamingDialect(Dialect):
    """Incremental output: deltas win, complete messages fill the gaps."""

    name = "streaming"

    def __init__(self, correlation_token: Any = None) -> None:
        super().__init__(correlation_token)
        self._streamed_since_message = False
        self._streamed_any = False

    def _on_delta(self, text: str, out: Translation) -> None:
        self._streamed_since_message = True
        self._streamed_any = True
        self._emit(text, out)

    def _on_assistant(self, text: str, out: Translation) -> None:
        # With partial messages enabled the CLI repeats each streamed
        # message in full; only surface it when nothing was streamed.
        if self._streamed_since_message:
            self._streamed_since_message = False
            return
        self._streamed_any = True
        self._emit(text, out)

    def _on_result(self, text: str, out: Translation) -> None:
        # The result repeats the final answer already shown as deltas.
        if text and not self._streamed_any:
            self._emit(text, out)


class BatchDialect(Dialect):
    """One-shot output: the terminal result is the answer."""

    name = "batch"

    def __init__(self, correlation_token: Any = None) -> None:
        super().__init__(correlation_token)
        self._held: list[str] = []

    def _on_assistant(self, text: str, out: Translation) -> None:
        self._held.append(text)

    def _on_result(self, text: str, out: Translation) -> None:
        if text:
            self._emit(text, out)
        elif self._held:
            self._emit("".join(self._held), out)
        self._held.clear()

    def drain(self) -> list[ResponseDeltaEvent]:
        if not self._held:
            return []
        out = Translation()
        self._emit("".join(self._held), out)
        self._held.clear()
        return out.events


def translator_for(streaming: bool, correlation_token: Any = None) -> Dialect:
    """Return the dialect strategy for an invocation mode."""
    if streaming:
        return StreamingDialect(correlation_token)
    return BatchDialect(correlation_token)
