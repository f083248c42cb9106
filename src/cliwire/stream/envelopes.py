"""Decode agent CLI output lines into a closed set of envelope types.

Agent CLIs emit one JSON object per line in streaming mode and a single
JSON document (object or array) in batch mode.  The schema is not
contractually fixed, so decoding is permissive: anything that parses as
JSON becomes *some* envelope, falling back to ``UnknownEnvelope``, and
anything that does not parse becomes a ``ParseFailure`` value.  Nothing
here raises.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TextDelta:
    """Incremental fragment of an assistant message."""

    text: str
    session_id: str | None = None


@dataclass(frozen=True)
class AssistantMessage:
    """A complete assistant message (non-incremental output)."""

    text: str
    session_id: str | None = None


@dataclass(frozen=True)
class ResultEnvelope:
    """Terminal result carrying the final answer string."""

    text: str
    is_error: bool = False
    subtype: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class SystemEnvelope:
    """System/metadata envelope, typically reporting the session id."""

    subtype: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class EnvelopeBatch:
    """A JSON array of envelopes (batch output of newer CLIs)."""

    items: tuple[Envelope, ...] = ()
    session_id: str | None = None


@dataclass(frozen=True)
class UnknownEnvelope:
    """Valid JSON whose shape is not recognized."""

    tag: str | None = None
    payload: Any = None
    session_id: str | None = None


@dataclass(frozen=True)
class ParseFailure:
    """A line that could not be decoded as JSON."""

    raw: str
    reason: str = field(default="invalid JSON")


Envelope = (
    TextDelta
    | AssistantMessage
    | ResultEnvelope
    | SystemEnvelope
    | EnvelopeBatch
    | UnknownEnvelope
)


def parse_line(line: str) -> Envelope | ParseFailure:
    """Decode one candidate line; never raises."""
    stripped = line.strip()
    if not stripped:
        return ParseFailure(raw=line, reason="empty line")
    try:
        data = json.loads(stripped)
    except (json.JSONDecodeError, RecursionError) as exc:
        return ParseFailure(raw=line, reason=str(exc))
    return decode_envelope(data)


def decode_envelope(data: Any) -> Envelope:
    """Map decoded JSON onto an envelope variant."""
    if isinstance(data, list):
        return EnvelopeBatch(items=tuple(decode_envelope(item) for item in data))
    if not isinstance(data, dict):
        return UnknownEnvelope(payload=data)

    session_id = _session_id(data)
    tag = data.get("type")

    if tag is None:
        # Untyped dialects expose the answer as ``result`` or ``output``.
        for key in ("result", "output"):
            value = data.get(key)
            if isinstance(value, str):
                return ResultEnvelope(
                    text=value,
                    is_error=data.get("is_error") is True,
                    session_id=session_id,
                )
        return UnknownEnvelope(payload=data, session_id=session_id)

    match tag:
        case "content_block_delta":
            text = _delta_text(data.get("delta"))
            if text is not None:
                return TextDelta(text=text, session_id=session_id)
        case "stream_event":
            inner = data.get("event")
            if isinstance(inner, dict) and inner.get("type") == "content_block_delta":
                text = _delta_text(inner.get("delta"))
                if text is not None:
                    return TextDelta(text=text, session_id=session_id)
        case "assistant":
            text = _message_text(data.get("message"))
            if text is not None:
                return AssistantMessage(text=text, session_id=session_id)
        case "result":
            result = data.get("result")
            return ResultEnvelope(
                text=result if isinstance(result, str) else "",
                is_error=data.get("is_error") is True,
                subtype=_str_or_none(data.get("subtype")),
                session_id=session_id,
            )
        case "system":
            return SystemEnvelope(
                subtype=_str_or_none(data.get("subtype")),
                session_id=session_id,
            )

    return UnknownEnvelope(tag=str(tag), payload=data, session_id=session_id)


def iter_envelopes(envelope: Envelope) -> list[Envelope]:
    """Flatten batches into a list of leaf envelopes, in order."""
    if isinstance(envelope, EnvelopeBatch):
        flat: list[Envelope] = []
        for item in envelope.items:
            flat.extend(iter_envelopes(item))
        return flat
    return [envelope]


def _session_id(data: dict[str, Any]) -> str | None:
    value = data.get("session_id", data.get("sessionId"))
    if isinstance(value, str) and value:
        return value
    return None


def _delta_text(delta: Any) -> str | None:
    if not isinstance(delta, dict):
        return None
    text = delta.get("text")
    if isinstance(text, str) and text:
        return text
    return None


def _message_text(message: Any) -> str | None:
    """Join the ``text`` blocks of an assistant message, or None if it has none."""
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content or None
    if not isinstance(content, list):
        return None
    texts = [
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type", "text") == "text"
        and isinstance(block.get("text"), str)
    ]
    joined = "".join(texts)
    return joined or None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None
