"""Line framing, envelope decoding and dialect translation."""

from cliwire.stream.envelopes import (
    AssistantMessage,
    Envelope,
    EnvelopeBatch,
    ParseFailure,
    ResultEnvelope,
    SystemEnvelope,
    TextDelta,
    UnknownEnvelope,
    decode_envelope,
    iter_envelopes,
    parse_line,
)
from cliwire.stream.framer import LineFramer
from cliwire.stream.translator import (
    BatchDialect,
    Dialect,
    StreamingDialect,
    Translation,
    translator_for,
)

__all__ = [
    "AssistantMessage",
    "BatchDialect",
    "Dialect",
    "Envelope",
    "EnvelopeBatch",
    "LineFramer",
    "ParseFailure",
    "ResultEnvelope",
    "StreamingDialect",
    "SystemEnvelope",
    "TextDelta",
    "Translation",
    "UnknownEnvelope",
    "decode_envelope",
    "iter_envelopes",
    "parse_line",
    "translator_for",
]
