"""Split a chunked byte stream into complete text lines."""

from __future__ import annotations

import codecs


class LineFramer:
    """Accumulates byte chunks and yields newline-terminated lines.

    Splits on ``\\n`` and ``\\r\\n``.  The unterminated tail of each chunk is
    kept as the pending remainder and prepended to the next chunk.  Bytes
    are decoded incrementally so a multi-byte UTF-8 sequence split across
    chunks is never mangled.  Whitespace-only lines are returned as-is;
    filtering them is the caller's job.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._remainder = ""

    @property
    def pending(self) -> str:
        """The unterminated text held back from the last chunk."""
        return self._remainder

    def feed(self, chunk: bytes) -> list[str]:
        """Append *chunk* and return every line it completed."""
        text = self._remainder + self._decoder.decode(chunk)
        parts = text.split("\n")
        self._remainder = parts.pop()
        return [part[:-1] if part.endswith("\r") else part for part in parts]

    def flush(self) -> str | None:
        """Return the final unterminated line, if it has any content.

        Called once at process end; the framer is empty afterwards.
        """
        tail = self._remainder + self._decoder.decode(b"", final=True)
        self._remainder = ""
        if tail.endswith("\r"):
            tail = tail[:-1]
        if not tail.strip():
            return None
        return tail
