"""Shared helper functions for the cliwire commands."""

from __future__ import annotations

import logging
import sys


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


def configure_logging(verbose: bool) -> None:
    """Send logs to stderr; DEBUG when *verbose*, else WARNING.

    A no-op when the root logger already has handlers.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
