"""Exactly-once completion latch for one invocation."""

from __future__ import annotations

import logging
from typing import Any

from cliwire.constants import EventSink
from cliwire.events import CompletionEvent

logger = logging.getLogger(__name__)


class CompletionGuard:
    """Emits ``completion`` on the first ``fire()`` and ignores the rest.

    Three call sites route through here: a terminal result envelope seen
    mid-stream, the final flushed line at exit, and the exit callback.
    """

    def __init__(
        self,
        emit: EventSink,
        *,
        is_new_session: bool,
        correlation_token: Any = None,
    ) -> None:
        self._emit = emit
        self._is_new_session = is_new_session
        self._token = correlation_token
        self._fired = False
        self._exit_code: int | None = None

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def exit_code(self) -> int | None:
        """Exit code carried by the emitted event, or None if not fired."""
        return self._exit_code

    async def fire(self, exit_code: int, session_id: str | None = None) -> bool:
        """Emit the completion event once; returns whether this call emitted."""
        if self._fired:
            logger.debug("completion already sent; ignoring exit code %d", exit_code)
            return False
        # Latch before awaiting so a re-entrant call cannot slip through.
        self._fired = True
        self._exit_code = exit_code
        await self._emit(
            CompletionEvent(
                correlation_token=self._token,
                exit_code=exit_code,
                is_new_session=self._is_new_session,
                session_id=session_id,
            )
        )
        return True
