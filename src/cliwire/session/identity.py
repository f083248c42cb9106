"""Session identity reconciliation for one invocation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from cliwire.events import SessionCreatedEvent

logger = logging.getLogger(__name__)

IdentityState = Literal["unconfirmed", "confirmed"]


@dataclass(frozen=True)
class Confirmation:
    """Result of the one-time ``unconfirmed -> confirmed`` transition."""

    previous: str | None
    session_id: str
    created: SessionCreatedEvent | None = None


class SessionReconciler:
    """Tracks the best-known session id of a single invocation.

    Starts ``unconfirmed`` with either the caller's prior session id
    (resume), a client-generated id, or nothing.  The first id the process
    reports confirms the session and is authoritative from then on; later
    reports are ignored.  A ``session-created`` event is synthesized on
    confirmation unless the invocation is a resume.
    """

    def __init__(
        self,
        *,
        prior_session_id: str | None = None,
        generated_id: str | None = None,
        correlation_token: Any = None,
    ) -> None:
        self._prior = prior_session_id
        self._generated = generated_id
        self._token = correlation_token
        self._confirmed: str | None = None
        self._created_sent = False

    @property
    def state(self) -> IdentityState:
        return "confirmed" if self._confirmed is not None else "unconfirmed"

    @property
    def is_resume(self) -> bool:
        return self._prior is not None

    @property
    def session_id(self) -> str | None:
        """Best-known identity: confirmed, else prior, else generated."""
        return self._confirmed or self._prior or self._generated

    def observe(self, reported_id: str | None) -> Confirmation | None:
        """Feed a process-reported session id.

        Returns a ``Confirmation`` the first time a non-empty id is
        observed, and ``None`` on every other call.
        """
        if not reported_id:
            return None
        if self._confirmed is not None:
            if reported_id != self._confirmed:
                logger.debug(
                    "ignoring session id %s; already confirmed as %s",
                    reported_id,
                    self._confirmed,
                )
            return None

        previous = self.session_id
        self._confirmed = reported_id
        if previous is not None and previous != reported_id:
            logger.info("session %s confirmed as %s", previous, reported_id)

        created = None
        if not self.is_resume and not self._created_sent:
            self._created_sent = True
            created = SessionCreatedEvent(
                correlation_token=self._token,
                session_id=reported_id,
            )
        return Confirmation(previous=previous, session_id=reported_id, created=created)

    def finalize(self) -> str | None:
        """Settle the final identity when the process has exited."""
        if self._confirmed is None:
            logger.warning(
                "process never reported a session id; falling back to %s",
                self.session_id,
            )
        return self.session_id
