"""Pydantic v2 models for invocation requests and canonical outbound events."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


class InvocationRequest(BaseModel):
    """Immutable input to one agent CLI run."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="forbid")

    prior_session_id: str | None = Field(
        default=None,
        alias="priorSessionId",
        description="Session to resume; absent starts a new session",
    )
    working_directory: str | None = Field(
        default=None,
        alias="workingDirectory",
        description="Explicit working directory for the child process",
    )
    project_path: str | None = Field(
        default=None,
        alias="projectPath",
        description="Project path, used when no working directory is given",
    )
    model: str | None = Field(
        default=None,
        description="Model selector (ignored when resuming)",
    )
    prompt: str | None = Field(
        default=None,
        description="One-shot prompt; absent means continuous streaming mode",
    )
    correlation_token: Any = Field(
        default=None,
        alias="correlationToken",
        description="Opaque caller value echoed on every outbound event",
    )
    streaming: bool | None = Field(
        default=None,
        description="Force the streaming dialect even when a prompt is given",
    )

    @property
    def is_resume(self) -> bool:
        return self.prior_session_id is not None

    @property
    def has_prompt(self) -> bool:
        return bool(self.prompt and self.prompt.strip())


class _EventBase(BaseModel):
    """Fields shared by every outbound event."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    correlation_token: Any = Field(
        default=None,
        alias="correlationToken",
        description="Round-tripped from the invocation request",
    )


class SessionCreatedEvent(_EventBase):
    """Identity confirmed for a brand-new session; at most once per run."""

    type: Literal["session-created"] = "session-created"
    session_id: str = Field(alias="sessionId")


class ResponseDeltaEvent(_EventBase):
    """A text fragment for the caller to append to the visible response."""

    type: Literal["response-delta"] = "response-delta"
    text: str


class CompletionEvent(_EventBase):
    """Exactly one per invocation, emitted through the completion guard."""

    type: Literal["completion"] = "completion"
    exit_code: int = Field(alias="exitCode")
    is_new_session: bool = Field(alias="isNewSession")
    session_id: str | None = Field(default=None, alias="sessionId")


class ErrorEvent(_EventBase):
    """Abnormal exit that was not already completed, or a spawn failure."""

    type: Literal["error"] = "error"
    session_id: str | None = Field(default=None, alias="sessionId")
    message: str


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    if isinstance(v, dict):
        return str(v.get("type", ""))
    return str(getattr(v, "type", ""))


OutboundEvent = Annotated[
    Annotated[SessionCreatedEvent, Tag("session-created")]
    | Annotated[ResponseDeltaEvent, Tag("response-delta")]
    | Annotated[CompletionEvent, Tag("completion")]
    | Annotated[ErrorEvent, Tag("error")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of the canonical outbound event kinds."""
