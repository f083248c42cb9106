"""Pydantic v2 model for cliwire.yaml configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AdapterConfig(BaseModel):
    """Settings for launching an agent CLI and adapting its output."""

    model_config = ConfigDict(extra="forbid")

    cli_command: str = Field(
        default="claude",
        description="Agent CLI executable name or path",
    )
    streaming_default: bool = Field(
        default=False,
        description="Use the streaming dialect for prompted runs unless overridden",
    )
    generate_session_ids: bool = Field(
        default=True,
        description="Mint a session id and pass --session-id for new sessions",
    )
    skip_permissions: bool = Field(
        default=False,
        description="Pass --dangerously-skip-permissions to the CLI",
    )
    extra_args: list[str] = Field(
        default_factory=list,
        description="Additional arguments appended to every invocation",
    )
    strip_env_keys: list[str] = Field(
        default_factory=list,
        description="Environment variables removed from the child environment",
    )
    node_heap_limit_mb: int | None = Field(
        default=None,
        ge=64,
        description="V8 heap cap for Node.js CLIs (null leaves NODE_OPTIONS untouched)",
    )
    ack_text: str = Field(
        default="",
        description="Synthetic acknowledgment delta sent after spawn (empty disables)",
    )
    read_chunk_bytes: int = Field(
        default=65_536,
        ge=1,
        description="Maximum bytes read from the child's pipes per chunk",
    )
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Wall-clock limit per invocation (null for no limit)",
    )
    kill_grace_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL when terminating",
    )
    stderr_max_chars: int = Field(
        default=2048,
        ge=1,
        description="Maximum stderr characters folded into an error event",
    )

    @field_validator("cli_command")
    @classmethod
    def _non_empty_command(cls, value: str) -> str:
        if not value.strip():
            msg = "cli_command must not be empty"
            raise ValueError(msg)
        return value.strip()

    @model_validator(mode="after")
    def _validate_extra_args(self) -> AdapterConfig:
        reserved = {"--resume", "--session-id", "--output-format"}
        clashing = sorted(reserved.intersection(self.extra_args))
        if clashing:
            joined = ", ".join(f"'{a}'" for a in clashing)
            msg = f"extra_args must not contain flags managed by cliwire: {joined}"
            raise ValueError(msg)
        return self
