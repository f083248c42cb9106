"""cliwire run — run one agent CLI invocation and print its events."""

from __future__ import annotations

import asyncio
import contextlib
import signal
from pathlib import Path

import click

from cliwire.channel import JsonlChannel
from cliwire.config.models import AdapterConfig
from cliwire.config.parser import ConfigError, load_config
from cliwire.events import ErrorEvent, InvocationRequest, OutboundEvent
from cliwire.helpers import configure_logging, format_stderr_preview
from cliwire.orchestrator import Orchestrator
from cliwire.process.supervisor import SpawnError


@click.command()
@click.argument("prompt", required=False)
@click.option(
    "--resume",
    "prior_session_id",
    default=None,
    help="Resume an existing session by id.",
)
@click.option("--model", default=None, help="Model selector for new sessions.")
@click.option(
    "--cwd",
    "working_directory",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory for the agent CLI.",
)
@click.option(
    "--project",
    "project_path",
    type=click.Path(file_okay=False),
    default=None,
    help="Project path (used when --cwd is not given).",
)
@click.option(
    "--stream/--batch",
    "streaming",
    default=None,
    help="Force the streaming or batch output dialect.",
)
@click.option(
    "--token",
    "correlation_token",
    default=None,
    help="Correlation token echoed on every event.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to cliwire.yaml (default: ./cliwire.yaml if present).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging on stderr.")
def run(
    prompt: str | None,
    prior_session_id: str | None,
    model: str | None,
    working_directory: str | None,
    project_path: str | None,
    streaming: bool | None,
    correlation_token: str | None,
    config_file: str | None,
    verbose: bool,
) -> None:
    """Run the agent CLI once and print canonical events as JSON lines."""
    configure_logging(verbose)
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    request = InvocationRequest(
        prior_session_id=prior_session_id,
        working_directory=working_directory,
        project_path=project_path,
        model=model,
        prompt=prompt,
        correlation_token=correlation_token,
        streaming=streaming,
    )
    returncode = asyncio.run(_run_invocation(config, request))
    raise SystemExit(_exit_status(returncode))


async def _run_invocation(config: AdapterConfig, request: InvocationRequest) -> int:
    """Run *request* with Ctrl+C / SIGTERM mapped to cancellation."""
    channel = JsonlChannel()
    errors: list[str] = []

    async def _emit(event: OutboundEvent) -> None:
        if event.type == "error":
            errors.append(event.message)
        await channel(event)

    orchestrator = Orchestrator(_emit, config)

    def _cancel_all(sig_name: str) -> None:
        click.echo(f"\nReceived {sig_name}, cancelling...", err=True)
        for key in orchestrator.supervisor.active_sessions():
            orchestrator.cancel(key)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _cancel_all, sig.name)

    try:
        returncode = await orchestrator.invoke(request)
    except SpawnError as exc:
        await _emit(
            ErrorEvent(
                correlation_token=request.correlation_token,
                session_id=request.prior_session_id,
                message=str(exc),
            )
        )
        click.echo(f"Error: {exc}", err=True)
        return 127
    finally:
        channel.close()

    if returncode != 0:
        msg = f"{config.cli_command} exited with code {returncode}."
        preview = format_stderr_preview(errors[-1]) if errors else ""
        if preview:
            msg += f" Stderr:\n  {preview}"
        click.echo(msg, err=True)
    return returncode


def _exit_status(returncode: int) -> int:
    """Map a child return code onto a shell exit status."""
    # Negative codes mean "killed by signal N".
    return 128 - returncode if returncode < 0 else returncode
