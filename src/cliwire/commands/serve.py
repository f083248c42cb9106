"""cliwire serve — multiplex invocations over stdin/stdout JSON lines."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import logging
import select
import signal
import sys
import threading
from pathlib import Path
from typing import Annotated, Any, Literal

import click
from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
)

from cliwire.channel import JsonlChannel
from cliwire.config.models import AdapterConfig
from cliwire.config.parser import ConfigError, load_config
from cliwire.events import InvocationRequest
from cliwire.helpers import configure_logging
from cliwire.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


class InvokeCommand(InvocationRequest):
    """``{"action": "invoke", ...InvocationRequest fields}``."""

    action: Literal["invoke"] = "invoke"

    def to_request(self) -> InvocationRequest:
        return InvocationRequest.model_validate(
            self.model_dump(exclude={"action"})
        )


class CancelCommand(BaseModel):
    """``{"action": "cancel", "sessionId": ...}``."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    action: Literal["cancel"] = "cancel"
    session_id: str = Field(alias="sessionId")


def _command_discriminator(v: Any) -> str:
    if isinstance(v, dict):
        return str(v.get("action", "invoke"))
    return str(getattr(v, "action", ""))


ServeCommand = Annotated[
    Annotated[InvokeCommand, Tag("invoke")] | Annotated[CancelCommand, Tag("cancel")],
    Discriminator(_command_discriminator),
]

_command_adapter: TypeAdapter[InvokeCommand | CancelCommand] = TypeAdapter(
    ServeCommand
)


def parse_command(line: str) -> InvokeCommand | CancelCommand:
    """Decode one stdin line into a serve command.

    Raises:
        ValueError: The line is not valid JSON or not a known command.
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        msg = f"invalid JSON: {exc}"
        raise ValueError(msg) from exc
    try:
        return _command_adapter.validate_python(data)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(s) for s in err['loc']) or '(root)'}: {err['msg']}"
            for err in exc.errors()
        )
        msg = f"invalid command: {details}"
        raise ValueError(msg) from exc


@click.command()
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to cliwire.yaml (default: ./cliwire.yaml if present).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging on stderr.")
def serve(config_file: str | None, verbose: bool) -> None:
    """Read invoke/cancel commands from stdin and stream events to stdout."""
    configure_logging(verbose)
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    asyncio.run(_serve(config))


async def _serve(config: AdapterConfig) -> None:
    channel = JsonlChannel()
    orchestrator = Orchestrator(channel, config)
    tasks: set[asyncio.Task[int | None]] = set()
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()
    thread_cancel = threading.Event()

    def _signal_shutdown(sig_name: str) -> None:
        click.echo(f"\nReceived {sig_name}, shutting down...", err=True)
        shutdown_event.set()
        thread_cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _signal_shutdown, sig.name)

    try:
        while not shutdown_event.is_set():
            try:
                line = await loop.run_in_executor(
                    None, functools.partial(_read_line, thread_cancel)
                )
            except EOFError:
                break

            line = line.strip()
            if not line:
                continue

            try:
                command = parse_command(line)
            except ValueError as exc:
                click.echo(f"Error: {exc}", err=True)
                continue

            if isinstance(command, CancelCommand):
                if not orchestrator.cancel(command.session_id):
                    click.echo(
                        f"No active session '{command.session_id}' to cancel.", err=True
                    )
                continue

            task = asyncio.create_task(orchestrator.handle(command.to_request()))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
    finally:
        thread_cancel.set()
        if shutdown_event.is_set():
            for key in orchestrator.supervisor.active_sessions():
                orchestrator.cancel(key)
        if tasks:
            logger.info("waiting for %d running invocation(s)", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
        channel.close()


def _read_line(cancel: threading.Event) -> str:
    """Blocking stdin reader for use with ``run_in_executor``.

    Polls with ``select.select`` so the thread notices *cancel* within
    half a second instead of blocking forever on an idle pipe.
    """
    while not cancel.is_set():
        ready, _, _ = select.select([sys.stdin], [], [], 0.5)
        if ready:
            break
    if cancel.is_set():
        raise EOFError

    line = sys.stdin.readline()
    if not line:
        raise EOFError
    return line
