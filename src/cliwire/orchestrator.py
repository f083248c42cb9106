"""Orchestrator — runs agent CLI invocations and emits canonical events.

Wires one invocation end to end::

    stdout bytes -> LineFramer -> parse_line -> SessionReconciler
                                             -> Dialect.translate
                                             -> CompletionGuard
    stderr bytes -> diagnostic accumulator

and is the only component that writes to the outbound channel.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from cliwire.config.models import AdapterConfig
from cliwire.constants import EventSink
from cliwire.events import ErrorEvent, InvocationRequest, ResponseDeltaEvent
from cliwire.process.supervisor import ProcessSupervisor, SpawnError
from cliwire.session.completion import CompletionGuard
from cliwire.session.identity import SessionReconciler
from cliwire.stream.envelopes import Envelope, ParseFailure, iter_envelopes, parse_line
from cliwire.stream.framer import LineFramer
from cliwire.stream.translator import Dialect, translator_for

logger = logging.getLogger(__name__)


@dataclass
class InvocationContext:
    """All mutable state of a single invocation."""

    request: InvocationRequest
    streaming: bool
    registry_key: str
    framer: LineFramer
    translator: Dialect
    reconciler: SessionReconciler
    guard: CompletionGuard
    process: asyncio.subprocess.Process | None = None
    timed_out: bool = False
    cancelled: bool = False
    unparsed_lines: int = 0
    stderr_limit: int = 2048
    _stderr: str = ""
    _stderr_decoder: Any = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace")
    )

    @property
    def correlation_token(self) -> Any:
        return self.request.correlation_token

    def add_diagnostic(self, chunk: bytes, *, final: bool = False) -> str:
        text = self._stderr_decoder.decode(chunk, final=final)
        if text:
            # Keep only the tail; the last lines usually carry the cause.
            self._stderr = (self._stderr + text)[-self.stderr_limit :]
        return text

    @property
    def diagnostics(self) -> str:
        return self._stderr.strip()


class Orchestrator:
    """Composition root for agent CLI invocations.

    One orchestrator serves any number of concurrent invocations; each
    gets its own ``InvocationContext``.  Events for an invocation reach
    *emit* in the order they were produced.
    """

    def __init__(
        self,
        emit: EventSink,
        config: AdapterConfig | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self._emit = emit
        self._config = config or AdapterConfig()
        self._supervisor = supervisor or ProcessSupervisor(self._config)

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def invoke(self, request: InvocationRequest) -> int:
        """Run one invocation to completion and return the child's exit code.

        Raises:
            SpawnError: The agent CLI could not be started.  No events
                have been emitted in that case.
        """
        ctx = self._new_context(request)
        generated = None if request.is_resume else ctx.reconciler.session_id

        proc = await self._supervisor.spawn(
            request,
            key=ctx.registry_key,
            generated_id=generated,
            streaming=ctx.streaming,
        )
        ctx.process = proc

        try:
            if self._config.ack_text:
                await self._emit(
                    ResponseDeltaEvent(
                        correlation_token=ctx.correlation_token,
                        text=self._config.ack_text,
                    )
                )
            returncode = await self._run(ctx, proc)
            await self._finish(ctx, returncode)
        finally:
            if proc.returncode is None:
                # Abandoned (task cancelled or the channel failed).
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
            self._supervisor.release(ctx.registry_key, proc)
        return returncode

    async def handle(self, request: InvocationRequest) -> int | None:
        """Like ``invoke()``, but report spawn failures as an ``error`` event."""
        try:
            return await self.invoke(request)
        except SpawnError as exc:
            await self._emit(
                ErrorEvent(
                    correlation_token=request.correlation_token,
                    session_id=request.prior_session_id,
                    message=str(exc),
                )
            )
            return None

    def cancel(self, identity: str) -> bool:
        """Terminate the invocation registered under *identity*."""
        return self._supervisor.cancel(identity)

    # ------------------------------------------------------------------ #
    # Invocation internals
    # ------------------------------------------------------------------ #

    def _new_context(self, request: InvocationRequest) -> InvocationContext:
        streaming = self._supervisor.is_streaming(request)
        generated = None
        if not request.is_resume and self._config.generate_session_ids:
            generated = str(uuid.uuid4())
        reconciler = SessionReconciler(
            prior_session_id=request.prior_session_id,
            generated_id=generated,
            correlation_token=request.correlation_token,
        )
        key = reconciler.session_id or self._supervisor.placeholder_key()
        return InvocationContext(
            request=request,
            streaming=streaming,
            registry_key=key,
            framer=LineFramer(),
            translator=translator_for(streaming, request.correlation_token),
            reconciler=reconciler,
            stderr_limit=self._config.stderr_max_chars,
            guard=CompletionGuard(
                self._emit,
                is_new_session=not request.is_resume,
                correlation_token=request.correlation_token,
            ),
        )

    async def _run(
        self, ctx: InvocationContext, proc: asyncio.subprocess.Process
    ) -> int:
        """Pump both pipes to EOF and wait for the exit code."""
        watchdog: asyncio.Task[None] | None = None
        if self._config.timeout_seconds is not None:
            watchdog = asyncio.create_task(self._watchdog(ctx, proc))
        try:
            await asyncio.gather(
                self._pump_stdout(ctx, proc.stdout),
                self._pump_stderr(ctx, proc.stderr),
            )
            returncode = await proc.wait()
        finally:
            if watchdog is not None and not watchdog.done():
                watchdog.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await watchdog
        logger.info(
            "%s exited with code %d (session=%s)",
            self._supervisor.cli_command,
            returncode,
            ctx.reconciler.session_id,
        )
        return returncode

    async def _watchdog(
        self, ctx: InvocationContext, proc: asyncio.subprocess.Process
    ) -> None:
        await asyncio.sleep(self._config.timeout_seconds or 0)
        if proc.returncode is not None:
            return
        ctx.timed_out = True
        logger.warning(
            "session %s timed out after %ss; terminating",
            ctx.reconciler.session_id,
            self._config.timeout_seconds,
        )
        await self._supervisor.terminate(proc)

    async def _pump_stdout(
        self, ctx: InvocationContext, stream: asyncio.StreamReader | None
    ) -> None:
        if stream is None:
            return
        try:
            while chunk := await stream.read(self._config.read_chunk_bytes):
                for line in ctx.framer.feed(chunk):
                    await self._process_line(ctx, line)
        except (OSError, ValueError) as exc:
            logger.error(
                "error reading %s stdout: %s", self._supervisor.cli_command, exc
            )

    async def _pump_stderr(
        self, ctx: InvocationContext, stream: asyncio.StreamReader | None
    ) -> None:
        if stream is None:
            return
        try:
            while chunk := await stream.read(self._config.read_chunk_bytes):
                text = ctx.add_diagnostic(chunk)
                if text.strip():
                    logger.debug("stderr: %s", text.rstrip())
        except (OSError, ValueError) as exc:
            logger.error(
                "error reading %s stderr: %s", self._supervisor.cli_command, exc
            )
        ctx.add_diagnostic(b"", final=True)

    async def _process_line(self, ctx: InvocationContext, line: str) -> None:
        if not line.strip():
            return
        parsed = parse_line(line)
        if isinstance(parsed, ParseFailure):
            ctx.unparsed_lines += 1
            logger.debug("raw output: %s", parsed.raw[:200])
            return
        await self._route(ctx, parsed)

    async def _route(self, ctx: InvocationContext, envelope: Envelope) -> None:
        for leaf in iter_envelopes(envelope):
            confirmation = ctx.reconciler.observe(leaf.session_id)
            if confirmation is not None:
                if self._supervisor.rekey(ctx.registry_key, confirmation.session_id):
                    ctx.registry_key = confirmation.session_id
                if confirmation.created is not None:
                    await self._emit(confirmation.created)

            translation = ctx.translator.translate(leaf)
            for event in translation.events:
                await self._emit(event)
            if translation.completed:
                await ctx.guard.fire(0, ctx.reconciler.session_id)

    async def _finish(self, ctx: InvocationContext, returncode: int) -> None:
        """Flush trailing output, then settle error and completion."""
        tail = ctx.framer.flush()
        if tail is not None:
            await self._process_line(ctx, tail)
        if not ctx.guard.fired:
            for event in ctx.translator.drain():
                await self._emit(event)

        session_id = ctx.reconciler.finalize()
        if ctx.process is not None:
            ctx.cancelled = self._supervisor.was_cancelled(ctx.process)
            self._supervisor.release(ctx.registry_key, ctx.process)
        if ctx.unparsed_lines:
            logger.debug("%d unparsed stdout line(s)", ctx.unparsed_lines)

        if returncode == 0 and not ctx.timed_out:
            await ctx.guard.fire(0, session_id)
            return

        if ctx.cancelled:
            logger.info("session %s cancelled (exit code %d)", session_id, returncode)
            await ctx.guard.fire(returncode, session_id)
            return

        if not ctx.guard.fired:
            await self._emit(
                ErrorEvent(
                    correlation_token=ctx.correlation_token,
                    session_id=session_id,
                    message=self._failure_message(ctx, returncode),
                )
            )
        await ctx.guard.fire(returncode, session_id)

    def _failure_message(self, ctx: InvocationContext, returncode: int) -> str:
        cli = self._supervisor.cli_command
        diagnostics = ctx.diagnostics
        if ctx.timed_out:
            msg = f"{cli} timed out after {self._config.timeout_seconds}s"
            return f"{msg}: {diagnostics}" if diagnostics else msg
        if diagnostics:
            return diagnostics
        return f"{cli} exited with code {returncode}"
