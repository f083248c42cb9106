"""Process supervisor — spawns agent CLI children and tracks them for cancellation."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import os
import shutil
from pathlib import Path

from cliwire.config.models import AdapterConfig
from cliwire.constants import OUTPUT_FORMAT_ENV, PLACEHOLDER_PREFIX
from cliwire.events import InvocationRequest
from cliwire.process.registry import ProcessRegistry

logger = logging.getLogger(__name__)

_placeholder_ids = itertools.count(1)


class SpawnError(Exception):
    """The OS could not start the agent CLI."""


class ProcessSupervisor:
    """Owns agent CLI child processes for every invocation on this host.

    Two operating modes shape the argument vector:

    * **batch** — a prompt is supplied and streaming was not requested:
      ``-p <prompt> --output-format json``.
    * **streaming** — no prompt, or streaming requested:
      ``--output-format stream-json --verbose``.

    New sessions pass ``--session-id`` (and ``--model`` when given);
    resumed sessions pass ``--resume`` and never a model, since the CLI
    keeps the model the session started with.
    """

    def __init__(
        self,
        config: AdapterConfig | None = None,
        registry: ProcessRegistry | None = None,
    ) -> None:
        self._config = config or AdapterConfig()
        self._registry = registry if registry is not None else ProcessRegistry()
        # Processes terminated through cancel(), until released.
        self._cancelled: set[asyncio.subprocess.Process] = set()

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    @property
    def cli_command(self) -> str:
        return self._config.cli_command

    # ------------------------------------------------------------------ #
    # Invocation shape
    # ------------------------------------------------------------------ #

    def is_streaming(self, request: InvocationRequest) -> bool:
        """Whether *request* runs in the streaming dialect."""
        if not request.has_prompt:
            return True
        if request.streaming is not None:
            return request.streaming
        return self._config.streaming_default

    @staticmethod
    def resolve_working_dir(request: InvocationRequest) -> str:
        """Explicit working directory, else the project path, else our cwd."""
        return request.working_directory or request.project_path or os.getcwd()

    def build_args(
        self,
        request: InvocationRequest,
        *,
        generated_id: str | None = None,
        streaming: bool | None = None,
    ) -> list[str]:
        """Build the full argument vector, executable first."""
        if streaming is None:
            streaming = self.is_streaming(request)

        args = [self._config.cli_command]

        if request.has_prompt:
            args.extend(["-p", request.prompt or ""])

        if request.prior_session_id:
            args.extend(["--resume", request.prior_session_id])
        else:
            if generated_id:
                args.extend(["--session-id", generated_id])
            if request.model:
                args.extend(["--model", request.model])

        if streaming:
            args.extend(["--output-format", "stream-json", "--verbose"])
        else:
            args.extend(["--output-format", "json"])

        if self._config.skip_permissions:
            args.append("--dangerously-skip-permissions")

        args.extend(self._config.extra_args)
        return args

    def build_env(self) -> dict[str, str]:
        """Child environment: inherited, stripped, with the dialect override."""
        stripped = set(self._config.strip_env_keys)
        env = {k: v for k, v in os.environ.items() if k not in stripped}
        env[OUTPUT_FORMAT_ENV] = "stream-json"

        heap_mb = self._config.node_heap_limit_mb
        if heap_mb is not None:
            node_opts = env.get("NODE_OPTIONS", "")
            if "--max-old-space-size" not in node_opts:
                separator = " " if node_opts else ""
                heap_flag = f"--max-old-space-size={heap_mb}"
                env["NODE_OPTIONS"] = f"{node_opts}{separator}{heap_flag}"
        return env

    @staticmethod
    def placeholder_key() -> str:
        """A registry key for a process whose identity is not yet known."""
        return f"{PLACEHOLDER_PREFIX}{next(_placeholder_ids)}"

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def spawn(
        self,
        request: InvocationRequest,
        *,
        key: str,
        generated_id: str | None = None,
        streaming: bool | None = None,
    ) -> asyncio.subprocess.Process:
        """Start the agent CLI and register it under *key*.

        Raises:
            SpawnError: The working directory or executable is unusable.
        """
        args = self.build_args(request, generated_id=generated_id, streaming=streaming)
        cwd = self.resolve_working_dir(request)
        cli = self._config.cli_command

        if not Path(cwd).is_dir():
            msg = f"Working directory not found: {cwd}"
            logger.error("%s", msg)
            raise SpawnError(msg)

        logger.info("spawning %s in %s (key=%s)", cli, cwd, key)
        logger.debug("argv: %s", args)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(),
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            msg = (
                f"{cli} not found. Make sure '{cli}' is installed and on your PATH."
            )
            logger.error("%s", msg)
            raise SpawnError(msg) from exc
        except OSError as exc:
            msg = f"Failed to spawn {cli}: {exc}"
            logger.error("%s", msg)
            raise SpawnError(msg) from exc

        self._registry.add(key, proc)
        logger.info("%s started (pid=%d, key=%s)", cli, proc.pid, key)
        return proc

    def rekey(self, old: str, new: str) -> bool:
        """Re-register a live process under its confirmed session id."""
        moved = self._registry.rekey(old, new)
        if moved:
            logger.debug("process %s now registered as %s", old, new)
        return moved

    def release(self, key: str, process: asyncio.subprocess.Process) -> None:
        """Drop the registry entry for an exited process."""
        self._registry.remove(key, process)
        self._cancelled.discard(process)

    def cancel(self, identity: str) -> bool:
        """Send SIGTERM to the process registered under *identity*.

        Removes the entry without waiting for the exit; the invocation's
        own exit handling reports completion.  Returns False when no
        active entry matches.
        """
        proc = self._registry.remove(identity)
        if proc is None:
            return False
        logger.info("cancelling session %s (pid=%s)", identity, proc.pid)
        self._cancelled.add(proc)
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        return True

    async def terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, wait up to the grace period, then SIGKILL."""
        if proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._config.kill_grace_seconds)
        except TimeoutError:
            logger.warning("pid %s ignored SIGTERM; sending SIGKILL", proc.pid)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def was_cancelled(self, process: asyncio.subprocess.Process) -> bool:
        return process in self._cancelled

    def is_active(self, identity: str) -> bool:
        return identity in self._registry

    def active_sessions(self) -> list[str]:
        return self._registry.keys()

    def cli_path(self) -> str | None:
        """Resolved path of the configured CLI executable, if on PATH."""
        return shutil.which(self._config.cli_command)

    def cli_available(self) -> bool:
        return self.cli_path() is not None
