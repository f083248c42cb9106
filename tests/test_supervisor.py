"""Tests for the process registry and supervisor."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cliwire.config.models import AdapterConfig
from cliwire.constants import OUTPUT_FORMAT_ENV, PLACEHOLDER_PREFIX
from cliwire.events import InvocationRequest
from cliwire.process.registry import ProcessRegistry
from cliwire.process.supervisor import ProcessSupervisor, SpawnError

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _make_proc(pid: int = 1234) -> MagicMock:
    proc = MagicMock()
    proc.pid = pid
    proc.returncode = None
    proc.terminate = MagicMock()
    proc.kill = MagicMock()
    proc.wait = AsyncMock(return_value=0)
    return proc


def _request(**kwargs: object) -> InvocationRequest:
    return InvocationRequest(**kwargs)  # type: ignore[arg-type]


# ------------------------------------------------------------------ #
# ProcessRegistry
# ------------------------------------------------------------------ #


class TestRegistry:
    def test_add_and_get(self) -> None:
        reg = ProcessRegistry()
        proc = _make_proc()
        reg.add("temp-1", proc)
        assert reg.get("temp-1") is proc
        assert "temp-1" in reg
        assert len(reg) == 1

    def test_rekey_keeps_old_key_as_alias(self) -> None:
        reg = ProcessRegistry()
        proc = _make_proc()
        reg.add("temp-1", proc)
        assert reg.rekey("temp-1", "abc123") is True
        assert reg.keys() == ["abc123"]
        assert reg.get("abc123") is proc
        assert reg.get("temp-1") is proc

    def test_chained_rekey(self) -> None:
        reg = ProcessRegistry()
        proc = _make_proc()
        reg.add("temp-1", proc)
        reg.rekey("temp-1", "gen")
        reg.rekey("gen", "real")
        assert reg.resolve("temp-1") == "real"
        assert reg.resolve("gen") == "real"

    def test_rekey_unknown_key(self) -> None:
        assert ProcessRegistry().rekey("nope", "x") is False

    def test_remove_drops_aliases(self) -> None:
        reg = ProcessRegistry()
        proc = _make_proc()
        reg.add("temp-1", proc)
        reg.rekey("temp-1", "abc")
        assert reg.remove("temp-1") is proc
        assert "abc" not in reg
        assert "temp-1" not in reg
        assert reg.remove("abc") is None

    def test_remove_checks_identity(self) -> None:
        reg = ProcessRegistry()
        old, new = _make_proc(1), _make_proc(2)
        reg.add("abc", new)
        assert reg.remove("abc", old) is None
        assert reg.get("abc") is new
        assert reg.remove("abc", new) is new


# ------------------------------------------------------------------ #
# Argument vector and environment
# ------------------------------------------------------------------ #


class TestBuildArgs:
    def test_new_streaming_session(self) -> None:
        sup = ProcessSupervisor()
        args = sup.build_args(
            _request(prompt="hello", model="sonnet", streaming=True),
            generated_id="gen-1",
        )
        assert args == [
            "claude",
            "-p",
            "hello",
            "--session-id",
            "gen-1",
            "--model",
            "sonnet",
            "--output-format",
            "stream-json",
            "--verbose",
        ]

    def test_resume_never_passes_model(self) -> None:
        sup = ProcessSupervisor()
        args = sup.build_args(
            _request(prompt="hi", prior_session_id="abc123", model="opus"),
            generated_id="ignored",
        )
        assert args[args.index("--resume") + 1] == "abc123"
        assert "--model" not in args
        assert "--session-id" not in args

    def test_prompt_defaults_to_batch_mode(self) -> None:
        sup = ProcessSupervisor()
        assert sup.is_streaming(_request(prompt="what is 6*7")) is False
        args = sup.build_args(_request(prompt="what is 6*7"))
        assert args[-2:] == ["--output-format", "json"]
        assert "--verbose" not in args

    def test_request_can_force_streaming(self) -> None:
        sup = ProcessSupervisor(AdapterConfig(streaming_default=False))
        request = _request(prompt="hi", streaming=True)
        assert sup.is_streaming(request) is True
        assert "stream-json" in sup.build_args(request)

    def test_request_can_force_batch(self) -> None:
        sup = ProcessSupervisor()
        assert sup.is_streaming(_request(prompt="hi", streaming=False)) is False

    def test_no_prompt_is_streaming(self) -> None:
        sup = ProcessSupervisor(AdapterConfig(streaming_default=False))
        request = _request(streaming=False)
        assert sup.is_streaming(request) is True
        args = sup.build_args(request)
        assert "-p" not in args
        assert "stream-json" in args

    def test_whitespace_prompt_counts_as_absent(self) -> None:
        sup = ProcessSupervisor()
        assert "-p" not in sup.build_args(_request(prompt="   "))

    def test_permissions_and_extra_args(self) -> None:
        sup = ProcessSupervisor(
            AdapterConfig(
                cli_command="/opt/bin/agent",
                skip_permissions=True,
                extra_args=["--max-turns", "3"],
            )
        )
        args = sup.build_args(_request(prompt="x"))
        assert args[0] == "/opt/bin/agent"
        assert args[-3:] == ["--dangerously-skip-permissions", "--max-turns", "3"]


class TestWorkingDirectory:
    def test_explicit_wins(self) -> None:
        request = _request(working_directory="/a", project_path="/b")
        assert ProcessSupervisor.resolve_working_dir(request) == "/a"

    def test_project_path_next(self) -> None:
        request = _request(project_path="/b")
        assert ProcessSupervisor.resolve_working_dir(request) == "/b"

    def test_falls_back_to_cwd(self) -> None:
        assert ProcessSupervisor.resolve_working_dir(_request()) == os.getcwd()


class TestBuildEnv:
    def test_output_format_override(self) -> None:
        env = ProcessSupervisor().build_env()
        assert env[OUTPUT_FORMAT_ENV] == "stream-json"

    def test_strips_configured_keys(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("KEEP_ME", "1")
        sup = ProcessSupervisor(AdapterConfig(strip_env_keys=["ANTHROPIC_API_KEY"]))
        env = sup.build_env()
        assert "ANTHROPIC_API_KEY" not in env
        assert env["KEEP_ME"] == "1"

    def test_node_heap_cap_appended(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NODE_OPTIONS", "--enable-source-maps")
        env = ProcessSupervisor(AdapterConfig(node_heap_limit_mb=1024)).build_env()
        assert env["NODE_OPTIONS"] == "--enable-source-maps --max-old-space-size=1024"

    def test_existing_heap_cap_preserved(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NODE_OPTIONS", "--max-old-space-size=512")
        env = ProcessSupervisor(AdapterConfig(node_heap_limit_mb=1024)).build_env()
        assert env["NODE_OPTIONS"] == "--max-old-space-size=512"

    def test_heap_cap_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NODE_OPTIONS", raising=False)
        env = ProcessSupervisor(AdapterConfig(node_heap_limit_mb=None)).build_env()
        assert "NODE_OPTIONS" not in env

    def test_node_options_untouched_by_default(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("NODE_OPTIONS", "--enable-source-maps")
        env = ProcessSupervisor().build_env()
        assert env["NODE_OPTIONS"] == "--enable-source-maps"


# ------------------------------------------------------------------ #
# Spawn, cancel, terminate
# ------------------------------------------------------------------ #


class TestSpawn:
    async def test_registers_under_key(self, tmp_path: Path) -> None:
        sup = ProcessSupervisor()
        proc = _make_proc()
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            handle = await sup.spawn(
                _request(prompt="hi", working_directory=str(tmp_path)),
                key="gen-1",
                generated_id="gen-1",
            )
        assert handle is proc
        assert sup.is_active("gen-1")
        assert sup.active_sessions() == ["gen-1"]
        kwargs = mock_exec.call_args.kwargs
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["start_new_session"] is True
        assert kwargs["stdin"] == asyncio.subprocess.DEVNULL

    async def test_missing_binary(self, tmp_path: Path) -> None:
        sup = ProcessSupervisor()
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError):
            with pytest.raises(SpawnError, match="not found"):
                await sup.spawn(
                    _request(working_directory=str(tmp_path)), key="temp-1"
                )
        assert sup.active_sessions() == []

    async def test_permission_denied(self, tmp_path: Path) -> None:
        sup = ProcessSupervisor()
        with patch(
            "asyncio.create_subprocess_exec", side_effect=PermissionError("denied")
        ):
            with pytest.raises(SpawnError, match="Failed to spawn"):
                await sup.spawn(
                    _request(working_directory=str(tmp_path)), key="temp-1"
                )

    async def test_missing_working_directory(self, tmp_path: Path) -> None:
        sup = ProcessSupervisor()
        with patch("asyncio.create_subprocess_exec") as mock_exec:
            with pytest.raises(SpawnError, match="Working directory not found"):
                await sup.spawn(
                    _request(working_directory=str(tmp_path / "gone")), key="k"
                )
        mock_exec.assert_not_called()

    def test_placeholder_keys_are_unique(self) -> None:
        first = ProcessSupervisor.placeholder_key()
        second = ProcessSupervisor.placeholder_key()
        assert first.startswith(PLACEHOLDER_PREFIX)
        assert first != second


class TestCancel:
    def test_unknown_identity(self) -> None:
        sup = ProcessSupervisor()
        assert sup.cancel("nobody") is False

    def test_cancel_terminates_and_removes(self) -> None:
        sup = ProcessSupervisor()
        proc = _make_proc()
        sup.registry.add("abc", proc)
        assert sup.cancel("abc") is True
        proc.terminate.assert_called_once()
        assert not sup.is_active("abc")

    def test_second_cancel_is_noop(self) -> None:
        sup = ProcessSupervisor()
        proc = _make_proc()
        sup.registry.add("abc", proc)
        sup.cancel("abc")
        assert sup.cancel("abc") is False
        proc.terminate.assert_called_once()

    def test_cancel_is_remembered_until_release(self) -> None:
        sup = ProcessSupervisor()
        proc = _make_proc()
        other = _make_proc(pid=99)
        sup.registry.add("abc", proc)
        sup.registry.add("def", other)
        sup.cancel("abc")
        assert sup.was_cancelled(proc) is True
        assert sup.was_cancelled(other) is False
        sup.release("abc", proc)
        assert sup.was_cancelled(proc) is False

    def test_cancel_by_either_key_after_rekey(self) -> None:
        sup = ProcessSupervisor()
        proc = _make_proc()
        sup.registry.add("temp-1", proc)
        sup.rekey("temp-1", "abc123")
        assert sup.cancel("temp-1") is True
        assert sup.cancel("abc123") is False
        proc.terminate.assert_called_once()

    def test_already_exited_process(self) -> None:
        sup = ProcessSupervisor()
        proc = _make_proc()
        proc.terminate.side_effect = ProcessLookupError
        sup.registry.add("abc", proc)
        assert sup.cancel("abc") is True


class TestTerminate:
    async def test_graceful(self) -> None:
        sup = ProcessSupervisor()
        proc = _make_proc()
        await sup.terminate(proc)
        proc.terminate.assert_called_once()
        proc.kill.assert_not_called()

    async def test_escalates_to_kill(self) -> None:
        sup = ProcessSupervisor(AdapterConfig(kill_grace_seconds=0.01))
        proc = _make_proc()
        killed = asyncio.Event()

        async def _wait() -> int:
            await killed.wait()
            return -9

        proc.wait = AsyncMock(side_effect=_wait)
        proc.kill = MagicMock(side_effect=killed.set)
        await sup.terminate(proc)
        proc.kill.assert_called_once()

    async def test_exited_process_untouched(self) -> None:
        proc = _make_proc()
        proc.returncode = 0
        await ProcessSupervisor().terminate(proc)
        proc.terminate.assert_not_called()


class TestCliAvailable:
    def test_found(self) -> None:
        with patch("shutil.which", return_value="/usr/bin/claude"):
            assert ProcessSupervisor().cli_available() is True

    def test_missing(self) -> None:
        with patch("shutil.which", return_value=None):
            assert ProcessSupervisor().cli_available() is False

    def test_cli_path_is_resolved_path(self) -> None:
        with patch("shutil.which", return_value="/opt/bin/claude") as which:
            assert ProcessSupervisor().cli_path() == "/opt/bin/claude"
        which.assert_called_once_with("claude")
