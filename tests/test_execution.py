"""
Tests for Command Execution
===========================

Tests for:
- Inline execution and exit status handling
- Supervised execution with timeout, restart and retry
- Output transforms
"""

import asyncio

import pytest
from structlog.testing import capture_logs

from app_runner.device.commands import BuiltCommand
from app_runner.device.execution import ExecutionEngine, run_process
from app_runner.errors import (
    CommandFailedError,
    CommandTimeoutError,
    OutputTransformError,
    ToolNotFoundError,
)


class FakeDevice:
    """Minimal provider stand-in for the engine."""

    platform = "Fake"

    def __init__(self, timeout=None, max_attempts=3):
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.is_rebooting = False
        self.restarts = 0
        self.rebooting_during_restart = []

    def timeout_for(self, action):
        return self.timeout

    async def restart_device(self):
        self.restarts += 1
        self.rebooting_during_restart.append(self.is_rebooting)


def _built(action="launch", transform=None):
    return BuiltCommand(action=action, argv=["tool", action], transform=transform)


async def _ok(argv):
    return 0, ["line 1", "line 2"]


async def _hang(argv):
    await asyncio.sleep(3600)
    return 0, []


class TestInline:
    @pytest.mark.asyncio
    async def test_returns_output_lines(self):
        engine = ExecutionEngine(FakeDevice(), runner=_ok)
        assert await engine.invoke(_built()) == ["line 1", "line 2"]

    @pytest.mark.asyncio
    async def test_noop_runs_nothing(self):
        calls = []

        async def runner(argv):
            calls.append(argv)
            return 0, []

        engine = ExecutionEngine(FakeDevice(), runner=runner)
        assert await engine.invoke(BuiltCommand.noop("poweron")) is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_fatal_with_output(self):
        async def runner(argv):
            return 2, ["error: devkit unreachable"]

        engine = ExecutionEngine(FakeDevice(), runner=runner)
        with pytest.raises(CommandFailedError) as exc:
            await engine.invoke(_built("connect"))
        assert exc.value.action == "connect"
        assert exc.value.exit_code == 2
        assert "devkit unreachable" in str(exc.value)

    @pytest.mark.asyncio
    async def test_rebooting_bypasses_timeout(self):
        device = FakeDevice(timeout=0.01)
        device.is_rebooting = True

        async def slow(argv):
            await asyncio.sleep(0.05)
            return 0, ["done"]

        engine = ExecutionEngine(device, poll_interval=0.01, runner=slow)
        assert await engine.invoke(_built("reset")) == ["done"]
        assert device.restarts == 0


class TestSupervised:
    @pytest.mark.asyncio
    async def test_completes_within_timeout(self):
        engine = ExecutionEngine(FakeDevice(timeout=5), poll_interval=0.01, runner=_ok)
        assert await engine.invoke(_built()) == ["line 1", "line 2"]

    @pytest.mark.asyncio
    async def test_progress_logged_while_waiting(self):
        async def slowish(argv):
            await asyncio.sleep(0.1)
            return 0, []

        engine = ExecutionEngine(FakeDevice(timeout=5), poll_interval=0.02, runner=slowish)
        with capture_logs() as logs:
            await engine.invoke(_built("install"))
        progress = [entry for entry in logs if entry["event"] == "Waiting for command to finish"]
        assert progress
        assert all(entry["action"] == "install" for entry in progress)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_attempts", [1, 2, 3])
    async def test_retry_then_fail(self, max_attempts):
        device = FakeDevice(timeout=0.05, max_attempts=max_attempts)
        engine = ExecutionEngine(device, poll_interval=0.01, runner=_hang)

        with pytest.raises(CommandTimeoutError) as exc:
            await engine.invoke(_built("install"))

        assert device.restarts == max_attempts - 1
        assert all(device.rebooting_during_restart)
        assert not device.is_rebooting
        assert exc.value.action == "install"
        assert exc.value.attempts == max_attempts

    @pytest.mark.asyncio
    async def test_succeeds_after_restart(self):
        attempts = []

        async def flaky(argv):
            attempts.append(argv)
            if len(attempts) == 1:
                await asyncio.sleep(3600)
            return 0, ["installed"]

        device = FakeDevice(timeout=0.05, max_attempts=3)
        engine = ExecutionEngine(device, poll_interval=0.01, runner=flaky)
        assert await engine.invoke(_built("install")) == ["installed"]
        assert device.restarts == 1

    @pytest.mark.asyncio
    async def test_failure_is_not_retried(self):
        calls = []

        async def failing(argv):
            calls.append(argv)
            return 1, ["bad package"]

        device = FakeDevice(timeout=5, max_attempts=3)
        engine = ExecutionEngine(device, poll_interval=0.01, runner=failing)
        with pytest.raises(CommandFailedError):
            await engine.invoke(_built("install"))
        assert len(calls) == 1
        assert device.restarts == 0

    @pytest.mark.asyncio
    async def test_timed_out_task_is_cancelled(self):
        cancelled = asyncio.Event()

        async def hang_until_cancelled(argv):
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return 0, []

        engine = ExecutionEngine(FakeDevice(timeout=0.05, max_attempts=1), poll_interval=0.01, runner=hang_until_cancelled)
        with pytest.raises(CommandTimeoutError):
            await engine.invoke(_built())
        assert cancelled.is_set()


class TestTransforms:
    @pytest.mark.asyncio
    async def test_transform_applied_after_execution(self):
        engine = ExecutionEngine(FakeDevice(), runner=_ok)
        assert await engine.invoke(_built(transform=len)) == 2

    @pytest.mark.asyncio
    async def test_transform_failure_keeps_raw_output(self):
        def explode(lines):
            raise ValueError("unexpected format")

        engine = ExecutionEngine(FakeDevice(), runner=_ok)
        with pytest.raises(OutputTransformError) as exc:
            await engine.invoke(_built("getstatus", transform=explode))
        assert exc.value.output == ["line 1", "line 2"]
        assert isinstance(exc.value.cause, ValueError)
        assert "unexpected format" in str(exc.value)
        assert "line 2" in str(exc.value)


class TestRunProcess:
    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path):
        with pytest.raises(ToolNotFoundError):
            await run_process([str(tmp_path / "does-not-exist")])
