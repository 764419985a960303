"""
Command Execution
=================

Runs built commands for a provider, enforcing per-action timeouts.

Without a timeout a command runs inline. With one, it runs as a supervised
``asyncio`` task that the caller polls; a timed-out attempt is cancelled
(killing the child process), the device is restarted and the command is
retried from scratch until the attempt budget is spent.

Timeouts are reported as an explicit :class:`ExecutionStatus` so the retry
loop never has to inspect error messages.
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol

from app_runner.config import get_settings
from app_runner.device.commands import BuiltCommand
from app_runner.errors import (
    AppRunnerError,
    CommandFailedError,
    CommandTimeoutError,
    OutputTransformError,
    ToolNotFoundError,
)
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

# (exit_code, output_lines)
ProcessResult = tuple[int, list[str]]
ProcessRunner = Callable[[list[str]], Awaitable[ProcessResult]]


class ExecutionStatus(Enum):
    """How a supervised attempt ended."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


@dataclass
class ExecutionOutcome:
    """
    Result of one supervised attempt.

    Attributes:
        status: COMPLETED or TIMED_OUT.
        output: Captured output lines (empty when timed out).
        exit_code: Process exit status, None when timed out.
        elapsed: Seconds the attempt took.
    """

    status: ExecutionStatus
    output: list[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    elapsed: float = 0.0


class RestartableDevice(Protocol):
    """What the engine needs from its provider."""

    platform: str
    max_attempts: int
    is_rebooting: bool

    def timeout_for(self, action: str) -> Optional[float]: ...

    async def restart_device(self) -> None: ...


async def run_process(argv: list[str]) -> ProcessResult:
    """
    Run a process to completion, capturing stdout and stderr together.

    Cancelling the awaiting task kills the process.

    Raises:
        ToolNotFoundError: The executable does not exist.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(argv[0]) from e

    try:
        stdout, _ = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
        raise

    text = (stdout or b"").decode("utf-8", errors="replace")
    return proc.returncode or 0, text.splitlines()


class ExecutionEngine:
    """
    Executes a provider's built commands with timeout and retry.

    Args:
        device: The owning provider (timeouts, attempt budget, restart).
        poll_interval: Seconds between progress checks on a supervised task.
        runner: Coroutine running an argv, returning (exit_code, lines).
    """

    def __init__(
        self,
        device: RestartableDevice,
        poll_interval: Optional[float] = None,
        runner: ProcessRunner = run_process,
    ) -> None:
        self.device = device
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else get_settings().execution.command_poll_interval
        )
        self._runner = runner

    async def invoke(self, built: BuiltCommand) -> Any:
        """
        Execute a built command and return its (transformed) output.

        Returns:
            None for no-op commands, the transform's result when the command
            has one, otherwise the list of output lines.

        Raises:
            CommandFailedError: Non-zero exit status (not retried).
            CommandTimeoutError: Every attempt timed out.
            OutputTransformError: The output transform raised.
        """
        if built.is_noop:
            return None

        timeout = self.device.timeout_for(built.action)
        logger.debug(
            "Invoking command",
            platform=self.device.platform,
            action=built.action,
            cmd=str(built),
            timeout=timeout,
        )

        if not timeout or self.device.is_rebooting:
            exit_code, output = await self._runner(built.argv)
            self._check_exit(built, exit_code, output)
        else:
            output = await self._invoke_with_retry(built, timeout)

        return self._apply_transform(built, output)

    async def _invoke_with_retry(self, built: BuiltCommand, timeout: float) -> list[str]:
        max_attempts = max(1, self.device.max_attempts)
        total_elapsed = 0.0

        for attempt in range(1, max_attempts + 1):
            outcome = await self._run_supervised(built, timeout)
            total_elapsed += outcome.elapsed

            if outcome.status is ExecutionStatus.COMPLETED:
                self._check_exit(built, outcome.exit_code, outcome.output)
                return outcome.output

            logger.warning(
                "Command timed out",
                platform=self.device.platform,
                action=built.action,
                timeout_seconds=timeout,
                attempt=attempt,
                max_attempts=max_attempts,
            )
            if attempt < max_attempts:
                await self._restart_device(built.action)

        raise CommandTimeoutError(built.action, total_elapsed, max_attempts)

    async def _run_supervised(self, built: BuiltCommand, timeout: float) -> ExecutionOutcome:
        start = time.monotonic()
        task = asyncio.create_task(self._runner(built.argv))

        try:
            while True:
                remaining = timeout - (time.monotonic() - start)
                if remaining <= 0:
                    break

                done, _ = await asyncio.wait({task}, timeout=min(self.poll_interval, remaining))
                elapsed = time.monotonic() - start
                if done:
                    exit_code, output = task.result()
                    return ExecutionOutcome(
                        status=ExecutionStatus.COMPLETED,
                        output=output,
                        exit_code=exit_code,
                        elapsed=elapsed,
                    )

                if elapsed < timeout:
                    logger.info(
                        "Waiting for command to finish",
                        platform=self.device.platform,
                        action=built.action,
                        elapsed_seconds=round(elapsed),
                        remaining_seconds=round(timeout - elapsed),
                    )
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        return ExecutionOutcome(
            status=ExecutionStatus.TIMED_OUT,
            elapsed=time.monotonic() - start,
        )

    async def _restart_device(self, action: str) -> None:
        logger.info(
            "Restarting device before retrying",
            platform=self.device.platform,
            action=action,
        )
        self.device.is_rebooting = True
        try:
            await self.device.restart_device()
        except AppRunnerError as e:
            logger.error(
                "Device restart failed, retrying anyway",
                platform=self.device.platform,
                action=action,
                error=str(e),
            )
        finally:
            self.device.is_rebooting = False

    @staticmethod
    def _check_exit(built: BuiltCommand, exit_code: Optional[int], output: list[str]) -> None:
        if exit_code:
            raise CommandFailedError(built.action, exit_code, output)

    @staticmethod
    def _apply_transform(built: BuiltCommand, output: list[str]) -> Any:
        if built.transform is None:
            return output
        try:
            return built.transform(output)
        except Exception as e:
            raise OutputTransformError(built.action, output, e) from e
