"""
Device Provider Abstraction
===========================

Base class defining the uniform device lifecycle every platform implements:

    DISCONNECTED --connect--> CONNECTED --disconnect--> DISCONNECTED

While connected, power operations, application runs and diagnostics are
self-loops that never change connectivity.

The default implementation drives everything through the provider's command
table (``COMMANDS``), the :class:`CommandBuilder` and the
:class:`ExecutionEngine`. Platforms whose tooling does not fit a command
table (HTTP device clouds, local desktop runs) override individual methods.

Usage:
    from app_runner.device import create_provider

    provider = create_provider("Xbox", target="192.168.1.20")
    await provider.connect()
    result = await provider.run_application("Game.exe", ["-windowed"])
    await provider.disconnect()
"""

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Optional, Sequence, Union

from app_runner.config import get_settings
from app_runner.device.commands import CommandBuilder, CommandDescriptor
from app_runner.device.execution import ExecutionEngine, ProcessRunner, run_process
from app_runner.device.target_detection import Target, TargetDetector
from app_runner.errors import AppRunnerError, UnsupportedPlatformError
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)


class ConnectionState(Enum):
    """State of the provider's device connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclass
class DeviceStatus:
    """
    Snapshot of the device status.

    Attributes:
        platform: Platform name.
        status: Short status word ("Online", ...).
        status_data: Platform-specific key/value details.
        timestamp: When the snapshot was taken.
    """

    platform: str
    status: str
    status_data: dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class RunResult:
    """
    Outcome of running an application on the device.

    Attributes:
        platform: Platform name.
        executable_path: What was launched.
        arguments: Arguments passed to it.
        started_at: Launch time.
        finished_at: When the run was observed to end.
        output: Launch output followed by logs captured during the run.
        exit_code: Exit status, or None if the platform cannot report one.
    """

    platform: str
    executable_path: str
    arguments: list[str]
    started_at: datetime
    finished_at: datetime
    output: list[str]
    exit_code: Optional[int] = None

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class LogResult:
    """
    Device log entries.

    Attributes:
        platform: Platform name.
        log_type: Requested log category ("All", "System", ...).
        logs: Entries, each a dict with at least a ``message`` key.
        count: Number of entries.
        timestamp: When the logs were retrieved.
    """

    platform: str
    log_type: str
    logs: list[dict[str, Any]]
    count: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class DiagnosticsResult:
    """
    Files written by a diagnostics collection.

    Attributes:
        platform: Platform name.
        timestamp: When collection started.
        files: Paths of the files that were successfully written.
    """

    platform: str
    timestamp: datetime
    files: list[Path]


class DeviceProvider:
    """
    Base class for platform providers.

    Subclasses set ``platform`` and ``COMMANDS`` and override whatever the
    command table cannot express.

    Class attributes:
        platform: Canonical platform name (also the resource-name prefix).
        requires_lock: False for platforms with server-side session isolation.
        COMMANDS: Action name -> descriptor (``None`` marks a deliberate no-op).
        TIMEOUTS: Per-action timeout overrides in seconds.
    """

    platform: ClassVar[str] = ""
    requires_lock: ClassVar[bool] = True
    COMMANDS: ClassVar[dict[str, Optional[CommandDescriptor]]] = {}
    TIMEOUTS: ClassVar[dict[str, float]] = {}

    # Seconds between "is it still running" checks during run_application
    PROCESS_POLL_INTERVAL: ClassVar[float] = 2.0

    def __init__(
        self,
        target: Optional[str] = None,
        sdk_root: Optional[Union[str, Path]] = None,
        *,
        default_timeout: Optional[float] = None,
        timeouts: Optional[dict[str, float]] = None,
        max_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None,
        runner: ProcessRunner = run_process,
    ) -> None:
        """
        Initialize a provider.

        Args:
            target: Optional explicit target (IP, serial, device name).
            sdk_root: Directory the command table's tools are relative to.
            default_timeout: Timeout for actions without an override (0 = none).
            timeouts: Per-action overrides merged over ``TIMEOUTS``.
            max_attempts: Attempts for a timed-out command.
            poll_interval: Progress-check interval for supervised commands.
            runner: Process runner, replaceable in tests.
        """
        settings = get_settings().execution

        self.target = target or None
        self.sdk_root = Path(sdk_root) if sdk_root else None
        self.commands = dict(self.COMMANDS)
        self.timeouts = {**self.TIMEOUTS, **(timeouts or {})}
        self.default_timeout = (
            settings.default_timeout if default_timeout is None else default_timeout
        )
        self.max_attempts = settings.max_attempts if max_attempts is None else max_attempts
        self.target_detection_timeout = settings.target_detection_timeout
        self.run_timeout = settings.run_timeout
        self.process_start_grace = settings.process_start_grace

        self.is_rebooting = False
        self.state = ConnectionState.DISCONNECTED
        self.default_target: Optional[Target] = None

        self.builder = CommandBuilder(self.platform, self.commands, self.sdk_root)
        self.engine = ExecutionEngine(self, poll_interval=poll_interval, runner=runner)

    # ── Command plumbing ─────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        """Check if the device is currently connected."""
        return self.state == ConnectionState.CONNECTED

    def timeout_for(self, action: str) -> Optional[float]:
        """Effective timeout for an action; None means run without one."""
        return self.timeouts.get(action) or self.default_timeout or None

    async def invoke(self, action: str, *params: Any, extra_args: Sequence[str] = ()) -> Any:
        """Build and execute a command-table action."""
        built = self.builder.build(action, *params, extra_args=extra_args)
        return await self.engine.invoke(built)

    # ── Connection ───────────────────────────────────────────────

    async def connect(self, target: Optional[str] = None) -> None:
        """
        Connect to the device.

        An explicit target bypasses discovery. Without one, platforms whose
        table declares ``get-default-target`` resolve the default target
        first.
        """
        if target:
            self.target = target

        if not self.target and self.builder.has_action("get-default-target"):
            detector = TargetDetector(self, deadline=self.target_detection_timeout)
            self.default_target = await detector.resolve()
            self.target = self.default_target.identifier

        logger.info("Connecting", platform=self.platform, target=self.target)
        await self.invoke("connect", *self._target_params())
        self.state = ConnectionState.CONNECTED
        logger.info("Connected", platform=self.platform, target=self.target)

    def _target_params(self) -> tuple[str, ...]:
        return (self.target,) if self.target else ()

    async def disconnect(self) -> None:
        """Disconnect from the device. Never raises."""
        try:
            await self.invoke("disconnect")
        except Exception as e:
            logger.warning("Disconnect failed", platform=self.platform, error=str(e))
        finally:
            self.state = ConnectionState.DISCONNECTED
        logger.info("Disconnected", platform=self.platform)

    async def test_connection(self) -> bool:
        """Check whether the device responds. Does not change state."""
        try:
            await self.invoke("getstatus")
            return True
        except AppRunnerError as e:
            logger.warning("Connection test failed", platform=self.platform, error=str(e))
            return False

    # ── Power ────────────────────────────────────────────────────

    async def start_device(self) -> None:
        """Power the device on."""
        logger.info("Starting device", platform=self.platform)
        await self.invoke("poweron")

    async def stop_device(self) -> None:
        """Power the device off."""
        logger.info("Stopping device", platform=self.platform)
        await self.invoke("poweroff")

    async def restart_device(self) -> None:
        """Reboot the device."""
        logger.info("Restarting device", platform=self.platform)
        await self.invoke("reset")

    # ── Status ───────────────────────────────────────────────────

    async def get_device_status(self) -> DeviceStatus:
        """Query the device status."""
        data = await self.invoke("getstatus")
        return DeviceStatus(
            platform=self.platform,
            status="Online",
            status_data=_as_mapping(data),
        )

    # ── Applications ─────────────────────────────────────────────

    async def install_application(self, package_path: str) -> None:
        """Install a package or build on the device."""
        logger.info("Installing application", platform=self.platform, path=package_path)
        await self.invoke("install", package_path)

    async def run_application(
        self,
        executable_path: str,
        arguments: Optional[Sequence[str]] = None,
    ) -> RunResult:
        """
        Launch an application and wait for it to exit.

        Logs captured on the device during the run are appended to the
        result's output.
        """
        arguments = list(arguments or [])
        started_at = datetime.now()
        logger.info(
            "Running application",
            platform=self.platform,
            path=executable_path,
            arguments=arguments,
        )

        launch_output = await self.invoke("launch", executable_path, extra_args=arguments)
        output = _as_lines(launch_output)

        exit_code = await self.wait_for_exit(executable_path)
        output.extend(await self._collect_run_logs())

        result = RunResult(
            platform=self.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=datetime.now(),
            output=output,
            exit_code=exit_code,
        )
        logger.info(
            "Application finished",
            platform=self.platform,
            exit_code=exit_code,
            duration_seconds=round(result.duration_seconds, 1),
        )
        return result

    async def is_process_running(self, executable_path: str) -> bool:
        """Whether the launched application is still running."""
        return bool(await self.invoke("is-running", executable_path))

    async def wait_for_exit(self, executable_path: str) -> Optional[int]:
        """
        Block until the launched application exits or the run timeout passes.

        Platforms without an ``is-running`` action treat launch as
        synchronous. Returns the exit code when the platform can report one.
        """
        if not self.builder.has_action("is-running"):
            return None

        start_deadline = time.monotonic() + self.process_start_grace
        while not await self.is_process_running(executable_path):
            if time.monotonic() >= start_deadline:
                logger.info(
                    "Application was not observed running; assuming it exited quickly",
                    platform=self.platform,
                    path=executable_path,
                )
                return None
            await asyncio.sleep(self.PROCESS_POLL_INTERVAL)

        run_deadline = time.monotonic() + self.run_timeout
        while await self.is_process_running(executable_path):
            if time.monotonic() >= run_deadline:
                logger.warning(
                    "Application still running after run timeout",
                    platform=self.platform,
                    path=executable_path,
                    run_timeout=self.run_timeout,
                )
                return None
            await asyncio.sleep(self.PROCESS_POLL_INTERVAL)
        return None

    async def _collect_run_logs(self) -> list[str]:
        if not self.builder.has_action("getlogs"):
            return []
        try:
            logs = await self.get_device_logs("All")
        except AppRunnerError as e:
            logger.warning("Could not collect logs after run", platform=self.platform, error=str(e))
            return []
        return [str(entry.get("message", "")) for entry in logs.logs]

    # ── Logs, screenshots, files ────────────────────────────────

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 0) -> LogResult:
        """
        Retrieve device logs.

        Args:
            log_type: Log category understood by the platform.
            max_entries: Keep only the most recent N entries (0 = all).
        """
        raw = await self.invoke("getlogs", log_type)
        entries = [
            entry if isinstance(entry, dict) else {"message": str(entry)}
            for entry in _as_lines(raw)
        ]
        if max_entries > 0:
            entries = entries[-max_entries:]
        return LogResult(
            platform=self.platform,
            log_type=log_type,
            logs=entries,
            count=len(entries),
        )

    async def take_screenshot(self, output_path: Union[str, Path]) -> Path:
        """Capture the screen into ``output_path``."""
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        await self.invoke("screenshot", str(path))
        logger.info("Screenshot saved", platform=self.platform, path=str(path))
        return path

    async def copy_device_item(self, source: str, destination: str) -> None:
        """Copy a file or directory from the device to the host."""
        await self.invoke("copy", source, destination)

    async def get_system_info(self) -> dict[str, Any]:
        """Basic system information about the device."""
        return _as_mapping(await self.invoke("getsysteminfo"))

    async def get_running_processes(self) -> list[Any]:
        """Processes currently running on the device."""
        return _as_lines(await self.invoke("getprocesses"))

    # ── Diagnostics ──────────────────────────────────────────────

    async def get_diagnostics(self, output_dir: Union[str, Path]) -> DiagnosticsResult:
        """
        Collect status, screenshot, logs, system info and process list.

        Each item is written to its own timestamped file. A failing item is
        logged and skipped; collection always continues.
        """
        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now()
        prefix = timestamp.strftime("%Y%m%d-%H%M%S")

        items = [
            ("status", self._diagnose_status),
            ("screenshot", self._diagnose_screenshot),
            ("logs", self._diagnose_logs),
            ("system-info", self._diagnose_system_info),
            ("processes", self._diagnose_processes),
        ]

        files: list[Path] = []
        for name, collect in items:
            try:
                path = await collect(directory / f"{prefix}-{self.platform}-{name}")
            except Exception as e:
                logger.warning(
                    "Diagnostics item failed, skipping",
                    platform=self.platform,
                    item=name,
                    error=str(e),
                )
                continue
            if path is not None:
                files.append(path)

        logger.info("Diagnostics collected", platform=self.platform, files=len(files))
        return DiagnosticsResult(platform=self.platform, timestamp=timestamp, files=files)

    async def _diagnose_status(self, stem: Path) -> Path:
        status = await self.get_device_status()
        return _write_json(stem.with_suffix(".json"), asdict(status))

    async def _diagnose_screenshot(self, stem: Path) -> Path:
        return await self.take_screenshot(stem.with_suffix(".png"))

    async def _diagnose_logs(self, stem: Path) -> Path:
        logs = await self.get_device_logs("All")
        return _write_json(stem.with_suffix(".json"), asdict(logs))

    async def _diagnose_system_info(self, stem: Path) -> Path:
        return _write_json(stem.with_suffix(".json"), await self.get_system_info())

    async def _diagnose_processes(self, stem: Path) -> Path:
        return _write_json(stem.with_suffix(".json"), await self.get_running_processes())


def _as_lines(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _as_mapping(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    return {"output": _as_lines(value)}


def _write_json(path: Path, data: Any) -> Path:
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    return path


# ── Provider registry ─────────────────────────────────────────

_ALIASES = {
    "mock": "mock",
    "xbox": "xbox",
    "playstation5": "playstation5",
    "ps5": "playstation5",
    "switch": "switch",
    "androidadb": "androidadb",
    "adb": "androidadb",
    "androidsaucelabs": "androidsaucelabs",
    "iossaucelabs": "iossaucelabs",
    "windows": "windows",
    "macos": "macos",
    "linux": "linux",
}


def get_provider_class(platform: str) -> type[DeviceProvider]:
    """
    Look up the provider class for a platform name (case-insensitive).

    Raises:
        UnsupportedPlatformError: If no provider handles the platform.
    """
    from app_runner.device.adb_device import AndroidAdbProvider
    from app_runner.device.consoles import PlayStation5Provider, SwitchProvider, XboxProvider
    from app_runner.device.desktop import LinuxProvider, MacOSProvider, WindowsProvider
    from app_runner.device.mock import MockProvider
    from app_runner.device.saucelabs import AndroidSauceLabsProvider, IOSSauceLabsProvider

    registry: dict[str, type[DeviceProvider]] = {
        "mock": MockProvider,
        "xbox": XboxProvider,
        "playstation5": PlayStation5Provider,
        "switch": SwitchProvider,
        "androidadb": AndroidAdbProvider,
        "androidsaucelabs": AndroidSauceLabsProvider,
        "iossaucelabs": IOSSauceLabsProvider,
        "windows": WindowsProvider,
        "macos": MacOSProvider,
        "linux": LinuxProvider,
    }

    key = _ALIASES.get(platform.strip().lower())
    if key is None:
        raise UnsupportedPlatformError(platform, sorted(c.platform for c in registry.values()))
    return registry[key]


def create_provider(platform: str, target: Optional[str] = None, **kwargs: Any) -> DeviceProvider:
    """
    Factory function to create provider instances.

    Args:
        platform: Platform name ("Xbox", "PS5", "Switch", "AndroidAdb", ...).
        target: Optional explicit target.
        **kwargs: Additional provider-specific arguments.

    Raises:
        UnsupportedPlatformError: If the platform is not supported.
        ConfigurationError: If the provider's configuration is incomplete.
    """
    provider_cls = get_provider_class(platform)
    return provider_cls(target=target, **kwargs)
