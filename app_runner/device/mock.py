"""
Mock Provider
=============

In-memory provider with no device behind it. Used for dry runs of CI
pipelines and throughout the test suite.

Every operation succeeds: applications "exit" with code 0, logs are
synthesised with timestamps one second apart and screenshots are rendered
placeholder PNGs.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from app_runner.device.provider import (
    ConnectionState,
    DeviceProvider,
    DeviceStatus,
    LogResult,
    RunResult,
)
from app_runner.device.screenshot import render_placeholder
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

_LOG_LEVELS = ("INFO", "DEBUG", "WARNING", "INFO", "ERROR")

# Entries synthesised when no maximum is requested
DEFAULT_LOG_ENTRIES = 10


class MockProvider(DeviceProvider):
    """Provider simulating a device entirely in memory."""

    platform = "Mock"

    def __init__(self, target: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(target, **kwargs)
        self.power_state = "On"
        self.installed: list[str] = []
        self.history: list[str] = []

    async def connect(self, target: Optional[str] = None) -> None:
        if target:
            self.target = target
        self.history.append("connect")
        self.state = ConnectionState.CONNECTED
        logger.info("Connected", platform=self.platform, target=self.target or "Default")

    async def disconnect(self) -> None:
        self.history.append("disconnect")
        self.state = ConnectionState.DISCONNECTED
        logger.info("Disconnected", platform=self.platform)

    async def test_connection(self) -> bool:
        return self.is_connected

    async def start_device(self) -> None:
        self.history.append("poweron")
        self.power_state = "On"

    async def stop_device(self) -> None:
        self.history.append("poweroff")
        self.power_state = "Off"

    async def restart_device(self) -> None:
        self.history.append("reset")
        self.power_state = "On"

    async def get_device_status(self) -> DeviceStatus:
        return DeviceStatus(
            platform=self.platform,
            status="Online" if self.is_connected else "Offline",
            status_data={
                "name": self.target or "MockDevice",
                "model": "Mock Device",
                "power_state": self.power_state,
                "installed": list(self.installed),
            },
        )

    async def install_application(self, package_path: str) -> None:
        self.history.append("install")
        self.installed.append(package_path)

    async def run_application(
        self,
        executable_path: str,
        arguments: Optional[Sequence[str]] = None,
    ) -> RunResult:
        arguments = list(arguments or [])
        self.history.append("launch")
        started_at = datetime.now()
        output = [
            f"Launching {executable_path}",
            f"Arguments: {' '.join(arguments) if arguments else '(none)'}",
            "Application exited with code 0",
        ]
        return RunResult(
            platform=self.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=datetime.now(),
            output=output,
            exit_code=0,
        )

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 0) -> LogResult:
        count = max_entries if max_entries > 0 else DEFAULT_LOG_ENTRIES
        first = datetime.now().replace(microsecond=0) - timedelta(seconds=count)
        logs = [
            {
                "timestamp": first + timedelta(seconds=i),
                "level": _LOG_LEVELS[i % len(_LOG_LEVELS)],
                "source": log_type,
                "message": f"Mock {log_type} log entry {i + 1}",
            }
            for i in range(count)
        ]
        return LogResult(platform=self.platform, log_type=log_type, logs=logs, count=len(logs))

    async def take_screenshot(self, output_path: Union[str, Path]) -> Path:
        self.history.append("screenshot")
        path = render_placeholder(
            output_path,
            f"{self.platform} {self.target or 'Default'} {datetime.now():%Y-%m-%d %H:%M:%S}",
        )
        logger.info("Screenshot saved", platform=self.platform, path=str(path))
        return path

    async def copy_device_item(self, source: str, destination: str) -> None:
        self.history.append("copy")
        dest = Path(destination)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(f"Mock copy of {source}\n", encoding="utf-8")

    async def get_system_info(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "os_version": "1.0",
            "cpu_cores": 8,
            "memory_mb": 16384,
        }

    async def get_running_processes(self) -> list[Any]:
        return [
            {"pid": 1, "name": "mock-system"},
            {"pid": 42, "name": "mock-shell"},
        ]
