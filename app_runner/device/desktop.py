"""
Desktop Providers
=================

Runs builds directly on the machine executing the job (Windows, macOS,
Linux). There is no remote device: "connecting" only checks that the host
matches the requested platform, applications run as local child processes
and diagnostics come from psutil.
"""

import asyncio
import contextlib
import platform as host
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Optional, Sequence, Union

import psutil
from PIL import ImageGrab

from app_runner.device.provider import (
    ConnectionState,
    DeviceProvider,
    DeviceStatus,
    LogResult,
    RunResult,
)
from app_runner.errors import ConfigurationError, DeviceError, ToolNotFoundError
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)


def host_platform() -> str:
    """``sys.platform`` of the running interpreter."""
    return sys.platform


class DesktopProvider(DeviceProvider):
    """Base class for local desktop execution."""

    platform = "Desktop"
    host_prefix: ClassVar[str] = ""

    COMMANDS = {
        "connect": None,
        "disconnect": None,
        "poweron": None,
        "poweroff": None,
        "reset": None,
        "install": None,
    }

    def __init__(self, target: Optional[str] = None, **kwargs: Any) -> None:
        if not host_platform().startswith(self.host_prefix):
            raise ConfigurationError(
                f"{self.platform} builds can only run on a {self.platform} host "
                f"(this host is {host_platform()})"
            )
        super().__init__(target, **kwargs)

    async def connect(self, target: Optional[str] = None) -> None:
        self.target = target or self.target
        self.state = ConnectionState.CONNECTED
        logger.info("Using local machine", platform=self.platform, host=host.node())

    async def test_connection(self) -> bool:
        return True

    async def get_device_status(self) -> DeviceStatus:
        memory = psutil.virtual_memory()
        # psutil samples CPU load by sleeping for the interval
        cpu_percent = await asyncio.to_thread(psutil.cpu_percent, 0.1)
        return DeviceStatus(
            platform=self.platform,
            status="Online",
            status_data={
                "name": host.node(),
                "os": f"{host.system()} {host.release()}",
                "boot_time": datetime.fromtimestamp(psutil.boot_time()).isoformat(),
                "cpu_percent": cpu_percent,
                "memory_percent": memory.percent,
            },
        )

    async def run_application(
        self,
        executable_path: str,
        arguments: Optional[Sequence[str]] = None,
    ) -> RunResult:
        arguments = list(arguments or [])
        started_at = datetime.now()
        logger.info("Running application", platform=self.platform, path=executable_path, arguments=arguments)

        try:
            proc = await asyncio.create_subprocess_exec(
                executable_path,
                *arguments,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(executable_path, searched=str(Path(executable_path).parent)) from e

        exit_code: Optional[int]
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.run_timeout)
            exit_code = proc.returncode
        except asyncio.TimeoutError:
            logger.warning(
                "Application still running after run timeout, killing it",
                platform=self.platform,
                path=executable_path,
                run_timeout=self.run_timeout,
            )
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            stdout, _ = await proc.communicate()
            exit_code = None

        output = (stdout or b"").decode("utf-8", errors="replace").splitlines()
        return RunResult(
            platform=self.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=datetime.now(),
            output=output,
            exit_code=exit_code,
        )

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 0) -> LogResult:
        # Desktop builds write their own log files; there is no device log
        return LogResult(platform=self.platform, log_type=log_type, logs=[], count=0)

    async def take_screenshot(self, output_path: Union[str, Path]) -> Path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            image = await asyncio.to_thread(ImageGrab.grab)
        except OSError as e:
            raise DeviceError(f"Screen capture is not available on this host: {e}") from e
        image.save(path, format="PNG")
        logger.info("Screenshot saved", platform=self.platform, path=str(path))
        return path

    async def copy_device_item(self, source: str, destination: str) -> None:
        src = Path(source)
        if src.is_dir():
            await asyncio.to_thread(shutil.copytree, src, destination, dirs_exist_ok=True)
        else:
            Path(destination).parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, src, destination)

    async def get_system_info(self) -> dict[str, Any]:
        uname = host.uname()
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage(str(Path.cwd().anchor or "/"))
        return {
            "hostname": uname.node,
            "system": uname.system,
            "release": uname.release,
            "version": uname.version,
            "machine": uname.machine,
            "cpu_count": psutil.cpu_count(),
            "memory_total_mb": memory.total // (1024 * 1024),
            "memory_available_mb": memory.available // (1024 * 1024),
            "disk_free_gb": round(disk.free / (1024 ** 3), 1),
        }

    async def get_running_processes(self) -> list[Any]:
        processes = []
        for proc in psutil.process_iter(["pid", "name", "username", "memory_info"]):
            info = proc.info
            memory = info.get("memory_info")
            processes.append(
                {
                    "pid": info["pid"],
                    "name": info.get("name") or "",
                    "user": info.get("username") or "",
                    "rss_mb": round(memory.rss / (1024 * 1024), 1) if memory else None,
                }
            )
        return processes


class WindowsProvider(DesktopProvider):
    platform = "Windows"
    host_prefix = "win32"


class MacOSProvider(DesktopProvider):
    platform = "MacOS"
    host_prefix = "darwin"


class LinuxProvider(DesktopProvider):
    platform = "Linux"
    host_prefix = "linux"
