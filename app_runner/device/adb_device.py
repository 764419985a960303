"""
ADB Device Provider
===================

Android devices and emulators reachable through ADB (Android Debug Bridge).

Applications are launched by component name (``package/activity``); the run
is observed in the process list until the package's process disappears and the
logcat buffer is collected afterwards.

Prerequisites:
    1. Android SDK platform-tools installed (adb)
    2. Emulator running OR physical device connected via USB/TCP
    3. adb on PATH or ANDROID_HOME set

Usage:
    from app_runner.device import create_provider

    device = create_provider("AndroidAdb", target="emulator-5554")
    await device.connect()
    result = await device.run_application("com.example.game/.MainActivity")
"""

import re
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from app_runner.config import get_settings
from app_runner.device.commands import cmd
from app_runner.device.provider import (
    ConnectionState,
    DeviceProvider,
    DeviceStatus,
    LogResult,
    RunResult,
)
from app_runner.device.screenshot import verify_image
from app_runner.errors import DeviceError, NoTargetsFoundError, TargetAmbiguityError
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

# Where screenshots are staged on the device before pulling them
_REMOTE_SCREENSHOT = "/sdcard/app-runner-screenshot.png"

_GETPROP_LINE = re.compile(r"^\[(?P<key>[^\]]+)\]:\s*\[(?P<value>.*)\]$")

# Log type -> logcat buffer
_LOGCAT_BUFFERS = {
    "all": "all",
    "main": "main",
    "system": "system",
    "crash": "crash",
    "events": "events",
}


def parse_devices(lines: list[str]) -> list[dict[str, str]]:
    """
    Parse ``adb devices -l`` output into ready devices.

    Devices in "offline" or "unauthorized" state are skipped.
    """
    devices = []
    for line in lines:
        parts = line.split()
        if len(parts) < 2 or parts[1] != "device":
            continue
        model = ""
        for part in parts[2:]:
            if part.startswith("model:"):
                model = part.split(":", 1)[1]
        devices.append({"serial": parts[0], "model": model})
    return devices


def parse_getprop(lines: list[str]) -> dict[str, str]:
    """Parse ``getprop`` output (``[key]: [value]`` lines) into a dict."""
    props = {}
    for line in lines:
        match = _GETPROP_LINE.match(line.strip())
        if match:
            props[match.group("key")] = match.group("value")
    return props


def _find_adb_root() -> Optional[Path]:
    """platform-tools directory from ANDROID_HOME, if configured and present."""
    android_home = get_settings().sdk.android_home
    if android_home:
        platform_tools = Path(android_home) / "platform-tools"
        if platform_tools.is_dir():
            return platform_tools
    return None


class AndroidAdbProvider(DeviceProvider):
    """
    Android device control via ADB.

    The target is the device serial (``adb devices``). Every command except
    device listing is bound to that serial, which is always the first
    template parameter.
    """

    platform = "AndroidAdb"

    COMMANDS = {
        "list-devices": cmd("adb", "devices", "-l", transform=parse_devices),
        "connect": cmd("adb", "-s", "{0}", "get-state"),
        "disconnect": None,
        "poweron": None,
        "poweroff": cmd("adb", "-s", "{0}", "shell", "reboot", "-p"),
        "reset": cmd("adb", "-s", "{0}", "reboot"),
        "wait-boot": cmd("adb", "-s", "{0}", "wait-for-device", "shell", "getprop", "sys.boot_completed"),
        "getstatus": cmd("adb", "-s", "{0}", "shell", "getprop", transform=parse_getprop),
        "install": cmd("adb", "-s", "{0}", "install", "-r", "{1}"),
        "launch": cmd("adb", "-s", "{0}", "shell", "am", "start", "-W", "-n", "{1}"),
        "is-running": cmd("adb", "-s", "{0}", "shell", "ps", "-A", "-o", "NAME"),
        "clear-logs": cmd("adb", "-s", "{0}", "logcat", "-c"),
        "getlogs": cmd("adb", "-s", "{0}", "logcat", "-d", "-b", "{1}"),
        "screenshot": cmd("adb", "-s", "{0}", "shell", "screencap", "-p", _REMOTE_SCREENSHOT),
        "remove-remote": cmd("adb", "-s", "{0}", "shell", "rm", "-f", "{1}"),
        "copy": cmd("adb", "-s", "{0}", "pull", "{1}", "{2}"),
        "getprocesses": cmd("adb", "-s", "{0}", "shell", "ps", "-A"),
    }

    TIMEOUTS = {
        "install": 600.0,
        "wait-boot": 300.0,
    }

    _UNBOUND_ACTIONS = frozenset({"list-devices"})

    def __init__(self, target: Optional[str] = None, sdk_root: Optional[Union[str, Path]] = None, **kwargs: Any) -> None:
        super().__init__(target, sdk_root or _find_adb_root(), **kwargs)

    async def invoke(self, action: str, *params: Any, **kwargs: Any) -> Any:
        if action in self._UNBOUND_ACTIONS or not self.builder.has_action(action):
            return await super().invoke(action, *params, **kwargs)
        if not self.target:
            raise DeviceError(f"No Android device selected for '{action}'; connect first")
        return await super().invoke(action, self.target, *params, **kwargs)

    async def connect(self, target: Optional[str] = None) -> None:
        if target:
            self.target = target

        logger.info("Connecting to ADB device", device_id=self.target)
        devices = await self.invoke("list-devices")

        if self.target:
            matching = [d for d in devices if d["serial"] == self.target]
            if not matching:
                raise DeviceError(
                    f"Android device '{self.target}' not found. "
                    f"Available: {', '.join(d['serial'] for d in devices) or 'none'}"
                )
        elif not devices:
            raise NoTargetsFoundError(self.platform)
        elif len(devices) > 1:
            raise TargetAmbiguityError(len(devices), "connected Android")
        else:
            self.target = devices[0]["serial"]

        await super().invoke("connect", self.target)
        self.state = ConnectionState.CONNECTED
        logger.info("Connected to ADB device", serial=self.target)

    async def restart_device(self) -> None:
        logger.info("Rebooting Android device", serial=self.target)
        await self.invoke("reset")
        await self.invoke("wait-boot")

    async def get_device_status(self) -> DeviceStatus:
        props = await self.invoke("getstatus") or {}
        return DeviceStatus(
            platform=self.platform,
            status="Online",
            status_data={
                "serial": self.target,
                "model": props.get("ro.product.model", ""),
                "manufacturer": props.get("ro.product.manufacturer", ""),
                "android_version": props.get("ro.build.version.release", ""),
                "sdk": props.get("ro.build.version.sdk", ""),
            },
        )

    async def get_system_info(self) -> dict[str, Any]:
        status = await self.get_device_status()
        return status.status_data

    async def run_application(
        self,
        executable_path: str,
        arguments: Optional[Sequence[str]] = None,
    ) -> RunResult:
        # Only logs from this run are wanted afterwards
        await self.invoke("clear-logs")
        return await super().run_application(executable_path, arguments)

    async def is_process_running(self, executable_path: str) -> bool:
        package = executable_path.split("/", 1)[0]
        processes = await self.invoke("is-running") or []
        return package in {line.strip() for line in processes}

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 0) -> LogResult:
        buffer = _LOGCAT_BUFFERS.get(log_type.lower())
        if buffer is None:
            raise DeviceError(
                f"Unknown Android log type '{log_type}'. "
                f"Use one of: {', '.join(sorted(_LOGCAT_BUFFERS))}"
            )
        lines = await self.invoke("getlogs", buffer) or []
        lines = [line for line in lines if line and not line.startswith("---------")]
        if max_entries > 0:
            lines = lines[-max_entries:]
        return LogResult(
            platform=self.platform,
            log_type=log_type,
            logs=[{"message": line} for line in lines],
            count=len(lines),
        )

    async def take_screenshot(self, output_path: Union[str, Path]) -> Path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        await self.invoke("screenshot")
        try:
            await self.invoke("copy", _REMOTE_SCREENSHOT, str(path))
        finally:
            await self.invoke("remove-remote", _REMOTE_SCREENSHOT)

        width, height = verify_image(path)
        logger.info("Screenshot saved", platform=self.platform, path=str(path), size=f"{width}x{height}")
        return path
