"""
Console Devkit Providers
========================

Xbox (GDK), PlayStation 5 and Nintendo Switch devkits, driven through the
platform SDK command-line tools.

Tool locations come from the SDK root settings (``GameDK``,
``SCE_PROSPERO_SDK_DIR``, ``NINTENDO_SDK_ROOT``); without an SDK root the
tools are looked up on PATH.

PlayStation 5 and Switch keep a target manager, so connecting without an
explicit target runs the default-target detection sequence.
"""

from pathlib import Path
from typing import Any, Optional, Union

from app_runner.config import get_settings
from app_runner.device.commands import cmd
from app_runner.device.provider import ConnectionState, DeviceProvider, DeviceStatus
from app_runner.device.target_detection import Target
from app_runner.utils.logger import get_logger

logger = get_logger(__name__)

_NO_TARGET_MARKERS = ("no default", "not set", "none")


def parse_targets(lines: list[str]) -> list[Target]:
    """
    Parse one target per line: ``<name> [<address>] ...``.

    Header and separator lines (starting with a non-alphanumeric character
    or containing "name" as the first column) are ignored.
    """
    targets = []
    for line in lines:
        parts = line.split()
        if not parts or not parts[0][0].isalnum() or parts[0].lower() == "name":
            continue
        address = parts[1] if len(parts) > 1 else ""
        targets.append(Target(identifier=parts[0], address=address))
    return targets


def parse_default_target(lines: list[str]) -> Optional[Target]:
    """Parse the default-target query; None when no default is configured."""
    text = " ".join(lines).strip().lower()
    if not text or any(marker in text for marker in _NO_TARGET_MARKERS):
        return None
    targets = parse_targets(lines)
    return targets[0] if targets else None


def parse_key_values(lines: list[str]) -> dict[str, str]:
    """Parse ``key: value`` / ``key = value`` lines."""
    data = {}
    for line in lines:
        for separator in (":", "="):
            if separator in line:
                key, value = line.split(separator, 1)
                data[key.strip().lower().replace(" ", "_")] = value.strip()
                break
    return data


class XboxProvider(DeviceProvider):
    """Xbox devkit via the GDK command-line tools."""

    platform = "Xbox"

    COMMANDS = {
        "connect": cmd("bin/xbconnect", "{0}"),
        "connect-default": cmd("bin/xbconnect"),
        "disconnect": None,
        "poweron": cmd("bin/xbconnect", "/WAKE"),
        "poweroff": cmd("bin/xbreboot", "/SHUTDOWN"),
        "reset": cmd("bin/xbreboot", "/W"),
        "getstatus": cmd("bin/xbconfig", transform=parse_key_values),
        "install": cmd("bin/xbapp", "install", "{0}"),
        "launch": cmd("bin/xbapp", "launch", "{0}"),
        "is-running": cmd("bin/xbtlist"),
        "screenshot": cmd("bin/xbcapture", "{0}"),
        "copy": cmd("bin/xbcopy", "{0}", "{1}"),
        "getlogs": None,
        "getsysteminfo": cmd("bin/xbconfig", transform=parse_key_values),
        "getprocesses": cmd("bin/xbtlist"),
    }

    TIMEOUTS = {
        "reset": 300.0,
        "install": 1800.0,
    }

    def __init__(self, target: Optional[str] = None, sdk_root: Optional[Union[str, Path]] = None, **kwargs: Any) -> None:
        super().__init__(target, sdk_root or get_settings().sdk.xbox_sdk_root or None, **kwargs)

    async def connect(self, target: Optional[str] = None) -> None:
        if target:
            self.target = target
        logger.info("Connecting", platform=self.platform, target=self.target or "default console")
        if self.target:
            await self.invoke("connect", self.target)
        else:
            await self.invoke("connect-default")
        self.state = ConnectionState.CONNECTED

    async def is_process_running(self, executable_path: str) -> bool:
        name = Path(executable_path).name.lower()
        processes = await self.invoke("is-running") or []
        return any(name in line.lower() for line in processes)

    async def get_device_status(self) -> DeviceStatus:
        data = await self.invoke("getstatus") or {}
        data.setdefault("name", self.target or data.get("hostname", ""))
        return DeviceStatus(platform=self.platform, status="Online", status_data=data)


class TargetBoundProvider(DeviceProvider):
    """Devkit whose tools take the target on every device command."""

    _TARGETLESS_ACTIONS = frozenset(
        {"get-default-target", "list-target", "detect-target", "register-target", "set-default-target"}
    )

    async def invoke(self, action: str, *params: Any, **kwargs: Any) -> Any:
        # Device commands address the connected target explicitly
        if action in self._TARGETLESS_ACTIONS or action == "connect":
            return await super().invoke(action, *params, **kwargs)
        return await super().invoke(action, self.target or "", *params, **kwargs)

    async def disconnect(self) -> None:
        if not self.target:
            self.state = ConnectionState.DISCONNECTED
            return
        await super().disconnect()


class PlayStation5Provider(TargetBoundProvider):
    """PlayStation 5 devkit via prospero-ctrl."""

    platform = "PlayStation5"

    COMMANDS = {
        "get-default-target": cmd("host_tools/bin/prospero-ctrl", "target", "get-default", transform=parse_default_target),
        "list-target": cmd("host_tools/bin/prospero-ctrl", "target", "list", transform=parse_targets),
        "detect-target": cmd("host_tools/bin/prospero-ctrl", "target", "find", transform=parse_targets),
        "register-target": cmd("host_tools/bin/prospero-ctrl", "target", "add", "{0}"),
        "set-default-target": cmd("host_tools/bin/prospero-ctrl", "target", "set-default", "{0}"),
        "connect": cmd("host_tools/bin/prospero-ctrl", "target", "connect", "/target:{0}"),
        "disconnect": cmd("host_tools/bin/prospero-ctrl", "target", "disconnect", "/target:{0}"),
        "poweron": cmd("host_tools/bin/prospero-ctrl", "power", "on", "/target:{0}"),
        "poweroff": cmd("host_tools/bin/prospero-ctrl", "power", "off", "/target:{0}"),
        "reset": cmd("host_tools/bin/prospero-ctrl", "power", "reboot", "/target:{0}"),
        "getstatus": cmd("host_tools/bin/prospero-ctrl", "target", "info", "/target:{0}", transform=parse_key_values),
        "install": cmd("host_tools/bin/prospero-ctrl", "package", "install", "/target:{0}", "{1}"),
        "launch": cmd("host_tools/bin/prospero-run", "/target:{0}", "/elf", "{1}"),
        "screenshot": cmd("host_tools/bin/prospero-ctrl", "target", "screenshot", "/target:{0}", "{1}"),
        "getlogs": cmd("host_tools/bin/prospero-ctrl", "target", "console-output", "/target:{0}", "{1}"),
        "getprocesses": cmd("host_tools/bin/prospero-ctrl", "process", "list", "/target:{0}"),
    }

    TIMEOUTS = {
        "reset": 300.0,
        "install": 1800.0,
    }

    def __init__(self, target: Optional[str] = None, sdk_root: Optional[Union[str, Path]] = None, **kwargs: Any) -> None:
        super().__init__(target, sdk_root or get_settings().sdk.prospero_sdk_root or None, **kwargs)


class SwitchProvider(TargetBoundProvider):
    """Nintendo Switch devkit via ControlTarget / RunOnTarget."""

    platform = "Switch"

    COMMANDS = {
        "get-default-target": cmd("Tools/CommandLineTools/ControlTarget", "get-default", transform=parse_default_target),
        "list-target": cmd("Tools/CommandLineTools/ControlTarget", "list-target", transform=parse_targets),
        "detect-target": cmd("Tools/CommandLineTools/ControlTarget", "detect-target", transform=parse_targets),
        "register-target": cmd("Tools/CommandLineTools/ControlTarget", "register", "--ip-addr", "{0}"),
        "set-default-target": cmd("Tools/CommandLineTools/ControlTarget", "set-default", "--target", "{0}"),
        "connect": cmd("Tools/CommandLineTools/ControlTarget", "connect", "--target", "{0}"),
        "disconnect": cmd("Tools/CommandLineTools/ControlTarget", "disconnect", "--target", "{0}"),
        "poweron": cmd("Tools/CommandLineTools/ControlTarget", "power-on", "--target", "{0}"),
        "poweroff": cmd("Tools/CommandLineTools/ControlTarget", "power-off", "--target", "{0}"),
        "reset": cmd("Tools/CommandLineTools/ControlTarget", "reset", "--target", "{0}"),
        "getstatus": cmd(
            "Tools/CommandLineTools/ControlTarget", "get-firmware-version", "--target", "{0}", transform=parse_key_values
        ),
        "install": cmd("Tools/CommandLineTools/ControlTarget", "install-application", "--target", "{0}", "{1}"),
        "launch": cmd("Tools/CommandLineTools/RunOnTarget", "--target", "{0}", "{1}", "--"),
        "screenshot": cmd("Tools/CommandLineTools/ControlTarget", "take-screenshot", "--target", "{0}", "--directory", "{1}"),
        "getlogs": None,
        "getprocesses": cmd("Tools/CommandLineTools/ControlTarget", "list-application", "--target", "{0}"),
    }

    TIMEOUTS = {
        "reset": 300.0,
        "install": 1800.0,
    }

    def __init__(self, target: Optional[str] = None, sdk_root: Optional[Union[str, Path]] = None, **kwargs: Any) -> None:
        super().__init__(target, sdk_root or get_settings().sdk.nintendo_sdk_root or None, **kwargs)

    async def take_screenshot(self, output_path: Union[str, Path]) -> Path:
        # take-screenshot writes into a directory with its own file name
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        before = set(path.parent.glob("*.png")) | set(path.parent.glob("*.jpg"))
        await self.invoke("screenshot", str(path.parent))
        created = sorted(
            (set(path.parent.glob("*.png")) | set(path.parent.glob("*.jpg"))) - before,
            key=lambda p: p.stat().st_mtime,
        )
        if created and created[-1] != path:
            created[-1].replace(path)
        logger.info("Screenshot saved", platform=self.platform, path=str(path))
        return path

    async def get_device_status(self) -> DeviceStatus:
        data = await self.invoke("getstatus") or {}
        data.setdefault("name", self.target or "")
        if self.default_target is not None and self.default_target.address:
            data.setdefault("address", self.default_target.address)
        return DeviceStatus(platform=self.platform, status="Online", status_data=data)
