"""
Tests for Console Devkit Providers
==================================

Tests for:
- Target manager output parsing
- PlayStation 5 default-target detection during connect
- Xbox default console / explicit target connect
- Switch screenshot placement
"""

import pytest

from app_runner.device.consoles import (
    PlayStation5Provider,
    SwitchProvider,
    XboxProvider,
    parse_default_target,
    parse_key_values,
    parse_targets,
)
from app_runner.device.target_detection import Target
from app_runner.errors import TargetAmbiguityError
from tests.conftest import FakeRunner


class TestParsers:
    def test_parse_targets_skips_headers(self):
        lines = [
            "Name        Address       Status",
            "----------  ------------  ------",
            "devkit-a    10.0.0.10     Ready",
            "",
            "devkit-b    10.0.0.11     Busy",
        ]
        assert parse_targets(lines) == [Target("devkit-a", "10.0.0.10"), Target("devkit-b", "10.0.0.11")]

    def test_parse_targets_name_only(self):
        assert parse_targets(["devkit-a"]) == [Target("devkit-a", "")]

    @pytest.mark.parametrize("lines", [[], [""], ["No default target set"], ["Default target: none"]])
    def test_no_default_target(self, lines):
        assert parse_default_target(lines) is None

    def test_default_target(self):
        assert parse_default_target(["devkit-a 10.0.0.10"]) == Target("devkit-a", "10.0.0.10")

    def test_parse_key_values(self):
        lines = ["Console Name: devkit-a", "OS Version = 10.0.25398", "garbage"]
        assert parse_key_values(lines) == {"console_name": "devkit-a", "os_version": "10.0.25398"}


@pytest.fixture
def ps5(sdk_root, tool_factory):
    tool_factory("host_tools/bin/prospero-ctrl")
    tool_factory("host_tools/bin/prospero-run")

    def build(registered, responses=None, target=None):
        state = {"default": None}

        def get_default(args):
            return 0, [state["default"] or "No default target set"]

        def set_default(args):
            state["default"] = next(line for line in registered if line.startswith(args[2]))
            return 0, []

        runner = FakeRunner(
            {
                "target get-default": get_default,
                "target list": (0, list(registered)),
                "target find": (0, []),
                "target set-default": set_default,
                **(responses or {}),
            }
        )
        return PlayStation5Provider(target, sdk_root, runner=runner), runner, state

    return build


class TestPlayStation5:
    @pytest.mark.asyncio
    async def test_connect_detects_single_registered_target(self, ps5):
        provider, runner, state = ps5(["devkit-a 10.0.0.10"])
        await provider.connect()

        assert provider.is_connected
        assert provider.target == "devkit-a"
        assert provider.default_target == Target("devkit-a", "10.0.0.10")
        assert state["default"].startswith("devkit-a")
        assert runner.args_of() == ["target", "connect", "/target:devkit-a"]

    @pytest.mark.asyncio
    async def test_connect_with_several_targets_is_ambiguous(self, ps5):
        provider, runner, state = ps5(["devkit-a 10.0.0.10", "devkit-b 10.0.0.11"])
        with pytest.raises(TargetAmbiguityError):
            await provider.connect()
        assert not provider.is_connected
        assert state["default"] is None

    @pytest.mark.asyncio
    async def test_explicit_target_skips_detection(self, ps5):
        provider, runner, _ = ps5([], target="10.0.0.99")
        await provider.connect()
        assert [c[1:] for c in runner.calls] == [["target", "connect", "/target:10.0.0.99"]]

    @pytest.mark.asyncio
    async def test_device_commands_address_target(self, ps5):
        provider, runner, _ = ps5([], target="devkit-a")
        await provider.connect()
        await provider.run_application("/app0/eboot.bin", ["-test"])
        launch = next(c for c in runner.calls if c[0].endswith("prospero-run"))
        assert launch[1:] == ["/target:devkit-a", "/elf", "/app0/eboot.bin", "-test"]

    @pytest.mark.asyncio
    async def test_disconnect_without_target_runs_nothing(self, ps5):
        provider, runner, _ = ps5([])
        await provider.disconnect()
        assert runner.calls == []


class TestXbox:
    @pytest.mark.asyncio
    async def test_connect_default_console(self, sdk_root, tool_factory):
        tool_factory("bin/xbconnect")
        runner = FakeRunner()
        provider = XboxProvider(sdk_root=sdk_root, runner=runner)
        await provider.connect()
        assert runner.args_of() == []
        assert provider.is_connected

    @pytest.mark.asyncio
    async def test_connect_explicit_console(self, sdk_root, tool_factory):
        tool_factory("bin/xbconnect")
        runner = FakeRunner()
        provider = XboxProvider("192.168.1.20", sdk_root=sdk_root, runner=runner)
        await provider.connect()
        assert runner.args_of() == ["192.168.1.20"]

    @pytest.mark.asyncio
    async def test_process_running_from_task_list(self, sdk_root, tool_factory):
        tool_factory("bin/xbtlist")
        runner = FakeRunner()
        runner.responses[""] = (0, ["  1234  System", "  5678  Game.exe"])
        provider = XboxProvider(sdk_root=sdk_root, runner=runner)
        assert await provider.is_process_running("D:\\Builds\\Game.exe")
        assert not await provider.is_process_running("Other.exe")

    @pytest.mark.asyncio
    async def test_logs_are_a_silent_noop(self, sdk_root):
        provider = XboxProvider(sdk_root=sdk_root, runner=FakeRunner())
        logs = await provider.get_device_logs()
        assert logs.count == 0


class TestSwitch:
    @pytest.mark.asyncio
    async def test_screenshot_moved_to_requested_path(self, sdk_root, tool_factory, tmp_path):
        tool_factory("Tools/CommandLineTools/ControlTarget")
        out_dir = tmp_path / "shots"

        def capture(args):
            (out_dir / "Capture_0001.png").write_bytes(b"\x89PNG fake")
            return 0, []

        runner = FakeRunner({"take-screenshot": capture})
        provider = SwitchProvider("sdev-1", sdk_root, runner=runner)
        path = await provider.take_screenshot(out_dir / "switch.png")

        assert path == out_dir / "switch.png"
        assert path.exists()
        assert not (out_dir / "Capture_0001.png").exists()
        assert runner.args_of() == ["take-screenshot", "--target", "sdev-1", "--directory", str(out_dir)]

    @pytest.mark.asyncio
    async def test_device_commands_address_target(self, sdk_root, tool_factory):
        tool_factory("Tools/CommandLineTools/ControlTarget")
        tool_factory("Tools/CommandLineTools/RunOnTarget")
        runner = FakeRunner()
        provider = SwitchProvider("devkit-b", sdk_root, runner=runner)

        await provider.connect()
        await provider.install_application("Game.nsp")
        await provider.run_application("Game.nsp", ["-smoke"])
        await provider.restart_device()
        await provider.disconnect()

        assert [c[1:] for c in runner.calls] == [
            ["connect", "--target", "devkit-b"],
            ["install-application", "--target", "devkit-b", "Game.nsp"],
            ["--target", "devkit-b", "Game.nsp", "--", "-smoke"],
            ["reset", "--target", "devkit-b"],
            ["disconnect", "--target", "devkit-b"],
        ]
