"""
Tests for Command Descriptors
=============================

Tests for:
- No-op distinction (explicit None vs. missing action)
- Tool resolution against an SDK root and PATH
- Argument template substitution and errors
"""

from unittest.mock import patch

import pytest
from structlog.testing import capture_logs

from app_runner.device.commands import CommandBuilder, cmd
from app_runner.errors import CommandTemplateError, ToolNotFoundError


@pytest.fixture
def builder(sdk_root, tool_factory):
    tool_factory("bin/devctl")
    commands = {
        "connect": cmd("bin/devctl", "connect", "{0}"),
        "disconnect": None,
        "poweron": None,
        "launch": cmd("bin/devctl", "launch", "--target", "{0}", "{1}"),
        "getstatus": cmd("bin/devctl", "status", transform=len),
    }
    return CommandBuilder("Console", commands, sdk_root)


def _warnings(logs):
    return [entry for entry in logs if entry["log_level"] == "warning"]


class TestNoOps:
    def test_explicit_none_is_silent_noop(self, builder):
        with capture_logs() as logs:
            built = builder.build("poweron")
        assert built.is_noop
        assert built.argv == []
        assert not _warnings(logs)

    def test_missing_action_warns(self, builder):
        with capture_logs() as logs:
            built = builder.build("screenshot")
        assert built.is_noop
        warnings = _warnings(logs)
        assert len(warnings) == 1
        assert warnings[0]["action"] == "screenshot"

    def test_missing_disconnect_is_silent(self, sdk_root):
        builder = CommandBuilder("Console", {}, sdk_root)
        with capture_logs() as logs:
            built = builder.build("disconnect")
        assert built.is_noop
        assert not _warnings(logs)

    def test_has_action(self, builder):
        assert builder.has_action("connect")
        assert not builder.has_action("poweron")
        assert not builder.has_action("screenshot")


class TestToolResolution:
    def test_resolves_under_sdk_root(self, builder, sdk_root):
        built = builder.build("connect", "10.0.0.5")
        assert built.argv[0] == str(sdk_root / "bin" / "devctl")

    def test_exe_suffix_fallback(self, sdk_root, tool_factory):
        tool_factory("bin/xbconnect.exe")
        builder = CommandBuilder("Xbox", {"connect": cmd("bin/xbconnect")}, sdk_root)
        assert builder.build("connect").argv[0] == str(sdk_root / "bin" / "xbconnect.exe")

    def test_missing_tool_under_sdk_root(self, sdk_root):
        builder = CommandBuilder("Xbox", {"connect": cmd("bin/xbconnect")}, sdk_root)
        with pytest.raises(ToolNotFoundError) as exc:
            builder.build("connect")
        assert exc.value.tool == "bin/xbconnect"
        assert str(sdk_root) in str(exc.value)

    def test_path_lookup_without_sdk_root(self):
        builder = CommandBuilder("AndroidAdb", {"list": cmd("adb", "devices")})
        with patch("app_runner.device.commands.shutil.which", return_value="/opt/sdk/adb") as which:
            built = builder.build("list")
        which.assert_called_once_with("adb")
        assert built.argv == ["/opt/sdk/adb", "devices"]

    def test_path_lookup_failure(self):
        builder = CommandBuilder("AndroidAdb", {"list": cmd("adb", "devices")})
        with patch("app_runner.device.commands.shutil.which", return_value=None):
            with pytest.raises(ToolNotFoundError):
                builder.build("list")


class TestTemplates:
    def test_positional_substitution(self, builder, sdk_root):
        built = builder.build("launch", "devkit1", "/app0/eboot.bin")
        assert built.argv[1:] == ["launch", "--target", "devkit1", "/app0/eboot.bin"]

    def test_parameters_are_not_split(self, builder):
        built = builder.build("connect", "name with spaces; rm -rf /")
        assert built.argv[-1] == "name with spaces; rm -rf /"

    def test_extra_args_appended_verbatim(self, builder):
        built = builder.build("launch", "devkit1", "game.elf", extra_args=["-level", "{0}"])
        assert built.argv[-2:] == ["-level", "{0}"]

    def test_too_few_parameters(self, builder):
        with pytest.raises(CommandTemplateError) as exc:
            builder.build("launch", "devkit1")
        assert exc.value.action == "launch"
        assert "{1}" in str(exc.value)

    def test_too_many_parameters(self, builder):
        with pytest.raises(CommandTemplateError) as exc:
            builder.build("connect", "a", "b")
        assert "expected 1" in str(exc.value)

    def test_transform_is_carried(self, builder):
        assert builder.build("getstatus").transform is len

    def test_str(self, builder):
        assert "connect 10.0.0.5" in str(builder.build("connect", "10.0.0.5"))
        assert str(builder.build("poweron")) == "<no-op poweron>"
