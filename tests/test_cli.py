"""
Tests for the Command-Line Interface
====================================

Commands run against the Mock provider with an isolated lock directory.
"""

import json
from unittest.mock import patch

import pytest

from app_runner.cli import build_parser, main, run


def _parse(*argv):
    return build_parser().parse_args(list(argv))


class TestParser:
    def test_platform_required(self):
        with pytest.raises(SystemExit):
            _parse("status")

    def test_run_arguments_passed_through(self):
        args = _parse("-p", "Switch", "run", "Game.nsp", "--level", "3", "-v")
        assert args.executable == "Game.nsp"
        assert args.arguments == ["--level", "3", "-v"]
        assert args.install is None

    def test_run_options_precede_executable(self):
        args = _parse("-p", "Mock", "run", "--install", "game.pkg", "Game.exe", "--install", "dlc.pkg")
        assert args.install == "game.pkg"
        assert args.executable == "Game.exe"
        assert args.arguments == ["--install", "dlc.pkg"]

    def test_global_options(self):
        args = _parse("--platform", "PS5", "--target", "10.0.0.5", "--timeout", "30", "logs", "--max", "5")
        assert (args.platform, args.target, args.timeout) == ("PS5", "10.0.0.5", 30.0)
        assert args.type == "All"
        assert args.max == 5

    def test_power_state_choices(self):
        with pytest.raises(SystemExit):
            _parse("-p", "Mock", "power", "sleep")


class TestRun:
    @pytest.mark.asyncio
    async def test_status(self, sessions, locks, capsys):
        code = await run(_parse("-p", "Mock", "-t", "rack-1", "status"), sessions)

        assert code == 0
        status = json.loads(capsys.readouterr().out)
        assert status["platform"] == "Mock"
        assert status["status_data"]["name"] == "rack-1"
        assert sessions.session is None
        handle = await locks.acquire("Mock-rack-1", timeout=0.2)
        locks.release(handle)

    @pytest.mark.asyncio
    async def test_run_application(self, sessions, capsys):
        code = await run(_parse("-p", "Mock", "run", "--install", "game.pkg", "game.exe", "--fast"), sessions)

        out = capsys.readouterr().out
        assert code == 0
        assert "Installed game.pkg" in out
        assert "Arguments: --fast" in out
        assert "exit code: 0" in out

    @pytest.mark.asyncio
    async def test_logs_json(self, sessions, capsys):
        await run(_parse("-p", "Mock", "logs", "--max", "3", "--json"), sessions)
        logs = json.loads(capsys.readouterr().out)
        assert logs["count"] == 3

    @pytest.mark.asyncio
    async def test_disconnect_power_off(self, sessions, capsys):
        code = await run(_parse("-p", "Mock", "disconnect", "--power-off"), sessions)
        assert code == 0
        assert "powered off" in capsys.readouterr().out
        assert sessions.session is None

    @pytest.mark.asyncio
    async def test_diagnostics(self, sessions, tmp_path, capsys):
        await run(_parse("-p", "Mock", "diagnostics", str(tmp_path / "diag")), sessions)
        assert "Collected 5 diagnostics file(s)" in capsys.readouterr().out
        assert len(list((tmp_path / "diag").iterdir())) == 5


class TestMain:
    def test_unsupported_platform(self, capsys):
        with patch("app_runner.cli.setup_logging"):
            code = main(["--platform", "Amiga", "status"])
        assert code == 1
        assert "Unsupported platform: Amiga" in capsys.readouterr().err
