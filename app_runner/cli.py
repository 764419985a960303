"""
Command-Line Interface
======================

``app-runner`` drives one device session per invocation:
connect -> operation -> disconnect. The device lock is held for exactly the
duration of the command.

Usage:
    app-runner --platform Mock status
    app-runner --platform Switch run Game.nsp -- --level 3
    app-runner --platform AndroidAdb --target emulator-5554 logs --type main --max 50
    app-runner --platform Xbox diagnostics ./diagnostics
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from typing import Any, Optional, Sequence

from app_runner import __version__
from app_runner.errors import AppRunnerError
from app_runner.session import SessionManager
from app_runner.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _cmd_connect(sessions: SessionManager, args: argparse.Namespace) -> int:
    session = sessions.session
    print(f"✓ Connected to {session.platform} ({session.identifier})")
    _print_json(session.to_dict())
    return 0


async def _cmd_disconnect(sessions: SessionManager, args: argparse.Namespace) -> int:
    await sessions.disconnect(power_off=args.power_off)
    print("✓ Disconnected" + (" and powered off" if args.power_off else ""))
    return 0


async def _cmd_status(sessions: SessionManager, args: argparse.Namespace) -> int:
    status = await sessions.get_status()
    _print_json(asdict(status))
    return 0


async def _cmd_test_connection(sessions: SessionManager, args: argparse.Namespace) -> int:
    if await sessions.test_connection():
        print("✓ Device is responding")
        return 0
    print("❌ Device is not responding")
    return 1


async def _cmd_power(sessions: SessionManager, args: argparse.Namespace) -> int:
    operations = {
        "on": sessions.start_device,
        "off": sessions.stop_device,
        "restart": sessions.restart_device,
    }
    await operations[args.state]()
    print(f"✓ Power {args.state}")
    return 0


async def _cmd_run(sessions: SessionManager, args: argparse.Namespace) -> int:
    if args.install:
        await sessions.install_application(args.install)
        print(f"✓ Installed {args.install}")

    arguments = list(args.arguments)
    if arguments and arguments[0] == "--":
        arguments = arguments[1:]

    result = await sessions.run_application(args.executable, arguments)
    for line in result.output:
        print(line)
    print(
        f"\n{'✓' if not result.exit_code else '❌'} {result.executable_path} finished "
        f"in {result.duration_seconds:.1f}s (exit code: "
        f"{result.exit_code if result.exit_code is not None else 'unknown'})"
    )
    return result.exit_code or 0


async def _cmd_logs(sessions: SessionManager, args: argparse.Namespace) -> int:
    logs = await sessions.get_logs(args.type, args.max)
    if args.json:
        _print_json(asdict(logs))
        return 0
    for entry in logs.logs:
        prefix = " ".join(str(entry[key]) for key in ("timestamp", "level") if entry.get(key))
        print(f"{prefix} {entry.get('message', '')}".strip())
    return 0


async def _cmd_screenshot(sessions: SessionManager, args: argparse.Namespace) -> int:
    path = await sessions.take_screenshot(args.output)
    print(f"✓ Screenshot saved to {path}")
    return 0


async def _cmd_diagnostics(sessions: SessionManager, args: argparse.Namespace) -> int:
    result = await sessions.get_diagnostics(args.output_dir)
    print(f"✓ Collected {len(result.files)} diagnostics file(s)")
    for path in result.files:
        print(f"   {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="app-runner",
        description="Run builds on game consoles, mobile devices and desktops",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  app-runner --platform Mock status
  app-runner --platform PS5 --target 10.0.0.5 run /app0/eboot.bin -- -test
  app-runner --platform Switch screenshot out/switch.png
  app-runner --platform AndroidAdb diagnostics out/diag

Platforms:
  Xbox, PlayStation5 (PS5), Switch, AndroidAdb (Adb), AndroidSauceLabs,
  iOSSauceLabs, Windows, MacOS, Linux, Mock
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-p", "--platform", required=True, help="Target platform")
    parser.add_argument("-t", "--target", help="Device target (IP, serial, device name)")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for a busy device (default: LOCK_TIMEOUT)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("connect", help="Connect and print session details").set_defaults(handler=_cmd_connect)

    p = sub.add_parser("disconnect", help="Disconnect, optionally powering the device off")
    p.add_argument("--power-off", action="store_true", help="Power off before disconnecting")
    p.set_defaults(handler=_cmd_disconnect)

    sub.add_parser("status", help="Print device status").set_defaults(handler=_cmd_status)
    sub.add_parser("test-connection", help="Check that the device responds").set_defaults(
        handler=_cmd_test_connection
    )

    p = sub.add_parser("power", help="Power the device on, off or restart it")
    p.add_argument("state", choices=["on", "off", "restart"])
    p.set_defaults(handler=_cmd_power)

    p = sub.add_parser(
        "run",
        help="Run an application and wait for it to exit",
        description="Options go before the executable. Everything after it is passed to the application.",
    )
    p.add_argument("--install", metavar="PACKAGE", help="Install this package before running")
    p.add_argument("executable", help="Executable, package or component to launch")
    p.add_argument("arguments", nargs=argparse.REMAINDER, help="Arguments for the application")
    p.set_defaults(handler=_cmd_run)

    p = sub.add_parser("logs", help="Print device logs")
    p.add_argument("--type", default="All", help="Log type (default: All)")
    p.add_argument("--max", type=int, default=0, help="Most recent N entries (default: all)")
    p.add_argument("--json", action="store_true", help="Print logs as JSON")
    p.set_defaults(handler=_cmd_logs)

    p = sub.add_parser("screenshot", help="Capture the screen")
    p.add_argument("output", help="Output PNG path")
    p.set_defaults(handler=_cmd_screenshot)

    p = sub.add_parser("diagnostics", help="Collect status, logs, screenshot and process list")
    p.add_argument("output_dir", help="Directory for diagnostics files")
    p.set_defaults(handler=_cmd_diagnostics)

    return parser


async def run(args: argparse.Namespace, sessions: Optional[SessionManager] = None) -> int:
    """Connect, run the selected command and always disconnect."""
    sessions = sessions or SessionManager()
    await sessions.connect(args.platform, args.target, args.timeout)
    try:
        return await args.handler(sessions, args)
    finally:
        if sessions.session is not None:
            await sessions.disconnect()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level="DEBUG" if args.debug else None, json_logs=args.json_logs or None)

    try:
        return asyncio.run(run(args))
    except AppRunnerError as e:
        logger.debug("Command failed", command=args.command, error_type=type(e).__name__)
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
