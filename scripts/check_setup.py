#!/usr/bin/env python3
"""
Device Setup Check
==================

Verifies that this machine can drive the requested platforms before a CI
job relies on it.

Usage:
    python scripts/check_setup.py                      # every platform
    python scripts/check_setup.py Switch AndroidAdb    # selected platforms
    python scripts/check_setup.py --smoke Mock         # plus a live session

This script will:
1. Check that the lock directory is writable
2. For each platform, construct its provider and locate every SDK tool
3. Optionally run a smoke test: connect, status, screenshot, disconnect
"""

import argparse
import asyncio
import sys
import tempfile
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app_runner.config import get_settings
from app_runner.device import create_provider, get_provider_class
from app_runner.device.desktop import DesktopProvider, host_platform
from app_runner.errors import AppRunnerError, ToolNotFoundError
from app_runner.session import SessionManager
from app_runner.utils.logger import setup_logging
from app_runner.utils.security import mask_sensitive

PLATFORMS = [
    "Xbox",
    "PlayStation5",
    "Switch",
    "AndroidAdb",
    "AndroidSauceLabs",
    "iOSSauceLabs",
    "Windows",
    "MacOS",
    "Linux",
    "Mock",
]


def check_lock_dir() -> bool:
    lock_dir = Path(get_settings().lock.lock_dir)
    try:
        lock_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=lock_dir):
            pass
    except OSError as e:
        print(f"❌ Lock directory {lock_dir} is not writable: {e}")
        return False
    print(f"  ✓ Lock directory: {lock_dir}")
    return True


def check_platform(platform: str, explicit: bool = False) -> bool:
    """Construct the provider and resolve every tool in its command table."""
    provider_cls = get_provider_class(platform)
    if (
        not explicit
        and issubclass(provider_cls, DesktopProvider)
        and not host_platform().startswith(provider_cls.host_prefix)
    ):
        print(f"  -  {platform:<18} skipped (not this host)")
        return True

    try:
        provider = create_provider(platform)
    except AppRunnerError as e:
        print(f"  ❌ {platform:<18} {e}")
        return False

    missing = set()
    for descriptor in provider.commands.values():
        if descriptor is None:
            continue
        try:
            provider.builder.resolve_tool(descriptor.tool)
        except ToolNotFoundError:
            missing.add(descriptor.tool)

    if missing:
        print(f"  ❌ {platform:<18} missing tools: {', '.join(sorted(missing))}")
        return False

    location = provider.sdk_root or "PATH"
    if not provider.requires_lock:
        location = f"cloud ({mask_sensitive(getattr(provider, 'username', ''))})"
    print(f"  ✓ {platform:<18} {location}")
    return True


async def smoke_test(platform: str, target: Optional[str]) -> bool:
    sessions = SessionManager()
    try:
        session = await sessions.connect(platform, target, timeout=60)
        print(f"  ✓ Connected to {session.identifier}")

        status = await sessions.get_status()
        print(f"  ✓ Status: {status.status}")

        with tempfile.TemporaryDirectory() as tmp:
            path = await sessions.take_screenshot(Path(tmp) / "smoke.png")
            print(f"  ✓ Screenshot captured ({path.stat().st_size // 1024} KB)")
    except AppRunnerError as e:
        print(f"  ❌ Smoke test failed: {e}")
        return False
    finally:
        await sessions.disconnect()
    return True


async def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check device SDKs, credentials and locks")
    parser.add_argument("platforms", nargs="*", help="Platforms to check (default: all)")
    parser.add_argument("--smoke", metavar="PLATFORM", help="Run a live session against this platform")
    parser.add_argument("--target", help="Target for the smoke test")
    args = parser.parse_args(argv)

    setup_logging(level="WARNING", json_logs=False)

    print("=" * 60)
    print("app-runner setup check")
    print("=" * 60)
    print()

    ok = check_lock_dir()

    print()
    print("Checking platforms…")
    for platform in args.platforms or PLATFORMS:
        try:
            ok = check_platform(platform, explicit=bool(args.platforms)) and ok
        except AppRunnerError as e:
            print(f"  ❌ {platform:<18} {e}")
            ok = False

    if args.smoke:
        print()
        print(f"Smoke test on {args.smoke}…")
        ok = await smoke_test(args.smoke, args.target) and ok

    print()
    print("Setup looks good ✓" if ok else "Some checks failed")
    return 0 if ok else 1


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)
