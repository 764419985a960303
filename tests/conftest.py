"""
Shared Test Fixtures
====================

Pytest fixtures used across all test modules.
Provides fake process runners, tool directories and isolated lock managers.
"""

import asyncio
import os
import sys
import tempfile

# Keep locks and credentials away from the real environment BEFORE any app_runner.* imports
os.environ.setdefault("LOCK_DIR", tempfile.mkdtemp(prefix="app-runner-test-locks-"))
os.environ["SAUCE_USERNAME"] = ""
os.environ["SAUCE_ACCESS_KEY"] = ""

import pytest
import structlog
from pathlib import Path
from typing import Callable, Optional

from app_runner.locking import ResourceLock
from app_runner.session import SessionManager, reset_session_manager

# Unconfigured structlog prints to stdout; keep stdout for command output
structlog.configure(logger_factory=structlog.PrintLoggerFactory(file=sys.stderr))


class FakeRunner:
    """
    Process runner replacement recording every argv.

    ``responses`` maps leading argument words (matched against the argv after
    the tool path) to ``(exit_code, lines)`` or to a callable returning that,
    possibly as a coroutine. Unmatched commands succeed with no output.
    """

    def __init__(self, responses: Optional[dict] = None) -> None:
        self.responses = responses or {}
        self.calls: list[list[str]] = []

    async def __call__(self, argv: list[str]) -> tuple[int, list[str]]:
        self.calls.append(list(argv))
        args = argv[1:]
        for key, response in self.responses.items():
            words = key.split()
            if args[: len(words)] == words:
                if callable(response):
                    response = response(args)
                if asyncio.iscoroutine(response):
                    response = await response
                return response
        return 0, []

    def args_of(self, index: int = -1) -> list[str]:
        return self.calls[index][1:]


def make_tool(root: Path, relative: str) -> Path:
    """Create an (empty) executable file under an SDK root."""
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    path.chmod(0o755)
    return path


# ---------------------------------------------------------------------------
# Locks and sessions
# ---------------------------------------------------------------------------

@pytest.fixture
def lock_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "locks"
    directory.mkdir()
    return directory


@pytest.fixture
def locks(lock_dir: Path) -> ResourceLock:
    """Lock manager on an isolated directory with a fast poll tick."""
    return ResourceLock(lock_dir=lock_dir, poll_tick=0.02)


@pytest.fixture
def sessions(locks: ResourceLock) -> SessionManager:
    manager = SessionManager(locks=locks)
    yield manager
    reset_session_manager()


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@pytest.fixture
def sdk_root(tmp_path: Path) -> Path:
    root = tmp_path / "sdk"
    root.mkdir()
    return root


@pytest.fixture
def tool_factory(sdk_root: Path) -> Callable[[str], Path]:
    return lambda relative: make_tool(sdk_root, relative)
