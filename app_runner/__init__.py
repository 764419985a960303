"""
App Runner
==========

Device automation library for running and diagnosing game/app builds on
heterogeneous target platforms (Xbox, PlayStation 5, Nintendo Switch,
Android via ADB or Sauce Labs, desktop operating systems and a mock).

Every platform is driven through the same sequence: connect, install and
launch an executable, capture logs/screenshots/diagnostics, disconnect.

Modules:
    - session: Process-wide session manager (connect/disconnect discipline)
    - locking: Cross-process exclusive device access
    - device: Provider state machine, command builder and execution engine
    - config: Settings loaded from environment and .env
    - errors: Exception taxonomy
    - utils: Logging and credential masking helpers
"""

__version__ = "1.0.0"
__author__ = "App Runner Team"
