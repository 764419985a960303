"""
Device Integration Module
=========================

Provider abstraction over every supported platform.

This package contains:
    - provider: Lifecycle base class, result records and the provider registry
    - commands: Action -> command-line descriptors and the command builder
    - execution: Command execution with timeout, restart and retry
    - target_detection: Default-target discovery for devkit target managers
    - consoles: Xbox, PlayStation 5 and Switch devkits
    - adb_device: Android devices via ADB
    - saucelabs: Android/iOS devices on Sauce Labs
    - desktop: Local Windows/macOS/Linux execution
    - mock: In-memory provider for dry runs and tests
"""

from app_runner.device.commands import BuiltCommand, CommandBuilder, CommandDescriptor, cmd
from app_runner.device.execution import ExecutionEngine, run_process
from app_runner.device.provider import (
    ConnectionState,
    DeviceProvider,
    DeviceStatus,
    DiagnosticsResult,
    LogResult,
    RunResult,
    create_provider,
    get_provider_class,
)
from app_runner.device.target_detection import Target, TargetDetector

__all__ = [
    "BuiltCommand",
    "CommandBuilder",
    "CommandDescriptor",
    "cmd",
    "ExecutionEngine",
    "run_process",
    "ConnectionState",
    "DeviceProvider",
    "DeviceStatus",
    "DiagnosticsResult",
    "LogResult",
    "RunResult",
    "create_provider",
    "get_provider_class",
    "Target",
    "TargetDetector",
]
