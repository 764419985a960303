"""
Error Taxonomy
==============

Exceptions raised by the app runner. Every fatal error carries the context
needed to diagnose it (resource name, action, timeout, attempt count)
without re-running at higher verbosity.

Hierarchy:
    AppRunnerError
    ├── ConfigurationError
    │   ├── ToolNotFoundError
    │   ├── UnsupportedPlatformError
    │   ├── MissingCredentialsError
    │   └── CommandTemplateError
    ├── LockError
    │   ├── LockTimeoutError
    │   └── AbandonedLockError
    ├── CommandError
    │   ├── CommandFailedError
    │   ├── CommandTimeoutError
    │   └── OutputTransformError
    ├── TargetDetectionError
    │   ├── TargetAmbiguityError
    │   ├── NoTargetsFoundError
    │   └── TargetDetectionTimeoutError
    ├── NoActiveSessionError
    └── DeviceError
"""

from typing import Optional, Sequence


class AppRunnerError(Exception):
    """Base exception for all app runner errors."""

    pass


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(AppRunnerError):
    """Invalid or incomplete configuration. Never retried."""

    pass


class ToolNotFoundError(ConfigurationError):
    """A required SDK tool could not be located."""

    def __init__(self, tool: str, searched: Optional[str] = None) -> None:
        location = searched or "PATH"
        super().__init__(f"Required tool '{tool}' was not found in {location}")
        self.tool = tool
        self.searched = location


class UnsupportedPlatformError(ConfigurationError):
    """No provider is registered for the requested platform name."""

    def __init__(self, platform: str, supported: Sequence[str] = ()) -> None:
        message = f"Unsupported platform: {platform}"
        if supported:
            message += f". Supported platforms: {', '.join(supported)}"
        super().__init__(message)
        self.platform = platform


class MissingCredentialsError(ConfigurationError):
    """Credentials required by a provider are not configured."""

    def __init__(self, provider: str, variables: Sequence[str]) -> None:
        super().__init__(
            f"{provider} requires credentials; set {', '.join(variables)}"
        )
        self.provider = provider
        self.variables = list(variables)


class CommandTemplateError(ConfigurationError):
    """Parameters did not fit an action's argument template."""

    def __init__(self, action: str, template: Sequence[str], reason: str) -> None:
        super().__init__(
            f"Cannot build command for action '{action}' from template "
            f"{list(template)!r}: {reason}"
        )
        self.action = action
        self.template = tuple(template)


# ---------------------------------------------------------------------------
# Exclusive access
# ---------------------------------------------------------------------------


class LockError(AppRunnerError):
    """Failure while coordinating exclusive device access."""

    def __init__(self, message: str, resource_name: str) -> None:
        super().__init__(message)
        self.resource_name = resource_name


class LockTimeoutError(LockError):
    """The device stayed busy for longer than the caller was willing to wait."""

    def __init__(self, resource_name: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for exclusive access to "
            f"'{resource_name}'. Another job is using this device.",
            resource_name,
        )
        self.timeout = timeout


class AbandonedLockError(LockError):
    """The previous holder died while owning the lock and policy forbids reuse."""

    def __init__(self, resource_name: str, previous_pid: int) -> None:
        super().__init__(
            f"Lock for '{resource_name}' was abandoned by process {previous_pid}; "
            "device state may be inconsistent",
            resource_name,
        )
        self.previous_pid = previous_pid


# ---------------------------------------------------------------------------
# Command execution
# ---------------------------------------------------------------------------


class CommandError(AppRunnerError):
    """Failure while executing a provider command."""

    def __init__(self, message: str, action: str) -> None:
        super().__init__(message)
        self.action = action


class CommandFailedError(CommandError):
    """A command exited abnormally. Not retried."""

    def __init__(self, action: str, exit_code: Optional[int], output: Sequence[str]) -> None:
        joined = "\n".join(output)
        super().__init__(
            f"Action '{action}' failed with exit code {exit_code}:\n{joined}",
            action,
        )
        self.exit_code = exit_code
        self.output = list(output)


class CommandTimeoutError(CommandError):
    """A command kept timing out after every allowed attempt."""

    def __init__(self, action: str, elapsed: float, attempts: int) -> None:
        super().__init__(
            f"Action '{action}' timed out after {elapsed:.0f}s "
            f"({attempts} attempt{'s' if attempts != 1 else ''})",
            action,
        )
        self.elapsed = elapsed
        self.attempts = attempts


class OutputTransformError(CommandError):
    """Post-processing of a command's output raised."""

    def __init__(self, action: str, output: Sequence[str], cause: BaseException) -> None:
        joined = "\n".join(output)
        super().__init__(
            f"Failed to process output of action '{action}': {cause}\n"
            f"Raw output:\n{joined}",
            action,
        )
        self.output = list(output)
        self.cause = cause


# ---------------------------------------------------------------------------
# Target auto-detection
# ---------------------------------------------------------------------------


class TargetDetectionError(AppRunnerError):
    """Default target could not be resolved."""

    pass


class TargetAmbiguityError(TargetDetectionError):
    """More than one candidate target; an operator has to choose."""

    def __init__(self, count: int, source: str) -> None:
        super().__init__(
            f"Found {count} {source} targets; specify the target explicitly "
            "or set a default target"
        )
        self.count = count
        self.source = source


class NoTargetsFoundError(TargetDetectionError):
    """Nothing registered and nothing reachable on the network."""

    def __init__(self, platform: str) -> None:
        super().__init__(
            f"No {platform} targets are registered or detectable on the network. "
            "Add a target manually with the platform's target manager."
        )
        self.platform = platform


class TargetDetectionTimeoutError(TargetDetectionError):
    """The detection sequence did not settle before its deadline."""

    def __init__(self, platform: str, deadline: float) -> None:
        super().__init__(
            f"Timed out after {deadline:g}s resolving a default {platform} target"
        )
        self.platform = platform
        self.deadline = deadline


# ---------------------------------------------------------------------------
# Session / device
# ---------------------------------------------------------------------------


class NoActiveSessionError(AppRunnerError):
    """A session operation was requested without a connected device."""

    def __init__(self) -> None:
        super().__init__("No active device session. Connect to a device first.")


class DeviceError(AppRunnerError):
    """A provider-level device operation failed."""

    pass
