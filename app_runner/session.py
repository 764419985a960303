"""
Device Session Management
=========================

Holds the single active device session of this process: the connected
provider together with the exclusive-access lock taken for it.

Lifecycle:
    connect()     -> acquire lock -> create provider -> provider.connect()
    <operations>  -> dispatched to the stored provider
    disconnect()  -> provider.disconnect() -> release lock -> clear session

Connecting while a session is active disconnects it first, so the process
never holds two device locks at once. Operations without an active session
raise NoActiveSessionError.

Usage:
    from app_runner.session import get_session_manager

    sessions = get_session_manager()
    await sessions.connect("Switch")
    result = await sessions.run_application("Game.nsp")
    await sessions.disconnect()
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from app_runner.config import get_settings
from app_runner.device.provider import (
    DeviceProvider,
    DeviceStatus,
    DiagnosticsResult,
    LogResult,
    RunResult,
    get_provider_class,
)
from app_runner.errors import NoActiveSessionError
from app_runner.locking import LockHandle, ResourceLock, resource_name
from app_runner.utils.logger import LogContext, get_logger
from app_runner.utils.security import sanitize_for_logging

logger = get_logger(__name__)

# Status keys tried, in order, for a human-readable device identifier
_IDENTIFIER_KEYS = ("name", "hostname", "serial", "model", "device_name")


@dataclass
class Session:
    """
    The active device session.

    Attributes:
        provider: Connected provider instance.
        platform: Canonical platform name.
        connected_at: When the connection was established.
        identifier: Human-readable device identifier.
        status: Status snapshot taken right after connecting.
        lock_handle: Exclusive-access lock, None for lock-free platforms.
        resource_name: Name the lock was taken under.
    """

    provider: DeviceProvider
    platform: str
    connected_at: datetime = field(default_factory=datetime.now)
    identifier: str = ""
    status: Optional[DeviceStatus] = None
    lock_handle: Optional[LockHandle] = None
    resource_name: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.provider.is_connected

    def to_dict(self) -> dict[str, Any]:
        """Summary suitable for logging and CLI output."""
        return {
            "platform": self.platform,
            "identifier": self.identifier,
            "connected_at": self.connected_at.isoformat(),
            "is_connected": self.is_connected,
            "resource_name": self.resource_name,
            "status": self.status.status_data if self.status else {},
        }


def extract_identifier(status: Optional[DeviceStatus], fallback: str) -> str:
    """Best-effort device identifier from status data."""
    if status is not None:
        for key in _IDENTIFIER_KEYS:
            value = status.status_data.get(key)
            if value:
                return str(value)
    return fallback


class SessionManager:
    """
    Owns at most one active device session.

    Not safe for concurrent use from several tasks; callers run session
    operations sequentially.
    """

    def __init__(self, locks: Optional[ResourceLock] = None, **provider_kwargs: Any) -> None:
        """
        Initialize the session manager.

        Args:
            locks: Lock manager; defaults to one using the configured lock directory.
            **provider_kwargs: Extra keyword arguments for every provider created.
        """
        self.locks = locks or ResourceLock()
        self.provider_kwargs = provider_kwargs
        self._session: Optional[Session] = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_connected

    def _require_session(self) -> Session:
        if self._session is None:
            raise NoActiveSessionError()
        return self._session

    async def connect(
        self,
        platform: str,
        target: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Session:
        """
        Connect to a device, taking exclusive access to it first.

        Args:
            platform: Platform name (case-insensitive, aliases accepted).
            target: Optional explicit target; omitted targets use the default.
            timeout: Seconds to wait for a busy device (default: lock_timeout).

        Returns:
            The new active session.

        Raises:
            UnsupportedPlatformError: Unknown platform name.
            LockTimeoutError: The device stayed busy for ``timeout`` seconds.
            AppRunnerError: Provider construction or connection failed.
        """
        if self._session is not None:
            logger.info(
                "Disconnecting previous session before connecting",
                previous_platform=self._session.platform,
            )
            await self.disconnect()

        provider_cls = get_provider_class(platform)
        lock_settings = get_settings().lock
        timeout = lock_settings.lock_timeout if timeout is None else timeout

        name: Optional[str] = None
        handle: Optional[LockHandle] = None
        if provider_cls.requires_lock:
            name = resource_name(provider_cls.platform, target)
            handle = await self.locks.acquire(
                name,
                timeout=timeout,
                progress_interval=lock_settings.lock_progress_interval,
            )

        with LogContext(platform=provider_cls.platform, resource=name):
            logger.debug("Creating provider", target=target, options=sanitize_for_logging(self.provider_kwargs))
            provider: Optional[DeviceProvider] = None
            try:
                provider = provider_cls(target=target, **self.provider_kwargs)
                await provider.connect()
                status = await self._initial_status(provider)
            except BaseException:
                try:
                    if provider is not None:
                        await self._close_failed_provider(provider)
                finally:
                    self.locks.release(handle, name)
                raise

            session = Session(
                provider=provider,
                platform=provider.platform,
                identifier=extract_identifier(status, provider.target or provider.platform),
                status=status,
                lock_handle=handle,
                resource_name=name,
            )
            self._session = session
            logger.info("Session established", identifier=session.identifier)
        return session

    @staticmethod
    async def _close_failed_provider(provider: DeviceProvider) -> None:
        # Providers may hold resources opened during a failed connect
        try:
            await provider.disconnect()
        except Exception as e:
            logger.warning("Cleanup after failed connect failed", error=str(e))

    @staticmethod
    async def _initial_status(provider: DeviceProvider) -> Optional[DeviceStatus]:
        try:
            return await provider.get_device_status()
        except Exception as e:
            logger.warning("Could not read device status after connecting", error=str(e))
            return None

    async def disconnect(self, power_off: bool = False) -> None:
        """
        End the active session. Never raises.

        Args:
            power_off: Power the device off before disconnecting.
        """
        session = self._session
        if session is None:
            logger.warning("No active session to disconnect")
            return

        with LogContext(platform=session.platform, resource=session.resource_name):
            try:
                if power_off:
                    try:
                        await session.provider.stop_device()
                    except Exception as e:
                        logger.warning("Power off failed, continuing disconnect", error=str(e))

                try:
                    await session.provider.disconnect()
                except Exception as e:
                    logger.warning("Provider disconnect failed", error=str(e))

                self.locks.release(session.lock_handle, session.resource_name)
            finally:
                self._session = None
            logger.info("Session closed")

    # ── Session operations ───────────────────────────────────────

    async def test_connection(self) -> bool:
        return await self._require_session().provider.test_connection()

    async def start_device(self) -> None:
        await self._require_session().provider.start_device()

    async def stop_device(self) -> None:
        await self._require_session().provider.stop_device()

    async def restart_device(self) -> None:
        await self._require_session().provider.restart_device()

    async def get_status(self) -> DeviceStatus:
        session = self._require_session()
        status = await session.provider.get_device_status()
        session.status = status
        return status

    async def install_application(self, package_path: str) -> None:
        await self._require_session().provider.install_application(package_path)

    async def run_application(
        self,
        executable_path: str,
        arguments: Optional[Sequence[str]] = None,
    ) -> RunResult:
        session = self._require_session()
        with LogContext(platform=session.platform):
            return await session.provider.run_application(executable_path, arguments)

    async def get_logs(self, log_type: str = "All", max_entries: int = 0) -> LogResult:
        return await self._require_session().provider.get_device_logs(log_type, max_entries)

    async def take_screenshot(self, output_path: Union[str, Path]) -> Path:
        return await self._require_session().provider.take_screenshot(output_path)

    async def copy_item(self, source: str, destination: str) -> None:
        await self._require_session().provider.copy_device_item(source, destination)

    async def get_diagnostics(self, output_dir: Union[str, Path]) -> DiagnosticsResult:
        session = self._require_session()
        with LogContext(platform=session.platform):
            return await session.provider.get_diagnostics(output_dir)


_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Process-wide session manager, created on first use."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager


def reset_session_manager() -> None:
    """Forget the process-wide session manager (tests)."""
    global _manager
    _manager = None
