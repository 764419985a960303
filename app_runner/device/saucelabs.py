"""
Sauce Labs Device Cloud Providers
=================================

Android and iOS real devices hosted by Sauce Labs, driven over HTTP:

- Builds are uploaded to Sauce Labs app storage (REST API)
- Each run opens an Appium session with the build as its ``app``
- Logs, screenshots and file pulls go through that Appium session

Sauce Labs isolates sessions server-side, so these providers do not take the
local resource lock.

Usage:
    from app_runner.device import create_provider

    device = create_provider("AndroidSauceLabs", target="Samsung Galaxy S23")
    await device.connect()
    result = await device.run_application("build/app-release.apk")
    await device.disconnect()
"""

import asyncio
import base64
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Optional, Sequence, Union

import aiohttp

from app_runner.config import get_settings
from app_runner.device.provider import (
    ConnectionState,
    DeviceProvider,
    DeviceStatus,
    LogResult,
    RunResult,
)
from app_runner.device.screenshot import verify_image
from app_runner.errors import DeviceError, MissingCredentialsError
from app_runner.utils.logger import get_logger
from app_runner.utils.security import SecureString, mask_sensitive

logger = get_logger(__name__)

STORAGE_PREFIX = "storage:"


class SauceLabsProvider(DeviceProvider, ABC):
    """
    Base class for Sauce Labs real-device providers.

    Subclasses set the Appium platform name, automation backend and the log
    type Appium exposes for the platform.
    """

    platform = "SauceLabs"
    requires_lock = False

    # Power is managed by Sauce Labs
    COMMANDS = {
        "disconnect": None,
        "poweron": None,
        "poweroff": None,
        "reset": None,
    }

    appium_platform: ClassVar[str] = ""
    automation_name: ClassVar[str] = ""
    log_type: ClassVar[str] = ""

    def __init__(
        self,
        target: Optional[str] = None,
        sdk_root: Optional[Union[str, Path]] = None,
        username: Optional[str] = None,
        access_key: Optional[str] = None,
        region: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Initialize a Sauce Labs provider.

        Args:
            target: Device name (e.g. "iPhone 15"); defaults to SAUCE_DEVICE_NAME.
            sdk_root: Unused; accepted for a uniform constructor.
            username: Sauce Labs user; defaults to SAUCE_USERNAME.
            access_key: Sauce Labs access key; defaults to SAUCE_ACCESS_KEY.
            region: Data center; defaults to SAUCE_REGION.
        """
        super().__init__(target, None, **kwargs)

        settings = get_settings().saucelabs
        self.username = username or settings.sauce_username
        self.access_key = SecureString(access_key or settings.sauce_access_key)
        if not self.username or not self.access_key:
            raise MissingCredentialsError(self.platform, ["SAUCE_USERNAME", "SAUCE_ACCESS_KEY"])

        self.region = region or settings.sauce_region
        self.device_name = self.target or settings.sauce_device_name
        self.session_name = settings.sauce_session_name
        self.api_url = f"https://api.{self.region}.saucelabs.com"
        self.hub_url = f"https://ondemand.{self.region}.saucelabs.com/wd/hub"

        self._http: Optional[aiohttp.ClientSession] = None
        self._session_id: Optional[str] = None
        self._capabilities: dict[str, Any] = {}
        self._app_ref: Optional[str] = None

    # ── HTTP plumbing ────────────────────────────────────────────

    def _get_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(self.username, self.access_key.get_secret())

    async def _get_http(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                auth=self._get_auth(),
                timeout=aiohttp.ClientTimeout(total=300),
            )
        return self._http

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            DeviceError: On connection errors and non-2xx responses.
        """
        http = await self._get_http()
        try:
            async with http.request(method, url, **kwargs) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    raise DeviceError(
                        f"Sauce Labs request failed: {method} {url} -> {response.status}: {error_text[:500]}"
                    )
                if response.content_type == "application/json":
                    return await response.json()
                return await response.text()
        except aiohttp.ClientError as e:
            raise DeviceError(f"Sauce Labs request failed: {method} {url}: {e}") from e

    def _session_url(self, path: str = "") -> str:
        if not self._session_id:
            raise DeviceError(f"No {self.platform} app session; run an application first")
        return f"{self.hub_url}/session/{self._session_id}{path}"

    async def _execute(self, script: str, args: Optional[dict[str, Any]] = None) -> Any:
        data = await self._request(
            "POST",
            self._session_url("/execute/sync"),
            json={"script": script, "args": [args or {}]},
        )
        return data.get("value") if isinstance(data, dict) else None

    # ── Connection ───────────────────────────────────────────────

    async def connect(self, target: Optional[str] = None) -> None:
        if target:
            self.target = target
            self.device_name = target

        logger.info(
            "Connecting to Sauce Labs",
            platform=self.platform,
            user=mask_sensitive(self.username),
            region=self.region,
            device=self.device_name or "any",
        )
        # Validates the credentials before any upload happens
        await self._request("GET", f"{self.api_url}/rest/v1.2/users/{self.username}/concurrency")
        self.state = ConnectionState.CONNECTED
        logger.info("Connected to Sauce Labs", platform=self.platform)

    async def disconnect(self) -> None:
        """End the Appium session, if any, and close HTTP resources."""
        try:
            await self._end_app_session()
        except Exception as e:
            logger.warning("Error terminating Sauce Labs session", error=str(e))
        finally:
            if self._http and not self._http.closed:
                await self._http.close()
            self._http = None
            self.state = ConnectionState.DISCONNECTED
        logger.info("Disconnected from Sauce Labs", platform=self.platform)

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", f"{self.api_url}/rest/v1.2/users/{self.username}/concurrency")
            return True
        except DeviceError as e:
            logger.warning("Connection test failed", platform=self.platform, error=str(e))
            return False

    # ── Applications ─────────────────────────────────────────────

    async def install_application(self, package_path: str) -> None:
        """Upload a build to Sauce Labs app storage for the next run."""
        self._app_ref = await self._upload(package_path)

    async def _upload(self, package_path: str) -> str:
        if package_path.startswith(STORAGE_PREFIX):
            return package_path

        path = Path(package_path)
        if not path.is_file():
            raise DeviceError(f"Application package not found: {path}")

        logger.info("Uploading application", platform=self.platform, path=str(path))
        form = aiohttp.FormData()
        form.add_field("name", path.name)
        form.add_field("payload", path.read_bytes(), filename=path.name)
        data = await self._request("POST", f"{self.api_url}/v1/storage/upload", data=form)

        file_id = data.get("item", {}).get("id") if isinstance(data, dict) else None
        if not file_id:
            raise DeviceError(f"Sauce Labs upload returned no file id: {data}")
        logger.info("Application uploaded", platform=self.platform, file_id=file_id)
        return f"{STORAGE_PREFIX}{file_id}"

    def _desired_capabilities(self, app_ref: str, arguments: Sequence[str]) -> dict[str, Any]:
        capabilities: dict[str, Any] = {
            "platformName": self.appium_platform,
            "appium:app": app_ref,
            "appium:automationName": self.automation_name,
            "sauce:options": {
                "name": self.session_name,
                "appiumVersion": "latest",
            },
        }
        if self.device_name:
            capabilities["appium:deviceName"] = self.device_name
        capabilities.update(self._launch_arguments(arguments))
        return capabilities

    def _launch_arguments(self, arguments: Sequence[str]) -> dict[str, Any]:
        return {}

    async def _start_app_session(self, app_ref: str, arguments: Sequence[str]) -> None:
        await self._end_app_session()
        capabilities = self._desired_capabilities(app_ref, arguments)
        data = await self._request(
            "POST",
            f"{self.hub_url}/session",
            json={"capabilities": {"alwaysMatch": capabilities}},
        )
        value = data.get("value", {}) if isinstance(data, dict) else {}
        self._session_id = value.get("sessionId")
        if not self._session_id:
            raise DeviceError(f"Sauce Labs did not return a session id: {data}")
        self._capabilities = value.get("capabilities", {})
        logger.info(
            "Sauce Labs session started",
            platform=self.platform,
            session_id=self._session_id,
            device=self._capabilities.get("deviceName", self.device_name),
        )

    async def _end_app_session(self) -> None:
        if not self._session_id:
            return
        session_id, self._session_id = self._session_id, None
        await self._request("DELETE", f"{self.hub_url}/session/{session_id}")
        logger.info("Sauce Labs session terminated", session_id=session_id)

    async def run_application(
        self,
        executable_path: str,
        arguments: Optional[Sequence[str]] = None,
    ) -> RunResult:
        """
        Upload (if needed) and launch a build in a fresh Appium session.

        The run ends when the application leaves the foreground. Sauce Labs
        cannot report an exit code.
        """
        arguments = list(arguments or [])
        started_at = datetime.now()
        app_ref = await self._upload(executable_path) if executable_path else self._app_ref
        if not app_ref:
            raise DeviceError("No application given and none installed")

        logger.info("Running application", platform=self.platform, app=app_ref, arguments=arguments)
        await self._start_app_session(app_ref, arguments)

        app_id = await self._foreground_app()
        await self._wait_for_background(app_id)

        output = [f"Session {self._session_id} on {self._capabilities.get('deviceName', self.device_name)}"]
        try:
            logs = await self.get_device_logs()
            output.extend(str(entry.get("message", "")) for entry in logs.logs)
        except DeviceError as e:
            logger.warning("Could not collect logs after run", platform=self.platform, error=str(e))

        return RunResult(
            platform=self.platform,
            executable_path=executable_path,
            arguments=arguments,
            started_at=started_at,
            finished_at=datetime.now(),
            output=output,
            exit_code=None,
        )

    @abstractmethod
    async def _foreground_app(self) -> str:
        """Identifier of the application currently in the foreground."""
        pass

    async def _wait_for_background(self, app_id: str) -> None:
        if not app_id:
            return
        deadline = time.monotonic() + self.run_timeout
        while await self._foreground_app() == app_id:
            if time.monotonic() >= deadline:
                logger.warning(
                    "Application still running after run timeout",
                    platform=self.platform,
                    app_id=app_id,
                    run_timeout=self.run_timeout,
                )
                return
            await asyncio.sleep(self.PROCESS_POLL_INTERVAL)

    # ── Status, logs, screenshots ────────────────────────────────

    async def get_device_status(self) -> DeviceStatus:
        data: dict[str, Any] = {
            "name": self._capabilities.get("deviceName") or self.device_name or "",
            "region": self.region,
            "session_id": self._session_id,
        }
        for key in ("platformVersion", "deviceModel", "deviceManufacturer"):
            if key in self._capabilities:
                data[key] = self._capabilities[key]
        return DeviceStatus(
            platform=self.platform,
            status="Online" if self.is_connected else "Offline",
            status_data=data,
        )

    async def get_device_logs(self, log_type: str = "All", max_entries: int = 0) -> LogResult:
        data = await self._request("POST", self._session_url("/se/log"), json={"type": self.log_type})
        entries = data.get("value", []) if isinstance(data, dict) else []
        logs = [
            {
                "timestamp": entry.get("timestamp"),
                "level": entry.get("level", ""),
                "message": entry.get("message", ""),
            }
            for entry in entries
        ]
        if max_entries > 0:
            logs = logs[-max_entries:]
        return LogResult(platform=self.platform, log_type=log_type, logs=logs, count=len(logs))

    async def take_screenshot(self, output_path: Union[str, Path]) -> Path:
        data = await self._request("GET", self._session_url("/screenshot"))
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(base64.b64decode(data.get("value", "")))
        verify_image(path)
        logger.info("Screenshot saved", platform=self.platform, path=str(path))
        return path

    async def copy_device_item(self, source: str, destination: str) -> None:
        data = await self._request("POST", self._session_url("/appium/device/pull_file"), json={"path": source})
        dest = Path(destination)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(base64.b64decode(data.get("value", "")))

    async def get_system_info(self) -> dict[str, Any]:
        return dict(self._capabilities) or {"device_name": self.device_name, "region": self.region}

    async def get_running_processes(self) -> list[Any]:
        return []


class AndroidSauceLabsProvider(SauceLabsProvider):
    platform = "AndroidSauceLabs"
    appium_platform = "Android"
    automation_name = "UiAutomator2"
    log_type = "logcat"

    def _launch_arguments(self, arguments: Sequence[str]) -> dict[str, Any]:
        if not arguments:
            return {}
        return {"appium:optionalIntentArguments": " ".join(arguments)}

    async def _foreground_app(self) -> str:
        data = await self._request("GET", self._session_url("/appium/device/current_package"))
        return data.get("value", "") if isinstance(data, dict) else ""


class IOSSauceLabsProvider(SauceLabsProvider):
    platform = "iOSSauceLabs"
    appium_platform = "iOS"
    automation_name = "XCUITest"
    log_type = "syslog"

    def _launch_arguments(self, arguments: Sequence[str]) -> dict[str, Any]:
        if not arguments:
            return {}
        return {"appium:processArguments": {"args": list(arguments)}}

    async def _foreground_app(self) -> str:
        info = await self._execute("mobile: activeAppInfo")
        return info.get("bundleId", "") if isinstance(info, dict) else ""
