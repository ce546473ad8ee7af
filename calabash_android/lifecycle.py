"""Installation of the application and its test server on the resolved device."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .adb_manager import DeviceCommandExecutor
from .application import Application
from .bridge import CalabashBridge
from .deadline import start_deadline
from .device_resolver import DeviceResolver
from .errors import CalabashError, ErrorCode
from .models import Configuration

logger = logging.getLogger(__name__)

TEST_SERVER_PACKAGE_SUFFIX = ".test"


class AppLifecycleManager:
    """Brings the application under test to a known installed state."""

    def __init__(
        self,
        adb: DeviceCommandExecutor,
        bridge: CalabashBridge,
        resolver: Optional[DeviceResolver] = None,
    ) -> None:
        self.adb = adb
        self.bridge = bridge
        self.resolver = resolver or DeviceResolver(adb)

    async def start(self, configuration: Configuration) -> Application:
        """Resolve the device, reconcile installation and bind the bridge.

        Runs under a ``start_timeout`` deadline shared by every device command.
        """
        try:
            async with start_deadline(configuration.start_timeout):
                async with asyncio.timeout(configuration.start_timeout):
                    return await self._start(configuration)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise CalabashError(
                f"Starting {self.bridge.apk_path.name} did not finish within "
                f"{configuration.start_timeout} seconds",
                ErrorCode.ADB_TIMEOUT,
                {"start_timeout": configuration.start_timeout},
            ) from e

    async def _start(self, configuration: Configuration) -> Application:
        serial = await self.resolver.resolve(configuration)
        apk_path = self.bridge.apk_path
        package_name = await self.adb.get_package_name(apk_path)

        await self.reconcile(
            serial,
            package_name,
            apk_path,
            self.bridge.test_server_path,
            configuration,
        )
        await self.bridge.start_application(serial, package_name)
        return Application(package_name, serial, self.bridge, configuration)

    async def reconcile(
        self,
        serial: str,
        package_name: str,
        apk_path: Path,
        test_server_path: Optional[Path],
        configuration: Configuration,
    ) -> None:
        """Install or reinstall so the device holds the app and its test server."""
        if test_server_path is None:
            raise CalabashError(
                "No test server available. Call setup() before start()",
                ErrorCode.BRIDGE_NOT_STARTED,
            )
        timeout = configuration.install_timeout
        test_server_package = package_name + TEST_SERVER_PACKAGE_SUFFIX

        app_installed = await self.adb.is_package_installed(serial, package_name)
        if app_installed and not configuration.should_reinstall_app:
            logger.info(f"{package_name} already installed on {serial}, keeping it")
            app_changed = False
        else:
            if configuration.should_reinstall_app:
                await self.adb.uninstall(serial, package_name, timeout=timeout)
            await self.adb.install(serial, apk_path, timeout=timeout)
            app_changed = True

        # The test server is signed against the app, so it follows the app
        test_server_installed = await self.adb.is_package_installed(serial, test_server_package)
        if app_changed or configuration.should_reinstall_app or not test_server_installed:
            if test_server_installed:
                await self.adb.uninstall(serial, test_server_package, timeout=timeout)
            await self.adb.install(serial, test_server_path, timeout=timeout)
        else:
            logger.info(f"{test_server_package} already installed on {serial}, keeping it")
