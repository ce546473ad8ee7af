"""Entry point: prepare an apk and start it on a device."""

import logging
from pathlib import Path
from typing import Optional, Union

from .adb_manager import ADBManager, DeviceCommandExecutor
from .application import Application
from .bridge import CalabashBridge
from .errors import CalabashError, ErrorCode
from .lifecycle import AppLifecycleManager
from .models import Configuration
from .provisioner import RuntimeBundleProvisioner
from .validation import ensure_valid_apk

logger = logging.getLogger(__name__)


class AndroidRunner:
    """Runs an apk under calabash.

    Usage::

        async with AndroidRunner("app.apk", Configuration(serial="emulator-5554")) as runner:
            await runner.setup()
            application = await runner.start()
            await (await application.query("button marked:'ok'")).first().touch()
    """

    def __init__(
        self,
        apk_path: Union[str, Path],
        configuration: Optional[Configuration] = None,
        adb: Optional[DeviceCommandExecutor] = None,
        provisioner: Optional[RuntimeBundleProvisioner] = None,
    ) -> None:
        self.apk_path = ensure_valid_apk(apk_path)
        self.configuration = configuration or Configuration()
        self.adb = adb or ADBManager.from_configuration(self.configuration)
        self.bridge = CalabashBridge(
            self.apk_path,
            self.configuration,
            provisioner=provisioner,
            adb=self.adb,
        )
        self.lifecycle = AppLifecycleManager(self.adb, self.bridge)
        self.application: Optional[Application] = None

    async def __aenter__(self) -> "AndroidRunner":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def setup(self) -> None:
        """Provision the runtime bundle, start the helper and build the test server."""
        await self.bridge.setup()

    async def start(self) -> Application:
        """Install on the configured device and return the running application."""
        if self.application is not None:
            raise CalabashError(
                f"Application already started on {self.application.installed_on_serial}",
                ErrorCode.BRIDGE_ALREADY_BOUND,
            )
        if not self.bridge.is_setup:
            await self.setup()
        self.application = await self.lifecycle.start(self.configuration)
        return self.application

    async def close(self) -> None:
        await self.bridge.close()
