"""Resolution of the configured device to one running serial."""

import logging
from typing import List

from .adb_manager import Device, DeviceCommandExecutor
from .errors import CalabashError, ErrorCode
from .models import Configuration

logger = logging.getLogger(__name__)


class DeviceResolver:
    """Turns a configuration into exactly one running device serial.

    Resolution order:
    1. ``serial``, if set (wins over ``device_name``)
    2. ``device_name``, matched against AVD names and models of running devices
    3. otherwise an error; the resolver never guesses a device

    The device list is fetched again on every call.
    """

    def __init__(self, adb: DeviceCommandExecutor) -> None:
        self.adb = adb

    async def resolve(self, configuration: Configuration) -> str:
        if configuration.serial:
            return await self._resolve_serial(configuration.serial)
        if configuration.device_name:
            return await self._resolve_device_name(configuration.device_name)
        raise CalabashError(
            "Could not determine device serial, set serial or device name in configuration",
            ErrorCode.DEVICE_SERIAL_UNDETERMINED,
        )

    async def _is_running(self, device: Device) -> bool:
        return device.running and await self.adb.is_boot_completed(device.serial)

    async def _resolve_serial(self, serial: str) -> str:
        devices = await self.adb.list_devices()
        device = next((d for d in devices if d.serial == serial), None)
        if device is None:
            raise CalabashError(
                f"{serial} not found in the device list, installation failed",
                ErrorCode.DEVICE_NOT_FOUND,
                {"serial": serial, "devices": [d.serial for d in devices]},
            )

        if not await self._is_running(device):
            state = device.state if not device.running else "booting"
            raise CalabashError(
                f"{serial} not found in the device list, installation failed. "
                f"Device state is '{state}'",
                ErrorCode.DEVICE_NOT_RUNNING,
                {"serial": serial, "state": state},
            )

        logger.info(f"Using device {serial}")
        return serial

    async def _resolve_device_name(self, device_name: str) -> str:
        devices = await self.adb.list_devices()
        seen: List[str] = []
        for device in devices:
            if not device.running:
                continue
            names = await self.adb.get_device_names(device)
            seen.extend(names)
            if device_name in names and await self.adb.is_boot_completed(device.serial):
                logger.info(f"Device '{device_name}' is running as {device.serial}")
                return device.serial

        raise CalabashError(
            f"Device '{device_name}' is not running. Start it before installing the app",
            ErrorCode.DEVICE_NOT_RUNNING,
            {"device_name": device_name, "running_devices": seen},
        )
