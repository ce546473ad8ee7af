"""ADB Manager: the device command-line boundary used by the runner."""

import asyncio
import logging
import re
import shlex
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Protocol, Union

from .config import COMMAND_TIMEOUTS, DEFAULT_COMMAND_TIMEOUT
from .deadline import effective_timeout
from .errors import CalabashError, ErrorCode

logger = logging.getLogger(__name__)


class ADBCommands:
    """Standardized device tool command patterns."""

    DEVICES_LIST: ClassVar[str] = "{adb} devices -l"
    GETPROP: ClassVar[str] = "{adb} -s {device} shell getprop {prop}"
    AVD_NAME: ClassVar[str] = "{adb} -s {device} emu avd name"

    PACKAGE_PATH: ClassVar[str] = "{adb} -s {device} shell pm path {package}"
    INSTALL: ClassVar[str] = "{adb} -s {device} install -r {apk}"
    UNINSTALL: ClassVar[str] = "{adb} -s {device} uninstall {package}"

    SCREENCAP: ClassVar[str] = "{adb} -s {device} shell screencap -p {path}"
    PULL: ClassVar[str] = "{adb} -s {device} pull {remote} {local}"
    REMOVE: ClassVar[str] = "{adb} -s {device} shell rm -f {path}"

    BADGING: ClassVar[str] = "{aapt} dump badging {apk}"


RUNNING_STATE = "device"

_PACKAGE_NAME = re.compile(r"package:\s+name='([^']+)'")
_NOT_INSTALLED_MARKERS = (
    "DELETE_FAILED_INTERNAL_ERROR",
    "Unknown package",
    "not installed for",
)


@dataclass
class Device:
    """One line of ``adb devices -l``; state is as observed at listing time."""

    serial: str
    state: str
    properties: Dict[str, str] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.state == RUNNING_STATE

    @property
    def is_emulator(self) -> bool:
        return self.serial.startswith("emulator-")


class DeviceCommandExecutor(Protocol):
    """Capability the resolver, lifecycle manager and bridge depend on."""

    async def list_devices(self) -> List[Device]: ...

    async def is_boot_completed(self, serial: str) -> bool: ...

    async def get_device_names(self, device: Device) -> List[str]: ...

    async def get_package_name(self, apk_path: Path) -> str: ...

    async def is_package_installed(self, serial: str, package: str) -> bool: ...

    async def install(self, serial: str, apk_path: Path, timeout: Optional[float] = None) -> None: ...

    async def uninstall(self, serial: str, package: str, timeout: Optional[float] = None) -> bool: ...

    async def capture_screenshot(self, serial: str, local_path: Path) -> Path: ...


class ADBManager:
    """Runs adb/aapt commands. Holds no device state between calls."""

    def __init__(self, adb_path: str = "adb", aapt_path: str = "aapt") -> None:
        self.adb_path = adb_path
        self.aapt_path = aapt_path

    @classmethod
    def from_configuration(cls, configuration) -> "ADBManager":
        return cls(adb_path=configuration.adb_path, aapt_path=configuration.aapt_path)

    def format_command(self, template: str, **values: Any) -> str:
        """Fill a command template, shell-quoting every substituted value."""
        quoted = {key: shlex.quote(str(value)) for key, value in values.items()}
        return template.format(
            adb=shlex.quote(self.adb_path), aapt=shlex.quote(self.aapt_path), **quoted
        )

    async def execute_command(
        self,
        command: str,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> Dict[str, Any]:
        """
        Run a command and report the outcome as a dict; never raises.
        """
        try:
            cmd_parts = shlex.split(command)
            process = await asyncio.create_subprocess_exec(
                *cmd_parts,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            budget = effective_timeout(timeout)

            try:
                async with asyncio.timeout(budget):
                    stdout, stderr = await process.communicate()
            except (asyncio.TimeoutError, TimeoutError):
                await self._terminate(process)
                return {
                    "success": False,
                    "timed_out": True,
                    "error": f"Command timed out after {budget} seconds",
                    "command": command,
                }
            finally:
                # Still running only when an enclosing deadline cancelled the task
                if process.returncode is None:
                    await self._kill(process)

            return {
                "success": process.returncode == 0,
                "stdout": stdout.decode("utf-8", errors="replace") if stdout else "",
                "stderr": stderr.decode("utf-8", errors="replace") if stderr else "",
                "returncode": process.returncode,
                "command": command,
            }
        except (OSError, ValueError) as e:
            return {
                "success": False,
                "error": f"Command execution failed: {str(e)}",
                "command": command,
            }

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await asyncio.shield(process.wait())

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate, then kill, a process that overran its timeout."""
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            async with asyncio.timeout(1.0):
                await process.communicate()
        except (asyncio.TimeoutError, TimeoutError):
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    async def run(
        self,
        command: str,
        failure_message: str,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        error_code: ErrorCode = ErrorCode.ADB_COMMAND_FAILED,
    ) -> str:
        """Execute ``command`` and return stdout, raising ``CalabashError`` on failure."""
        result = await self.execute_command(command, timeout=timeout)
        if result["success"]:
            return result["stdout"]

        if result.get("timed_out"):
            error_code = ErrorCode.ADB_TIMEOUT
        detail = (
            result.get("error")
            or result.get("stderr", "").strip()
            or result.get("stdout", "").strip()
            or f"exit code {result.get('returncode')}"
        )
        logger.error(f"{failure_message}: {detail} ({command})")
        raise CalabashError(
            f"{failure_message}: {detail}",
            error_code,
            {"command": command, "returncode": result.get("returncode")},
        )

    async def list_devices(self) -> List[Device]:
        """List all devices adb knows about, whatever their state."""
        output = await self.run(
            self.format_command(ADBCommands.DEVICES_LIST),
            "Failed to list devices",
            timeout=COMMAND_TIMEOUTS["list_devices"],
        )

        devices = []
        for line in output.strip().splitlines():
            line = line.strip()
            if not line or line.startswith("*") or line.startswith("List of devices"):
                continue

            parts = line.split()
            if len(parts) < 2:
                continue

            properties = {}
            for part in parts[2:]:
                if ":" in part:
                    key, value = part.split(":", 1)
                    properties[key] = value

            devices.append(Device(serial=parts[0], state=parts[1], properties=properties))

        logger.debug(f"Devices: {[(d.serial, d.state) for d in devices]}")
        return devices

    async def get_prop(self, serial: str, prop: str) -> str:
        output = await self.run(
            self.format_command(ADBCommands.GETPROP, device=serial, prop=prop),
            f"Failed to read {prop} from {serial}",
            timeout=COMMAND_TIMEOUTS["getprop"],
        )
        return output.strip()

    async def is_boot_completed(self, serial: str) -> bool:
        return await self.get_prop(serial, "sys.boot_completed") == "1"

    async def get_device_names(self, device: Device) -> List[str]:
        """Names a device answers to: its AVD name (emulators) and its model."""
        names = []
        if device.is_emulator:
            result = await self.execute_command(
                self.format_command(ADBCommands.AVD_NAME, device=device.serial),
                timeout=COMMAND_TIMEOUTS["avd_name"],
            )
            if result["success"]:
                lines = [l.strip() for l in result["stdout"].splitlines() if l.strip()]
                if lines and lines[0] != "OK":
                    names.append(lines[0])
            else:
                logger.debug(f"No AVD name for {device.serial}: {result}")

        model = device.properties.get("model")
        if model:
            names.append(model)
        return names

    async def get_package_name(self, apk_path: Path) -> str:
        """Read the application package name from the apk manifest."""
        output = await self.run(
            self.format_command(ADBCommands.BADGING, apk=apk_path),
            f"Failed to read the package name of {apk_path}",
            timeout=COMMAND_TIMEOUTS["package_name"],
            error_code=ErrorCode.PACKAGE_NAME_UNREADABLE,
        )
        match = _PACKAGE_NAME.search(output)
        if not match:
            raise CalabashError(
                f"Could not find the package name of {apk_path} in aapt output",
                ErrorCode.PACKAGE_NAME_UNREADABLE,
                {"apk_path": str(apk_path)},
            )
        return match.group(1)

    async def is_package_installed(self, serial: str, package: str) -> bool:
        command = self.format_command(ADBCommands.PACKAGE_PATH, device=serial, package=package)
        result = await self.execute_command(command, timeout=COMMAND_TIMEOUTS["package_installed"])

        # pm path exits non-zero for unknown packages; adb itself reports "error:"
        stderr = result.get("stderr", "")
        if not result["success"] and ("error:" in stderr or "error" in result):
            detail = result.get("error") or stderr.strip()
            raise CalabashError(
                f"Failed to check whether {package} is installed on {serial}: {detail}",
                ErrorCode.ADB_COMMAND_FAILED,
                {"command": command},
            )

        return any(
            line.strip().startswith("package:")
            for line in result.get("stdout", "").splitlines()
        )

    async def install(self, serial: str, apk_path: Path, timeout: Optional[float] = None) -> None:
        output = await self.run(
            self.format_command(ADBCommands.INSTALL, device=serial, apk=apk_path),
            f"Failed to install {apk_path} on {serial}",
            timeout=timeout or DEFAULT_COMMAND_TIMEOUT,
            error_code=ErrorCode.INSTALL_FAILED,
        )
        # Older adb versions exit 0 and print the failure
        failure = next((l.strip() for l in output.splitlines() if l.strip().startswith("Failure")), None)
        if failure:
            raise CalabashError(
                f"Failed to install {apk_path} on {serial}: {failure}",
                ErrorCode.INSTALL_FAILED,
                {"apk_path": str(apk_path), "serial": serial},
            )
        logger.info(f"Installed {apk_path.name} on {serial}")

    async def uninstall(self, serial: str, package: str, timeout: Optional[float] = None) -> bool:
        """Uninstall ``package``; returns False if it was not installed."""
        command = self.format_command(ADBCommands.UNINSTALL, device=serial, package=package)
        result = await self.execute_command(command, timeout=timeout or DEFAULT_COMMAND_TIMEOUT)
        output = f"{result.get('stdout', '')}\n{result.get('stderr', '')}"

        if "Success" in output:
            logger.info(f"Uninstalled {package} from {serial}")
            return True
        if any(marker in output for marker in _NOT_INSTALLED_MARKERS):
            logger.debug(f"{package} was not installed on {serial}")
            return False

        detail = result.get("error") or output.strip() or f"exit code {result.get('returncode')}"
        raise CalabashError(
            f"Failed to uninstall {package} from {serial}: {detail}",
            ErrorCode.ADB_TIMEOUT if result.get("timed_out") else ErrorCode.UNINSTALL_FAILED,
            {"command": command},
        )

    async def capture_screenshot(self, serial: str, local_path: Union[str, Path]) -> Path:
        """Capture the device screen into ``local_path`` (png)."""
        local_path = Path(local_path)
        device_path = f"/sdcard/calabash_screenshot_{uuid.uuid4().hex}.png"
        try:
            await self.run(
                self.format_command(ADBCommands.SCREENCAP, device=serial, path=device_path),
                f"Screenshot capture failed on {serial}",
                timeout=COMMAND_TIMEOUTS["screencap"],
                error_code=ErrorCode.SCREENSHOT_FAILED,
            )
            await self.run(
                self.format_command(
                    ADBCommands.PULL, device=serial, remote=device_path, local=local_path
                ),
                f"Failed to pull screenshot to {local_path}",
                timeout=COMMAND_TIMEOUTS["pull"],
                error_code=ErrorCode.SCREENSHOT_FAILED,
            )
        finally:
            cleanup = await self.execute_command(
                self.format_command(ADBCommands.REMOVE, device=serial, path=device_path),
                timeout=COMMAND_TIMEOUTS["screencap"],
            )
            if not cleanup["success"]:
                logger.warning(f"Could not remove {device_path} from {serial}: {cleanup}")
        return local_path
