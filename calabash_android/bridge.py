"""Bridge to the long-lived calabash helper process.

One ``CalabashBridge`` owns one helper process for one application. The
helper is spoken to over its stdin/stdout, one JSON document per line:

    -> {"id": 3, "method": "query", "params": {"selector": "button"}}
    <- {"id": 3, "ok": true, "result": [{"class": "android.widget.Button", ...}]}
    <- {"id": 3, "ok": false, "error": {"type": "stale_element", "message": "..."}}

Selectors are passed through untouched; their grammar belongs to the helper.
Calls are serialized, the helper has no notion of concurrent requests.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, TextIO, Tuple, Union

from .adb_manager import ADBManager, DeviceCommandExecutor
from .config import BRIDGE_LOG_FILE, TEST_SERVERS_DIR
from .deadline import effective_timeout
from .errors import CalabashError, ErrorCode
from .models import Configuration
from .provisioner import RuntimeBundleProvisioner
from .ui_elements import UIElement, UIElements
from .validation import ensure_valid_apk

logger = logging.getLogger(__name__)

# Tree dumps of large screens come back as a single line
STREAM_LIMIT = 16 * 1024 * 1024

HELPER_ERROR_CODES = {
    "stale_element": ErrorCode.STALE_ELEMENT,
    "not_found": ErrorCode.ELEMENT_NOT_FOUND,
}


class CalabashBridge:
    """Typed operations over one helper process session."""

    def __init__(
        self,
        apk_path: Union[str, Path],
        configuration: Optional[Configuration] = None,
        provisioner: Optional[RuntimeBundleProvisioner] = None,
        adb: Optional[DeviceCommandExecutor] = None,
    ) -> None:
        self.apk_path = Path(apk_path)
        self.configuration = configuration or Configuration()
        self.provisioner = provisioner or RuntimeBundleProvisioner()
        self.adb = adb or ADBManager.from_configuration(self.configuration)

        self.bundle_dir: Optional[Path] = None
        self.test_server_path: Optional[Path] = None
        self.serial: Optional[str] = None
        self.package_name: Optional[str] = None

        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._log_file: Optional[TextIO] = None
        self._lock = asyncio.Lock()
        self._request_id = 0
        self._screenshot_count = 0
        self._is_setup = False

    async def __aenter__(self) -> "CalabashBridge":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def is_setup(self) -> bool:
        return self._is_setup

    async def setup(self) -> None:
        """Validate the apk, provision the bundle, open the session, build the test server.

        Runs once per bridge; the session is closed again if any step fails.
        """
        if self._is_setup:
            logger.debug(f"Bridge for {self.apk_path.name} already set up")
            return

        self.apk_path = ensure_valid_apk(self.apk_path)
        self.bundle_dir = await asyncio.to_thread(self.provisioner.ensure)
        try:
            await self.open()
            self.test_server_path = await self._build_test_server()
        except BaseException:
            await self.close()
            raise
        self._is_setup = True
        logger.info(f"Bridge ready for {self.apk_path.name} (test server {self.test_server_path.name})")

    async def open(self) -> None:
        """Start the helper process."""
        if self.is_open:
            return

        argv = [
            part.format(bundle=self.bundle_dir or "", apk=self.apk_path)
            for part in self.configuration.helper_command
        ]
        env = os.environ.copy()
        env["APP_PATH"] = str(self.apk_path)
        if self.bundle_dir:
            env["GEM_HOME"] = str(self.bundle_dir)
            env["GEM_PATH"] = str(self.bundle_dir)
            env["PATH"] = os.pathsep.join([str(self.bundle_dir / "bin"), env.get("PATH", "")])

        logger.debug(f"Starting helper process: {argv}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=str(self.apk_path.parent),
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise CalabashError(
                f"Failed to start helper process {argv[0]}: {e}",
                ErrorCode.BRIDGE_NOT_STARTED,
                {"command": argv},
            ) from e

        logs_directory = self.configuration.logs_directory
        if logs_directory:
            Path(logs_directory).mkdir(parents=True, exist_ok=True)
            self._log_file = open(Path(logs_directory) / BRIDGE_LOG_FILE, "a", encoding="utf-8")
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process))

    async def close(self) -> None:
        """Shut the helper down; safe to call more than once."""
        process = self._process
        if process is None:
            return
        self._process = None

        if process.returncode is None:
            try:
                process.stdin.write(b'{"id": 0, "method": "shutdown", "params": {}}\n')
                await process.stdin.drain()
                process.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass
            try:
                async with asyncio.timeout(5):
                    await process.wait()
            except (asyncio.TimeoutError, TimeoutError):
                logger.warning("Helper process did not exit, terminating it")
                try:
                    process.terminate()
                    async with asyncio.timeout(2):
                        await process.wait()
                except ProcessLookupError:
                    pass
                except (asyncio.TimeoutError, TimeoutError):
                    process.kill()
                    await process.wait()

        if self._stderr_task is not None:
            try:
                async with asyncio.timeout(1):
                    await self._stderr_task
            except (asyncio.TimeoutError, TimeoutError):
                self._stderr_task.cancel()
            self._stderr_task = None

        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None
        logger.debug(f"Helper process exited with code {process.returncode}")

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        while True:
            line = await process.stderr.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            logger.debug(f"helper: {text}")
            if self._log_file is not None:
                self._log_file.write(text + "\n")
                self._log_file.flush()

    async def _call(self, method: str, timeout: Optional[float] = None, **params: Any) -> Any:
        async with self._lock:
            return await self._call_unlocked(method, timeout, params)

    async def _call_unlocked(self, method: str, timeout: Optional[float], params: Dict[str, Any]) -> Any:
        process = self._process
        if process is None or process.returncode is not None:
            raise CalabashError(
                f"Bridge session is not running, cannot {method}",
                ErrorCode.BRIDGE_NOT_STARTED,
            )

        self._request_id += 1
        request_id = self._request_id
        payload = json.dumps({"id": request_id, "method": method, "params": params})
        budget = effective_timeout(timeout or self.configuration.bridge_timeout)

        try:
            process.stdin.write(payload.encode("utf-8") + b"\n")
            await process.stdin.drain()
            async with asyncio.timeout(budget):
                response = await self._read_response(process, method, request_id)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise CalabashError(
                f"Bridge call '{method}' timed out after {budget} seconds",
                ErrorCode.BRIDGE_COMMUNICATION_FAILED,
                {"method": method},
            ) from e
        except (BrokenPipeError, ConnectionResetError, ValueError) as e:
            raise CalabashError(
                f"Bridge call '{method}' failed: {e}",
                ErrorCode.BRIDGE_COMMUNICATION_FAILED,
                {"method": method},
            ) from e

        if not response.get("ok"):
            error = response.get("error") or {}
            error_type = error.get("type", "")
            message = error.get("message") or "no details"
            raise CalabashError(
                f"Bridge call '{method}' failed: {message}",
                HELPER_ERROR_CODES.get(error_type, ErrorCode.BRIDGE_COMMAND_FAILED),
                {"method": method, "params": params, "helper_error": error_type},
            )

        return response.get("result")

    async def _read_response(
        self, process: asyncio.subprocess.Process, method: str, request_id: int
    ) -> Dict[str, Any]:
        while True:
            line = await process.stdout.readline()
            if not line:
                raise CalabashError(
                    f"Helper process exited during '{method}'",
                    ErrorCode.BRIDGE_COMMUNICATION_FAILED,
                    {"method": method, "returncode": process.returncode},
                )

            try:
                response = json.loads(line)
            except json.JSONDecodeError as e:
                raise CalabashError(
                    f"Unreadable response to '{method}': {line[:200]!r}",
                    ErrorCode.BRIDGE_COMMUNICATION_FAILED,
                    {"method": method},
                ) from e

            response_id = response.get("id") if isinstance(response, dict) else None
            if response_id == request_id:
                return response
            # Late answer to a call that timed out earlier
            if isinstance(response_id, int) and response_id < request_id:
                logger.warning(f"Discarding late response {response_id} while waiting for {request_id}")
                continue
            raise CalabashError(
                f"Response id {response_id} does not match request {request_id} ('{method}')",
                ErrorCode.BRIDGE_COMMUNICATION_FAILED,
                {"method": method},
            )

    async def _build_test_server(self) -> Path:
        output_dir = self.apk_path.parent / TEST_SERVERS_DIR
        result = await self._call(
            "build_test_server",
            timeout=self.configuration.install_timeout,
            app_path=str(self.apk_path),
            output_dir=str(output_dir),
        )
        path = Path((result or {}).get("path", ""))
        if not path.is_file() or path.suffix != ".apk":
            raise CalabashError(
                f"Test server for {self.apk_path.name} was not built in {output_dir}",
                ErrorCode.TEST_SERVER_BUILD_FAILED,
                {"result": result},
            )
        return path

    def _require_bound(self, action: str) -> str:
        if self.serial is None:
            raise CalabashError(
                f"Bridge is not bound to a device, cannot {action}. Call start() first",
                ErrorCode.BRIDGE_NOT_STARTED,
            )
        return self.serial

    async def start_application(self, serial: str, package_name: str) -> None:
        """Bind the session to ``serial`` and start the test server there."""
        if self.serial is not None:
            raise CalabashError(
                f"Bridge session is already bound to {self.serial}",
                ErrorCode.BRIDGE_ALREADY_BOUND,
                {"serial": self.serial, "requested": serial},
            )
        if not self._is_setup:
            raise CalabashError(
                "Bridge is not set up. Call setup() before start()",
                ErrorCode.BRIDGE_NOT_STARTED,
            )

        await self._call(
            "start",
            timeout=self.configuration.install_timeout,
            serial=serial,
            package=package_name,
            test_server_path=str(self.test_server_path),
        )
        self.serial = serial
        self.package_name = package_name
        logger.info(f"Test server started for {package_name} on {serial}")

    async def query(self, selector: str) -> UIElements:
        self._require_bound("query")
        result = await self._call("query", selector=selector)
        elements = [UIElement.from_descriptor(descriptor, self) for descriptor in result or ()]
        return UIElements(elements, selector)

    def _element_ref(self, element: UIElement) -> Any:
        if element.bridge is not self:
            raise CalabashError(
                f"{element.element_class} element belongs to another session",
                ErrorCode.STALE_ELEMENT,
            )
        return element.ref

    async def touch(self, element: UIElement) -> None:
        self._require_bound("touch")
        await self._call("touch", ref=self._element_ref(element))

    async def set_text(self, element: UIElement, value: str) -> None:
        self._require_bound("set text")
        await self._call("set_text", ref=self._element_ref(element), text=value)

    async def inspect(self) -> AsyncIterator[Tuple[UIElement, int]]:
        """Yield ``(element, depth)`` for the current UI tree in pre-order.

        The tree is fetched once when iteration starts; roots have depth 0.
        """
        self._require_bound("inspect")
        tree = await self._call("dump")
        roots: List[Dict[str, Any]] = tree if isinstance(tree, list) else [tree] if tree else []

        stack = [(UIElement.from_descriptor(root, self), 0) for root in reversed(roots)]
        while stack:
            element, depth = stack.pop()
            yield element, depth
            stack.extend((child, depth + 1) for child in reversed(element.children))

    async def take_screenshot(self, target_dir: Union[str, Path], name_prefix: str) -> Path:
        """Save a screenshot as ``<target_dir>/<name_prefix>_<n>.png``."""
        serial = self._require_bound("take a screenshot")
        target_dir = Path(target_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        async with self._lock:
            path = target_dir / f"{name_prefix}_{self._screenshot_count}.png"
            await self.adb.capture_screenshot(serial, path)
            self._screenshot_count += 1
        logger.info(f"Screenshot saved to {path}")
        return path

    async def read_preferences(self, file_name: str) -> Dict[str, str]:
        """Shared preferences of the application, every value as a string."""
        self._require_bound("read preferences")
        result = await self._call("preferences", name=file_name)
        return {
            str(key): value if isinstance(value, str) else json.dumps(value)
            for key, value in (result or {}).items()
        }
