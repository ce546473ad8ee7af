"""Handle to an application installed and running on one device."""

import logging
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Tuple, Union

from .bridge import CalabashBridge
from .config import SCREENSHOTS_DIR
from .errors import CalabashError, OperationTimedOutError
from .models import Configuration, WaitOptions
from .polling import Condition, PollingEngine
from .ui_elements import UIElement, UIElements

logger = logging.getLogger(__name__)


class Application:
    """An installed application bound to one device through one bridge session."""

    def __init__(
        self,
        package_name: str,
        serial: str,
        bridge: CalabashBridge,
        configuration: Optional[Configuration] = None,
        polling: Optional[PollingEngine] = None,
    ) -> None:
        self._package_name = package_name
        self._installed_on_serial = serial
        self._bridge = bridge
        self.configuration = configuration or bridge.configuration
        self.polling = polling or PollingEngine()

    def __repr__(self) -> str:
        return f"Application(package_name={self._package_name!r}, serial={self._installed_on_serial!r})"

    async def __aenter__(self) -> "Application":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def package_name(self) -> str:
        return self._package_name

    @property
    def installed_on_serial(self) -> str:
        return self._installed_on_serial

    @property
    def bridge(self) -> CalabashBridge:
        return self._bridge

    async def query(self, selector: str) -> UIElements:
        """Evaluate ``selector`` now and return the matching elements."""
        return await self._bridge.query(selector)

    def inspect(self) -> AsyncIterator[Tuple[UIElement, int]]:
        """Pre-order walk of the current UI tree as ``(element, depth)`` pairs."""
        return self._bridge.inspect()

    async def take_screenshot(self, target_dir: Union[str, Path], name_prefix: str) -> Path:
        return await self._bridge.take_screenshot(target_dir, name_prefix)

    async def get_shared_preferences(self, file_name: str) -> Dict[str, str]:
        return await self._bridge.read_preferences(file_name)

    async def wait_for(self, condition: Condition, options: Optional[WaitOptions] = None) -> bool:
        """Poll ``condition`` until it holds; see ``PollingEngine.wait_for``.

        With ``screenshot_on_failure`` a screenshot is saved under
        ``<logs_directory>/screenshots`` before the timeout is reported.
        """
        options = options or self.configuration.default_wait
        try:
            succeeded = await self.polling.wait_for(condition, options)
        except OperationTimedOutError:
            await self._screenshot_on_failure(options)
            raise
        if not succeeded:
            await self._screenshot_on_failure(options)
        return succeeded

    async def wait_for_element(self, selector: str, options: Optional[WaitOptions] = None) -> UIElements:
        """Wait until ``selector`` matches at least one element and return the matches."""
        found = UIElements((), selector)

        async def has_matches() -> bool:
            nonlocal found
            found = await self.query(selector)
            return found.size() > 0

        await self.wait_for(has_matches, options)
        return found

    async def _screenshot_on_failure(self, options: WaitOptions) -> None:
        if not options.screenshot_on_failure:
            return
        logs_directory = self.configuration.logs_directory
        if logs_directory is None:
            logger.warning("screenshot_on_failure is set but logs_directory is not configured")
            return
        try:
            await self.take_screenshot(Path(logs_directory) / SCREENSHOTS_DIR, "wait_for_failure")
        except CalabashError as e:
            # The timeout is the failure being reported
            logger.error(f"Could not capture failure screenshot: {e}")

    async def close(self) -> None:
        await self._bridge.close()
