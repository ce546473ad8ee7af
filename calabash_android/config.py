"""Logging setup and default timeouts for the calabash-android runner."""

import logging
import os

# Log to stderr; helper process output is forwarded through the same handlers
logging.basicConfig(
    level=os.environ.get("CALABASH_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

# Timeouts for device commands (in seconds)
COMMAND_TIMEOUTS = {
    "list_devices": 10,
    "getprop": 10,
    "avd_name": 5,
    "package_installed": 15,
    "package_name": 30,
    "screencap": 15,
    "pull": 30,
}

DEFAULT_COMMAND_TIMEOUT = 30  # Default timeout for commands not in the list

DEFAULT_BRIDGE_TIMEOUT = 60
DEFAULT_INSTALL_TIMEOUT = 180
DEFAULT_START_TIMEOUT = 600

# Helper process launched by the bridge; {bundle} and {apk} are substituted
DEFAULT_HELPER_COMMAND = ("ruby", "{bundle}/bin/calabash-bridge", "{apk}")

BUNDLE_ARCHIVE_NAME = "gems.zip"
BUNDLE_RESOURCE_DIR = "scripts"
EXTRACTED_MARKER = "extracted"
TEST_SERVERS_DIR = "test_servers"
SCREENSHOTS_DIR = "screenshots"
BRIDGE_LOG_FILE = "calabash-bridge.log"
