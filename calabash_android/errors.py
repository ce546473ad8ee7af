"""Error types raised by the calabash-android runner."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Discriminator callers branch on instead of the exception class."""

    OPERATIONAL = "operational"
    TIMEOUT = "timeout"


class ErrorCode(Enum):
    """Standardized error codes for the runner."""

    # Input / packaging errors (1000-1099)
    INVALID_APPLICATION_ARTIFACT = "INPUT_1000"
    PROVISIONING_FAILED = "INPUT_1001"
    INVALID_CONFIGURATION = "INPUT_1002"

    # Device errors (1100-1199)
    DEVICE_SERIAL_UNDETERMINED = "DEVICE_1100"
    DEVICE_NOT_FOUND = "DEVICE_1101"
    DEVICE_NOT_RUNNING = "DEVICE_1102"

    # ADB command errors (1200-1299)
    ADB_COMMAND_FAILED = "ADB_1200"
    ADB_TIMEOUT = "ADB_1201"
    INSTALL_FAILED = "ADB_1202"
    UNINSTALL_FAILED = "ADB_1203"
    PACKAGE_NAME_UNREADABLE = "ADB_1204"

    # UI errors (1300-1399)
    ELEMENT_NOT_FOUND = "UI_1300"
    STALE_ELEMENT = "UI_1301"
    SCREENSHOT_FAILED = "UI_1302"

    # Bridge errors (1400-1499)
    BRIDGE_NOT_STARTED = "BRIDGE_1400"
    BRIDGE_COMMUNICATION_FAILED = "BRIDGE_1401"
    BRIDGE_COMMAND_FAILED = "BRIDGE_1402"
    BRIDGE_ALREADY_BOUND = "BRIDGE_1403"
    TEST_SERVER_BUILD_FAILED = "BRIDGE_1404"

    # Polling (1500-1599)
    OPERATION_TIMED_OUT = "WAIT_1500"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class CalabashAndroidError(Exception):
    """Base class carrying the error kind, code and a readable message.

    ``str(error)`` is exactly ``error.message`` so assertions on message
    content stay reliable.
    """

    kind: ErrorKind = ErrorKind.OPERATIONAL

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        return {
            "kind": self.kind.value,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return self.message


class CalabashError(CalabashAndroidError):
    """Operational failure: bad input, device problems, bridge failures."""

    kind = ErrorKind.OPERATIONAL


class OperationTimedOutError(CalabashAndroidError):
    """Raised only by ``wait_for`` when its deadline is exhausted."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.OPERATION_TIMED_OUT, details)


class ElementIndexError(CalabashError, IndexError):
    """Index past the end of a query result; also a plain ``IndexError``."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.ELEMENT_NOT_FOUND, details)
