"""Drive Android UI tests through the calabash helper process."""

__version__ = "0.1.0"

from .adb_manager import ADBManager, Device, DeviceCommandExecutor
from .application import Application
from .bridge import CalabashBridge
from .device_resolver import DeviceResolver
from .errors import (
    CalabashAndroidError,
    CalabashError,
    ElementIndexError,
    ErrorCode,
    ErrorKind,
    OperationTimedOutError,
)
from .lifecycle import AppLifecycleManager
from .models import Configuration, WaitOptions
from .polling import PollingEngine, wait_for
from .provisioner import RuntimeBundleProvisioner
from .runner import AndroidRunner
from .ui_elements import UIElement, UIElements

__all__ = [
    "ADBManager",
    "AndroidRunner",
    "AppLifecycleManager",
    "Application",
    "CalabashAndroidError",
    "CalabashBridge",
    "CalabashError",
    "Configuration",
    "ElementIndexError",
    "Device",
    "DeviceCommandExecutor",
    "DeviceResolver",
    "ErrorCode",
    "ErrorKind",
    "OperationTimedOutError",
    "PollingEngine",
    "RuntimeBundleProvisioner",
    "UIElement",
    "UIElements",
    "WaitOptions",
    "wait_for",
]
