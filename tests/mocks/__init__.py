"""Mock infrastructure for calabash-android testing."""

from pathlib import Path

from .adb_mock import (
    APK_NAME,
    MOCK_AVD_NAME,
    MOCK_DEVICE_ID,
    MOCK_PACKAGE,
    FakeADBExecutor,
    FakeDevice,
    MockADBCommand,
    wait_until_reaped,
)

FAKE_HELPER = Path(__file__).with_name("fake_helper.py")

__all__ = [
    "APK_NAME",
    "FAKE_HELPER",
    "MOCK_AVD_NAME",
    "MOCK_DEVICE_ID",
    "MOCK_PACKAGE",
    "FakeADBExecutor",
    "FakeDevice",
    "MockADBCommand",
    "wait_until_reaped",
]
