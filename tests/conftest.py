"""Test configuration and fixtures for calabash-android tests."""

import shutil
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Generator, List

import pytest
import pytest_asyncio

from calabash_android.bridge import CalabashBridge
from calabash_android.models import Configuration
from calabash_android.provisioner import RuntimeBundleProvisioner
from tests.mocks import (
    APK_NAME,
    FAKE_HELPER,
    MOCK_AVD_NAME,
    MOCK_DEVICE_ID,
    MOCK_PACKAGE,
    FakeADBExecutor,
    FakeDevice,
)


class FakeClock:
    """Monotonic clock whose sleep only moves time forward."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def apk_file(temp_dir) -> Path:
    """An application artifact in its own directory."""
    app_dir = temp_dir / "TestAndroidApps"
    app_dir.mkdir()
    apk = app_dir / APK_NAME
    apk.write_bytes(b"PK fake apk")
    return apk


@pytest.fixture
def bundle_zip(temp_dir) -> Path:
    """A runtime bundle archive like the one shipped in the package."""
    archive = temp_dir / "gems.zip"
    with zipfile.ZipFile(archive, "w") as bundle:
        bundle.writestr("bin/calabash-bridge", "#!/usr/bin/env ruby\n")
        bundle.writestr("gems/calabash-android/VERSION", "0.4.0\n")
    return archive


@pytest.fixture
def provisioner(bundle_zip, temp_dir) -> RuntimeBundleProvisioner:
    return RuntimeBundleProvisioner(bundle=bundle_zip, cache_root=temp_dir / "cache")


@pytest.fixture
def fake_device() -> FakeDevice:
    return FakeDevice(MOCK_DEVICE_ID, avd_name=MOCK_AVD_NAME, model="Android_SDK_built_for_x86")


@pytest.fixture
def fake_adb(fake_device) -> FakeADBExecutor:
    return FakeADBExecutor([fake_device], package_name=MOCK_PACKAGE)


@pytest.fixture
def configuration(temp_dir) -> Configuration:
    """Configuration running the fake helper instead of the real one."""
    return Configuration(
        serial=MOCK_DEVICE_ID,
        helper_command=(sys.executable, str(FAKE_HELPER)),
        bridge_timeout=10,
        logs_directory=temp_dir / "logs",
    )


@pytest_asyncio.fixture
async def ready_bridge(apk_file, configuration, provisioner, fake_adb):
    """A bridge that has been set up and bound to the mock device."""
    bridge = CalabashBridge(apk_file, configuration, provisioner=provisioner, adb=fake_adb)
    await bridge.setup()
    await bridge.start_application(MOCK_DEVICE_ID, MOCK_PACKAGE)
    yield bridge
    await bridge.close()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def slow_adb(temp_dir) -> Path:
    """adb stand-in that records its pid and hangs."""
    script = temp_dir / "slow-adb"
    script.write_text(f'#!/bin/sh\necho $$ > "{temp_dir / "adb.pid"}"\nexec sleep 30\n')
    script.chmod(0o755)
    return script

