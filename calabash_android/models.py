"""Pydantic models for runner configuration and wait options."""

from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import (
    DEFAULT_BRIDGE_TIMEOUT,
    DEFAULT_HELPER_COMMAND,
    DEFAULT_INSTALL_TIMEOUT,
    DEFAULT_START_TIMEOUT,
)


class WaitOptions(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {"timeout_seconds": 20, "retry_frequency_seconds": 5},
                {
                    "timeout_seconds": 10,
                    "retry_frequency_seconds": 1,
                    "initial_delay_seconds": 2,
                    "failure_message": "login button never appeared",
                    "throw_on_timeout": False,
                },
            ]
        },
    )
    timeout_seconds: float = Field(
        default=30, ge=0, description="Wall-clock budget for the wait"
    )
    retry_frequency_seconds: float = Field(
        default=1, gt=0, description="Sleep between two evaluations"
    )
    initial_delay_seconds: float = Field(
        default=0, ge=0, description="Sleep before the first evaluation"
    )
    failure_message: str = Field(
        default="Timed out waiting for condition",
        description="Message carried verbatim by the timeout error",
    )
    throw_on_timeout: bool = Field(
        default=True, description="Raise on timeout instead of returning False"
    )
    screenshot_on_failure: bool = Field(
        default=False, description="Capture a screenshot before reporting a timeout"
    )


class Configuration(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {"serial": "emulator-5554"},
                {"device_name": "Nexus_5_API_19", "should_reinstall_app": True},
                {"serial": "emulator-5554", "logs_directory": "logs"},
            ]
        },
    )
    serial: Optional[str] = Field(
        default=None, description="Serial of the device to run on; wins over device_name"
    )
    device_name: Optional[str] = Field(
        default=None, description="AVD name or model of a running device"
    )
    should_reinstall_app: bool = Field(
        default=False, description="Uninstall and install even if already installed"
    )
    logs_directory: Optional[Path] = Field(
        default=None, description="Directory for helper logs and failure screenshots"
    )
    default_wait: WaitOptions = Field(
        default_factory=WaitOptions, description="Options used when wait_for gets none"
    )
    adb_path: str = Field(default="adb", description="adb executable")
    aapt_path: str = Field(default="aapt", description="aapt executable")
    helper_command: Tuple[str, ...] = Field(
        default=DEFAULT_HELPER_COMMAND,
        description="argv of the helper process; {bundle} and {apk} are substituted",
    )
    bridge_timeout: float = Field(
        default=DEFAULT_BRIDGE_TIMEOUT, gt=0, description="Seconds per bridge call"
    )
    install_timeout: float = Field(
        default=DEFAULT_INSTALL_TIMEOUT, gt=0, description="Seconds per install/uninstall"
    )
    start_timeout: float = Field(
        default=DEFAULT_START_TIMEOUT, gt=0, description="Total budget for start()"
    )

    @field_validator("serial", "device_name", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("helper_command")
    @classmethod
    def _helper_command_not_empty(cls, value):
        if not value:
            raise ValueError("helper_command must not be empty")
        return value
