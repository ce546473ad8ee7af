"""Input validation for application artifacts."""

import logging
from pathlib import Path
from typing import Any, List, Union

from .errors import CalabashError, ErrorCode

logger = logging.getLogger(__name__)

APK_EXTENSION = ".apk"


class ValidationResult:
    """Validation result with detailed feedback."""

    def __init__(
        self,
        is_valid: bool,
        sanitized_value: Any = None,
        errors: List[str] = None,
        warnings: List[str] = None,
    ):
        self.is_valid = is_valid
        self.sanitized_value = sanitized_value
        self.errors = errors or []
        self.warnings = warnings or []

    def add_error(self, error: str):
        """Add validation error."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str):
        """Add validation warning."""
        self.warnings.append(warning)


class ApkValidator:
    """Validates the application artifact handed to the runner."""

    @staticmethod
    def validate_apk_path(apk_path: Union[str, Path, None]) -> ValidationResult:
        """Check extension first, then existence, then that it is a file."""
        result = ValidationResult(True)

        if apk_path is None or not str(apk_path).strip():
            result.add_error("invalid path to apk file: no path given")
            return result

        path = Path(apk_path).expanduser()
        if path.suffix.lower() != APK_EXTENSION:
            result.add_error(f"invalid path to apk file: {path} is not an {APK_EXTENSION}")
            return result

        if not path.exists():
            result.add_error(f"invalid path to apk file: {path} does not exist")
            return result

        if not path.is_file():
            result.add_error(f"invalid path to apk file: {path} is not a file")
            return result

        if path.stat().st_size == 0:
            result.add_warning(f"{path} is empty")

        result.sanitized_value = path.resolve()
        return result


def ensure_valid_apk(apk_path: Union[str, Path, None]) -> Path:
    """Return the resolved apk path or raise ``CalabashError``."""
    result = ApkValidator.validate_apk_path(apk_path)
    for warning in result.warnings:
        logger.warning(warning)
    if not result.is_valid:
        raise CalabashError(
            "; ".join(result.errors),
            ErrorCode.INVALID_APPLICATION_ARTIFACT,
            {"apk_path": str(apk_path)},
        )
    return result.sanitized_value
