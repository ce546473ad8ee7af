"""Extraction of the runtime bundle the helper process runs from.

The bundle is shipped as ``scripts/gems.zip`` inside the package and unpacked
once per version into ``<tmp>/calabash-android-gems-<version>``. A zero-byte
``extracted`` marker is written last, so an interrupted extraction is simply
redone by the next call.

Two processes extracting the same version for the first time at once race
with each other; callers running tests in parallel should provision first.
"""

import logging
import shutil
import tempfile
import zipfile
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Optional, Union

from . import __version__
from .config import BUNDLE_ARCHIVE_NAME, BUNDLE_RESOURCE_DIR, EXTRACTED_MARKER
from .errors import CalabashError, ErrorCode

logger = logging.getLogger(__name__)

CACHE_DIR_PREFIX = "calabash-android-gems-"


def embedded_bundle() -> Traversable:
    """Location of the bundle archive inside the installed package."""
    return resources.files("calabash_android") / BUNDLE_RESOURCE_DIR / BUNDLE_ARCHIVE_NAME


class RuntimeBundleProvisioner:
    """Ensures the versioned runtime bundle exists on local disk."""

    def __init__(
        self,
        bundle: Union[Traversable, Path, None] = None,
        cache_root: Union[str, Path, None] = None,
    ) -> None:
        self.bundle = bundle if bundle is not None else embedded_bundle()
        self.cache_root = Path(cache_root) if cache_root else Path(tempfile.gettempdir())

    def extraction_dir(self, version: Optional[str] = None) -> Path:
        return self.cache_root / f"{CACHE_DIR_PREFIX}{version or __version__}"

    def ensure(self, version: Optional[str] = None) -> Path:
        """Return the extraction directory, extracting the bundle if needed."""
        target = self._prepare_dir(self.extraction_dir(version))
        marker = target / EXTRACTED_MARKER
        if marker.exists():
            logger.debug(f"Runtime bundle already extracted in {target}")
            return target

        logger.info(f"Extracting runtime bundle into {target}")
        archive = self._copy_bundle_to(target)
        try:
            with zipfile.ZipFile(archive) as bundle_zip:
                bundle_zip.extractall(target)
            archive.unlink()
            marker.touch()
        except (OSError, zipfile.BadZipFile) as e:
            archive.unlink(missing_ok=True)
            raise CalabashError(
                f"Failed to unzip {BUNDLE_ARCHIVE_NAME} into {target}: {e}",
                ErrorCode.PROVISIONING_FAILED,
                {"directory": str(target)},
            ) from e

        return target

    def _prepare_dir(self, target: Path) -> Path:
        try:
            target.mkdir(parents=True, exist_ok=True)
        except FileExistsError as e:
            raise CalabashError(
                f"Runtime bundle directory is invalid. {target} is not a directory",
                ErrorCode.PROVISIONING_FAILED,
                {"directory": str(target)},
            ) from e
        except OSError as e:
            raise CalabashError(
                f"Can't create runtime bundle extraction directory {target}: {e}",
                ErrorCode.PROVISIONING_FAILED,
                {"directory": str(target)},
            ) from e
        return target

    def _copy_bundle_to(self, target: Path) -> Path:
        if not self.bundle.is_file():
            raise CalabashError(
                f"Can't copy {BUNDLE_ARCHIVE_NAME} from the bundle. "
                "Make sure you are using the correct package",
                ErrorCode.PROVISIONING_FAILED,
                {"resource": str(self.bundle)},
            )

        destination = target / BUNDLE_ARCHIVE_NAME
        try:
            with self.bundle.open("rb") as source, open(destination, "wb") as out:
                shutil.copyfileobj(source, out)
        except OSError as e:
            destination.unlink(missing_ok=True)
            raise CalabashError(
                f"Can't copy {BUNDLE_ARCHIVE_NAME} from the bundle to {target}. "
                f"Failed to create destination file: {e}",
                ErrorCode.PROVISIONING_FAILED,
                {"directory": str(target)},
            ) from e
        return destination
