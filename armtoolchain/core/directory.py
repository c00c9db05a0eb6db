"""
Data directory structure management for armtoolchain.

All persistent state lives under one data directory. Deleting ``cache/``
only affects in-progress or orphaned downloads; deleting a single install
directory is equivalent to removing that version.

Directory Structure:
    <data-dir>/
        - cache/            : Staged release archives, one subdirectory per
                              (version, platform) download key
        - installs/         : One committed directory per installed version,
                              each containing a completion marker
        - locks/            : Advisory lock files (never purged)
        - active-toolchain  : Active version pointer (absent when unset)
        - config.yaml       : Optional user configuration
"""

import os
from dataclasses import dataclass
from pathlib import Path

from armtoolchain.core.exceptions import FilesystemError


CACHE_DIRNAME = "cache"
INSTALLS_DIRNAME = "installs"
LOCKS_DIRNAME = "locks"
ACTIVE_POINTER_FILENAME = "active-toolchain"
CONFIG_FILENAME = "config.yaml"
MARKER_FILENAME = ".install-complete"


def get_default_data_dir() -> Path:
    """
    Get the platform-specific default data directory.

    Returns:
        Path: The default data directory.
            - Windows: %LOCALAPPDATA%\\armtoolchain
            - Linux/macOS: ~/.armtoolchain

    Raises:
        FilesystemError: If LOCALAPPDATA is not set on Windows
    """
    if os.name == "nt":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if not local_app_data:
            raise FilesystemError(
                "LOCALAPPDATA environment variable is not set. "
                "Cannot determine data directory."
            )
        return Path(local_app_data) / "armtoolchain"
    return Path.home() / ".armtoolchain"


def verify_directory_writable(path: Path) -> bool:
    """
    Verify that a directory exists and is writable.

    Args:
        path: Directory path to verify.

    Returns:
        bool: True if directory exists and is writable, False otherwise.
    """
    if not path.is_dir():
        return False

    try:
        test_file = path / f".write_test.{os.getpid()}"
        test_file.touch()
        test_file.unlink()
        return True
    except OSError:
        return False


@dataclass(frozen=True)
class DataLayout:
    """Paths of every persisted artifact under one data directory root."""

    root: Path

    @property
    def cache_dir(self) -> Path:
        return self.root / CACHE_DIRNAME

    @property
    def installs_dir(self) -> Path:
        return self.root / INSTALLS_DIRNAME

    @property
    def locks_dir(self) -> Path:
        return self.root / LOCKS_DIRNAME

    @property
    def active_pointer(self) -> Path:
        return self.root / ACTIVE_POINTER_FILENAME

    @property
    def config_file(self) -> Path:
        return self.root / CONFIG_FILENAME

    def install_path(self, version) -> Path:
        """Final path of the install directory for a version."""
        return self.installs_dir / str(version)

    def marker_path(self, version) -> Path:
        """Completion marker of the install directory for a version."""
        return self.install_path(version) / MARKER_FILENAME

    def is_committed(self, version) -> bool:
        """Whether a version has a committed install (marker present)."""
        return self.marker_path(version).is_file()

    def ensure(self) -> "DataLayout":
        """
        Create the directory structure if it doesn't exist.

        Returns:
            self, for chaining

        Raises:
            FilesystemError: If the root cannot be created or is not writable
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            for subdir in (self.cache_dir, self.installs_dir, self.locks_dir):
                subdir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Failed to create data directory structure at {self.root}: {e}"
            ) from e

        if not verify_directory_writable(self.root):
            raise FilesystemError(
                f"Data directory at {self.root} is not writable. "
                "Please check directory permissions."
            )

        return self


__all__ = [
    "DataLayout",
    "get_default_data_dir",
    "verify_directory_writable",
    "MARKER_FILENAME",
]
