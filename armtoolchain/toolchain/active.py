"""
Active toolchain pointer.

The pointer is a one-line file at the data-directory root naming the active
version. It is replaced with a temp-file-then-rename write, so readers see
either the old or the new value, never a half-written file. Mutations take
the ``active`` lock, which is distinct from every per-version lock.
"""

import logging
from typing import Optional

from armtoolchain.core.directory import DataLayout
from armtoolchain.core.exceptions import (
    CorruptState,
    FilesystemError,
    InvalidVersionError,
    NotInstalled,
)
from armtoolchain.core.filesystem import atomic_write, remove_file
from armtoolchain.core.locking import LockManager
from armtoolchain.toolchain.version import VersionId

logger = logging.getLogger(__name__)


class ActiveToolchainTracker:
    """
    Reads and updates the active toolchain pointer.

    The ``*_locked`` variants assume the caller already holds the active
    lock (see locked()).
    """

    def __init__(self, layout: DataLayout, lock_manager: LockManager):
        self.layout = layout
        self.pointer_path = layout.active_pointer
        self.lock_manager = lock_manager

    def locked(self, blocking: bool = True):
        """Context manager holding the active lock."""
        return self.lock_manager.active_lock(blocking=blocking)

    def get(self) -> Optional[VersionId]:
        """
        Return the active version, or None if none is set.

        Raises:
            CorruptState: If the pointer file is unreadable or holds an
                invalid version
        """
        try:
            content = self.pointer_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptState(f"Cannot read active toolchain pointer {self.pointer_path}: {e}") from e

        name = content.strip()
        try:
            return VersionId.parse(name)
        except InvalidVersionError as e:
            raise CorruptState(
                f"Active toolchain pointer {self.pointer_path} holds an invalid "
                f"version {name!r}. Remove the file or run 'armtoolchain use <version>'."
            ) from e

    def set(self, version: VersionId, blocking: bool = True) -> None:
        """
        Make a committed version the active one.

        Raises:
            NotInstalled: If the version has no committed install
            Busy: If blocking is False and the pointer is being updated
        """
        with self.locked(blocking=blocking):
            self.set_locked(version)

    def set_locked(self, version: VersionId) -> None:
        if not self.layout.is_committed(version):
            raise NotInstalled(str(version))
        atomic_write(self.pointer_path, f"{version}\n")
        logger.info(f"Active toolchain set to {version}")

    def clear(self, blocking: bool = True) -> None:
        """Unset the active toolchain. Clearing an unset pointer is a no-op."""
        with self.locked(blocking=blocking):
            self.clear_locked()

    def clear_locked(self) -> None:
        if self.pointer_path.exists():
            remove_file(self.pointer_path)
            logger.info("Active toolchain cleared")

    def get_raw(self) -> Optional[str]:
        """Pointer content without validation, for diagnostics."""
        try:
            return self.pointer_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise FilesystemError(f"Cannot read {self.pointer_path}: {e}") from e


__all__ = ["ActiveToolchainTracker"]
