"""
Atomic installation and removal of toolchain versions.

Install protocol (under the version's install lock):
1. Extract the verified archive into ``installs/.tmp-<version>-<random>/``
2. Collapse a single top-level folder into the install root
3. Write the completion marker ``.install-complete`` inside it
4. Rename it to ``installs/<version>`` in one step

A reader therefore never sees ``installs/<version>`` without its marker.
Interrupted installs leave only ``.tmp-*`` siblings, which listings ignore.
The next install of that version deletes them, and purge_leftovers()
reclaims those of any version not being installed right now.

A replacing install stages and marks the new tree first; the old directory
is moved to trash only at the final swap, so a failed reinstall keeps it.

Removal renames the committed directory to ``installs/.trash-*`` after
clearing the active pointer (if it names that version), then deletes the
trash directory.
"""

import json
import logging
import tempfile
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from armtoolchain.core.cancellation import CancellationToken, check_cancelled
from armtoolchain.core.directory import MARKER_FILENAME, DataLayout
from armtoolchain.core.exceptions import (
    CorruptState,
    FilesystemError,
    InvalidVersionError,
    NotInstalled,
)
from armtoolchain.core.filesystem import (
    atomic_write,
    directory_size,
    extract_archive,
    normalize_root_directory,
    remove_file,
    safe_rmtree,
)
from armtoolchain.core.locking import LockManager, try_lock
from armtoolchain.toolchain.active import ActiveToolchainTracker
from armtoolchain.toolchain.cache import CacheEntry, PurgeResult
from armtoolchain.toolchain.version import VersionId

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".tmp-"
TRASH_PREFIX = ".trash-"


@dataclass(frozen=True)
class InstallRecord:
    """A committed install directory and the content of its marker."""

    version: VersionId
    path: Path
    marker: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def platform(self) -> Optional[str]:
        return self.marker.get("platform")


class InstallManager:
    """
    Commits archives into versioned install directories and removes them.

    Methods ending in ``_locked`` expect the caller to hold the version's
    install lock already; the client facade uses them to keep one lock
    across check, download, install and activation.
    """

    def __init__(
        self,
        layout: DataLayout,
        lock_manager: LockManager,
        tracker: ActiveToolchainTracker,
    ):
        self.layout = layout
        self.installs_dir = layout.installs_dir
        self.lock_manager = lock_manager
        self.tracker = tracker

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def record(self, version: VersionId) -> Optional[InstallRecord]:
        """
        Return the committed record for a version, or None if absent.

        Raises:
            CorruptState: If the install directory exists without a valid
                completion marker
        """
        path = self.layout.install_path(version)
        if not path.exists():
            return None

        marker_path = path / MARKER_FILENAME
        if not marker_path.is_file():
            raise CorruptState(
                f"Install directory {path} has no completion marker. "
                f"Run 'armtoolchain remove {version}' to delete it."
            )

        try:
            marker = json.loads(marker_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CorruptState(f"Unreadable completion marker {marker_path}: {e}") from e
        if not isinstance(marker, dict):
            raise CorruptState(f"Malformed completion marker {marker_path}")

        return InstallRecord(version=version, path=path, marker=marker)

    def is_installed(self, version: VersionId) -> bool:
        return self.layout.is_committed(version)

    def installed_versions(self) -> List[VersionId]:
        """
        Committed versions in ascending order.

        Temporary and trash directories are ignored, as are directories
        without a completion marker.
        """
        if not self.installs_dir.exists():
            return []

        versions = []
        for entry in self.installs_dir.iterdir():
            if entry.name.startswith(".") or not entry.is_dir():
                continue
            if not (entry / MARKER_FILENAME).is_file():
                logger.warning(f"Ignoring install directory without marker: {entry}")
                continue
            try:
                versions.append(VersionId.parse(entry.name))
            except InvalidVersionError:
                logger.warning(f"Ignoring install directory with invalid name: {entry}")

        return sorted(versions)

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install(
        self,
        entry: CacheEntry,
        blocking: bool = True,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        replace: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> InstallRecord:
        """
        Install a verified cache entry.

        Installing an already committed version returns the existing record,
        unless ``replace`` is set: then the new tree is staged completely and
        swapped in for the old one, which stays in place if anything fails.

        Raises:
            Busy: If blocking is False and the version is being installed
            Cancelled: If cancel_token is set before the commit
            ArchiveExtractionError: If the archive cannot be unpacked
            CorruptState: If the final path exists without a marker
        """
        version = entry.descriptor.version
        with self.lock_manager.install_lock(
            version, blocking=blocking, cancel_token=cancel_token
        ):
            return self.install_locked(
                entry, progress_callback, replace=replace, cancel_token=cancel_token
            )

    def install_locked(
        self,
        entry: CacheEntry,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        replace: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> InstallRecord:
        descriptor = entry.descriptor
        version = descriptor.version
        final_path = self.layout.install_path(version)

        if not replace:
            existing = self.record(version)
            if existing is not None:
                logger.info(f"Toolchain {version} already installed at {existing.path}")
                return existing

        check_cancelled(cancel_token)
        self._remove_leftovers(version, TEMP_PREFIX)

        try:
            temp_dir = Path(
                tempfile.mkdtemp(prefix=f"{TEMP_PREFIX}{version}-", dir=self.installs_dir)
            )
        except OSError as e:
            raise FilesystemError(f"Failed to create temporary install directory: {e}") from e

        try:
            logger.info(f"Extracting {entry.path.name} for {version}")
            extract_archive(entry.path, temp_dir, progress_callback)
            check_cancelled(cancel_token)

            root = normalize_root_directory(temp_dir)
            marker = {
                "version": version.name,
                "platform": descriptor.platform,
                "sha256": descriptor.sha256,
                "source_url": descriptor.url,
                "installed_at": datetime.now(timezone.utc).isoformat(),
            }
            atomic_write(root / MARKER_FILENAME, json.dumps(marker, indent=2))
            check_cancelled(cancel_token)

            if final_path.exists():
                self._swap_in(root, final_path, version)
            else:
                try:
                    root.rename(final_path)
                except OSError as e:
                    raise FilesystemError(
                        f"Failed to commit install directory {final_path}: {e}"
                    ) from e
        finally:
            # Either the extracted root was moved away or the install failed
            safe_rmtree(temp_dir, require_prefix=self.installs_dir)

        logger.info(f"Installed {version} to {final_path}")
        return InstallRecord(version=version, path=final_path, marker=marker)

    def _swap_in(self, root: Path, final_path: Path, version: VersionId) -> None:
        """Replace an existing install directory with a staged root."""
        self._remove_leftovers(version, TRASH_PREFIX)
        trash_path = self._trash_path(version)

        try:
            final_path.rename(trash_path)
        except OSError as e:
            raise FilesystemError(f"Failed to move aside {final_path}: {e}") from e

        try:
            root.rename(final_path)
        except OSError as e:
            try:
                trash_path.rename(final_path)
            except OSError:
                logger.error(f"Could not restore {final_path} from {trash_path.name}")
            raise FilesystemError(
                f"Failed to commit install directory {final_path}: {e}"
            ) from e

        logger.info(f"Replaced previous install of {version}")
        safe_rmtree(trash_path, require_prefix=self.installs_dir)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove(self, version: VersionId, blocking: bool = True) -> int:
        """
        Remove an installed version, clearing the active pointer if it
        names that version. Returns the number of bytes freed.

        A directory without a completion marker is removed as well; this is
        the explicit way to get rid of one.

        Raises:
            NotInstalled: If no install directory exists for the version
            Busy: If blocking is False and a required lock is held
        """
        with self.lock_manager.install_lock(version, blocking=blocking):
            return self.remove_locked(version, blocking=blocking)

    def remove_locked(self, version: VersionId, blocking: bool = True) -> int:
        path = self.layout.install_path(version)
        if not path.exists():
            raise NotInstalled(str(version))

        self._remove_leftovers(version, TRASH_PREFIX)
        trash_path = self._trash_path(version)

        with self.tracker.locked(blocking=blocking):
            if self.tracker.get_raw() in (str(version), version.name):
                self.tracker.clear_locked()
            try:
                path.rename(trash_path)
            except OSError as e:
                raise FilesystemError(f"Failed to remove {path}: {e}") from e

        freed = directory_size(trash_path)
        safe_rmtree(trash_path, require_prefix=self.installs_dir)
        logger.info(f"Removed toolchain {version} ({freed} bytes)")
        return freed

    def remove_all(self, blocking: bool = True) -> Dict[VersionId, int]:
        """
        Remove every installed version.

        The pointer is cleared once under the active lock; then each version
        enumerated at that point is removed under its own install lock, in
        version order. Versions committed after the enumeration stay.

        Returns:
            Bytes freed per removed version
        """
        self.tracker.clear(blocking=blocking)

        removed = {}
        for version in self.installed_versions():
            with self.lock_manager.install_lock(version, blocking=blocking):
                if not self.layout.install_path(version).exists():
                    logger.debug(f"{version} was removed concurrently, skipping")
                    continue
                removed[version] = self.remove_locked(version, blocking=blocking)
        return removed

    def purge_leftovers(self, result: Optional[PurgeResult] = None) -> PurgeResult:
        """
        Delete temp and trash directories left under installs/ by crashed
        installs and removals.

        A leftover whose version has its install lock held elsewhere belongs
        to an operation still in progress and is skipped.

        Args:
            result: PurgeResult to add to (a new one by default)
        """
        if result is None:
            result = PurgeResult()

        if not self.installs_dir.exists():
            return result

        for item in sorted(self.installs_dir.iterdir()):
            version = leftover_version(item.name)
            if version is None:
                continue

            lock_path = self.lock_manager.lock_path(f"install-{version}")
            with try_lock(lock_path) as acquired:
                if not acquired:
                    logger.info(f"Skipping {item.name}: {version} is being installed")
                    result.skipped.append(item.name)
                    continue

                if item.is_dir() and not item.is_symlink():
                    size = directory_size(item)
                    safe_rmtree(item, require_prefix=self.installs_dir)
                else:
                    size = item.lstat().st_size
                    remove_file(item)

            logger.debug(f"Purged leftover {item.name} ({size} bytes)")
            result.removed.append(item.name)
            result.bytes_freed += size

        return result

    def _trash_path(self, version: VersionId) -> Path:
        return self.installs_dir / f"{TRASH_PREFIX}{version}-{uuid.uuid4().hex[:8]}"

    def _remove_leftovers(self, version: VersionId, prefix: str) -> None:
        """Delete temp or trash directories left by a crashed operation on a version."""
        stem = f"{prefix}{version}-"
        for leftover in self.installs_dir.glob(f"{stem}*"):
            # The random suffix never contains '-'; anything else belongs to
            # a longer version name such as v21.1.1-rc1
            if "-" in leftover.name[len(stem):]:
                continue
            logger.warning(f"Removing leftover directory {leftover.name}")
            safe_rmtree(leftover, require_prefix=self.installs_dir)


def leftover_version(name: str) -> Optional[str]:
    """
    Version named by a temp or trash directory, or None for other names.

    Example:
        >>> leftover_version(".tmp-v21.1.1-k2j4x9_a")
        'v21.1.1'
    """
    for prefix in (TEMP_PREFIX, TRASH_PREFIX):
        if name.startswith(prefix):
            version, sep, suffix = name[len(prefix):].rpartition("-")
            if sep and version and suffix:
                return version
    return None


__all__ = [
    "InstallManager",
    "InstallRecord",
    "TEMP_PREFIX",
    "TRASH_PREFIX",
    "leftover_version",
]

