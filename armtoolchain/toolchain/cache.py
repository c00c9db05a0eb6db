"""
Download cache for release archives.

Each (version, platform) key owns one directory under ``cache/``:

    cache/
      v21.1.1-linux-x64/
        ATfE-21.1.1-Linux-x86_64.tar.xz.part   (transfer in progress)
        ATfE-21.1.1-Linux-x86_64.tar.xz        (verified, awaiting install)

Downloads for a key are serialized by the key's download lock, so at most
one transfer per key is ever in flight across all processes. A verified
entry is consumed by the install manager and then discarded; anything left
behind by a crash is only reclaimed by purge_cache().
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

import requests

from armtoolchain.core.cancellation import CancellationToken
from armtoolchain.core.directory import DataLayout
from armtoolchain.core.download import DownloadProgress, download_file, verify_checksum
from armtoolchain.core.exceptions import FilesystemError, ResolutionFailed
from armtoolchain.core.filesystem import (
    directory_size,
    is_supported_archive,
    remove_file,
    safe_rmtree,
)
from armtoolchain.core.locking import LockManager, try_lock
from armtoolchain.toolchain.version import ReleaseDescriptor

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"


@dataclass(frozen=True)
class CacheEntry:
    """A verified archive staged in the cache."""

    key: str
    path: Path
    descriptor: ReleaseDescriptor


@dataclass
class PurgeResult:
    """Outcome of purge_cache()."""

    removed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    bytes_freed: int = 0


class DownloadCacheManager:
    """
    Fetches release archives into the cache with one download per key.

    Example:
        >>> cache = DownloadCacheManager(layout, lock_manager)
        >>> entry = cache.fetch(descriptor)
        >>> entry.path.name
        'ATfE-21.1.1-Linux-x86_64.tar.xz'
    """

    def __init__(
        self,
        layout: DataLayout,
        lock_manager: LockManager,
        session: Optional[requests.Session] = None,
        timeout=(10, 60),
    ):
        self.layout = layout
        self.cache_dir = layout.cache_dir
        self.lock_manager = lock_manager
        self.session = session or requests.Session()
        self.timeout = timeout

    def entry_path(self, descriptor: ReleaseDescriptor) -> Path:
        """Final path of the verified archive for a descriptor."""
        asset_name = descriptor.asset_name
        if not asset_name or Path(asset_name).name != asset_name or asset_name in (".", ".."):
            raise ResolutionFailed(
                f"Cannot download {asset_name!r} because it has an invalid name"
            )
        if not is_supported_archive(asset_name):
            raise ResolutionFailed(f"Unsupported archive type for {asset_name}")
        return self.cache_dir / descriptor.cache_key / asset_name

    def fetch(
        self,
        descriptor: ReleaseDescriptor,
        blocking: bool = True,
        progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CacheEntry:
        """
        Return a verified cache entry for a descriptor, downloading if needed.

        A waiter that blocked on another caller's download finds the verified
        archive in place and reuses it after checking its checksum again.

        Args:
            descriptor: Release to fetch
            blocking: Wait for a concurrent download of the same key (True)
                or fail with Busy (False)
            progress_callback: Receives DownloadProgress updates
            cancel_token: Stops the transfer with Cancelled once set

        Raises:
            Busy: If blocking is False and the key is being downloaded
            Cancelled: If cancel_token is set before the archive is verified
            ChecksumMismatch: If the downloaded bytes fail verification
            DownloadTimeout: If the transfer times out
            NetworkError: If the transfer fails
        """
        key = descriptor.cache_key
        final_path = self.entry_path(descriptor)
        partial_path = final_path.with_name(final_path.name + PARTIAL_SUFFIX)

        with self.lock_manager.download_lock(
            key, blocking=blocking, cancel_token=cancel_token
        ):
            if final_path.exists():
                if verify_checksum(final_path, descriptor.sha256):
                    logger.info(f"Using cached archive {final_path.name}")
                    return CacheEntry(key=key, path=final_path, descriptor=descriptor)
                logger.warning(f"Cached archive {final_path.name} failed verification, discarding")
                remove_file(final_path)

            logger.info(f"Downloading {descriptor.asset_name} <{descriptor.url}>")
            download_file(
                descriptor.url,
                partial_path,
                descriptor.sha256,
                expected_size=descriptor.size,
                session=self.session,
                progress_callback=progress_callback,
                resume=True,
                timeout=self.timeout,
                cancel_token=cancel_token,
            )

            try:
                partial_path.replace(final_path)
            except OSError as e:
                raise FilesystemError(f"Failed to commit download {final_path}: {e}") from e

        return CacheEntry(key=key, path=final_path, descriptor=descriptor)

    def discard(self, entry: CacheEntry) -> None:
        """Delete a consumed cache entry and its key directory."""
        with self.lock_manager.download_lock(entry.key):
            key_dir = entry.path.parent
            safe_rmtree(key_dir, require_prefix=self.cache_dir)
            logger.debug(f"Discarded cache entry {entry.key}")

    def purge_cache(self) -> PurgeResult:
        """
        Delete every cache entry not locked by an in-flight download.

        Entries whose download lock is held elsewhere are skipped. Stray
        files at the top of the cache directory are removed too.
        """
        result = PurgeResult()

        if not self.cache_dir.exists():
            return result

        for item in sorted(self.cache_dir.iterdir()):
            if item.is_dir() and not item.is_symlink():
                lock_path = self.lock_manager.lock_path(f"download-{item.name}")
                with try_lock(lock_path) as acquired:
                    if not acquired:
                        logger.info(f"Skipping {item.name}: download in progress")
                        result.skipped.append(item.name)
                        continue

                    size = directory_size(item)
                    safe_rmtree(item, require_prefix=self.cache_dir)
            else:
                size = item.lstat().st_size
                remove_file(item)

            logger.debug(f"Purged {item.name} ({size} bytes)")
            result.removed.append(item.name)
            result.bytes_freed += size

        logger.info(
            f"Purged {len(result.removed)} cache entries ({result.bytes_freed} bytes), "
            f"skipped {len(result.skipped)}"
        )
        return result


__all__ = ["DownloadCacheManager", "CacheEntry", "PurgeResult"]
