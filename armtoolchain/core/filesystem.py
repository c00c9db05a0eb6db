"""
Cross-platform file system utilities for armtoolchain.

This module provides the filesystem primitives the lifecycle manager builds
its crash-consistency on:
- Atomic writes (temp file + rename)
- Safe deletion restricted to a required prefix
- Archive extraction (tar.xz, zip, dmg) with path validation
- File hashing and size accounting
"""

import hashlib
import logging
import os
import shutil
import subprocess
import sys
import tarfile
import tempfile
import time
import zipfile
from pathlib import Path
from typing import Callable, Optional, Union

from armtoolchain.core.exceptions import (
    ArchiveExtractionError,
    FilesystemError,
    InsecureArchiveError,
    UnsupportedArchiveFormat,
)

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"

SUPPORTED_ARCHIVE_SUFFIXES = (".tar.xz", ".zip", ".dmg")


# ============================================================================
# Path Utilities
# ============================================================================


def is_relative_to(path: Path, parent: Path) -> bool:
    """
    Check if path is relative to (under) parent directory.

    Example:
        >>> is_relative_to(Path("/home/user/project/file.txt"), Path("/home/user"))
        True
    """
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


# ============================================================================
# Archive Extraction
# ============================================================================


def _validate_archive_path(path: str, destination: Path) -> None:
    """
    Validate that an archive member path is safe to extract.

    Raises:
        InsecureArchiveError: If path attempts directory traversal
    """
    member_path = (destination / path).resolve()

    if not is_relative_to(member_path, destination.resolve()):
        raise InsecureArchiveError(
            f"Archive member '{path}' attempts directory traversal. "
            "This is a security risk and extraction has been blocked."
        )


def is_supported_archive(name: str) -> bool:
    """Check whether a file name has an extension extract_archive() handles."""
    return name.lower().endswith(SUPPORTED_ARCHIVE_SUFFIXES)


def extract_archive(
    archive_path: Union[str, Path],
    destination: Union[str, Path],
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> None:
    """
    Extract an archive to a destination directory.

    Automatically detects archive format from the file name and validates all
    member paths to prevent directory traversal attacks.

    Supported formats:
    - .tar.xz
    - .zip
    - .dmg (macOS only, via hdiutil)

    Args:
        archive_path: Path to the archive file
        destination: Directory to extract to
        progress_callback: Optional callback(current, total) for progress

    Raises:
        UnsupportedArchiveFormat: If archive format is not recognized
        ArchiveExtractionError: If extraction fails
        InsecureArchiveError: If archive contains malicious paths
    """
    archive_path = Path(archive_path)
    destination = Path(destination)

    if not archive_path.exists():
        raise ArchiveExtractionError(f"Archive not found: {archive_path}")

    destination.mkdir(parents=True, exist_ok=True)

    archive_name = archive_path.name.lower()

    try:
        if archive_name.endswith(".zip"):
            _extract_zip(archive_path, destination, progress_callback)
        elif archive_name.endswith(".tar.xz"):
            _extract_tar(archive_path, destination, "r:xz", progress_callback)
        elif archive_name.endswith(".dmg"):
            _extract_dmg(archive_path, destination, progress_callback)
        else:
            raise UnsupportedArchiveFormat(
                f"Unsupported archive format: {archive_path.name}. "
                f"Supported: {', '.join(SUPPORTED_ARCHIVE_SUFFIXES)}"
            )
    except ArchiveExtractionError:
        raise
    except Exception as e:
        raise ArchiveExtractionError(f"Failed to extract {archive_path}: {e}") from e


def _extract_zip(
    archive_path: Path,
    destination: Path,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> None:
    """Extract a ZIP archive, keeping unix permission bits when present."""
    with zipfile.ZipFile(archive_path, "r") as zf:
        members = zf.infolist()
        total = len(members)

        for member in members:
            _validate_archive_path(member.filename, destination)

        for i, member in enumerate(members):
            extracted = zf.extract(member, destination)
            mode = member.external_attr >> 16
            if mode and not member.is_dir():
                os.chmod(extracted, mode & 0o777)
            if progress_callback:
                progress_callback(i + 1, total)


def _extract_tar(
    archive_path: Path,
    destination: Path,
    mode: str,
    progress_callback: Optional[Callable[[int, int], None]] = None,
) -> None:
    """Extract a tar archive with specified compression."""
    with tarfile.open(archive_path, mode) as tar:
        members = tar.getmembers()
        total = len(members)

        for member in members:
            _validate_archive_path(member.name, destination)

        # Extract with filter for security (Python 3.12+)
        # For older Python, we've already validated paths above
        if sys.version_info >= (3, 12):
            tar.extractall(destination, filter="data")
        else:
            tar.extractall(destination)

        if progress_callback:
            progress_callback(total, total)


def _extract_dmg(
    archive_path: Path,
    destination: Path,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    detach_attempts: int = 10,
) -> None:
    """
    Copy the contents of a macOS disk image.

    The image is mounted read-only at a temporary mount point, its first
    top-level directory is copied to the destination, and the image is then
    detached (forcibly if a clean detach keeps failing).
    """
    if sys.platform != "darwin":
        raise UnsupportedArchiveFormat("DMG extraction is only supported on macOS")

    mount_point = Path(tempfile.mkdtemp(prefix="armtoolchain_dmg_"))
    logger.debug(f"Mounting {archive_path} at {mount_point}")
    subprocess.run(
        [
            "hdiutil",
            "attach",
            "-nobrowse",
            "-readonly",
            "-noautoopen",
            "-mountpoint",
            str(mount_point),
            str(archive_path),
        ],
        capture_output=True,
        text=True,
        check=True,
    )

    try:
        contents = find_contained_directory(mount_point)
        if contents is None:
            raise ArchiveExtractionError(
                f"Disk image {archive_path.name} did not contain the expected contents"
            )
        shutil.copytree(contents, destination / contents.name, symlinks=True)
        if progress_callback:
            progress_callback(1, 1)
    finally:
        _detach_dmg(mount_point, detach_attempts)


def _detach_dmg(mount_point: Path, attempts: int) -> None:
    for _ in range(attempts):
        result = subprocess.run(
            ["hdiutil", "detach", str(mount_point)], capture_output=True, text=True
        )
        if result.returncode == 0:
            break
        logger.debug(f"Failed to unmount DMG, retrying: {result.stderr.strip()}")
        time.sleep(0.5)
    else:
        logger.warning(f"Force detaching disk image at {mount_point}")
        subprocess.run(
            ["hdiutil", "detach", "-force", str(mount_point)],
            capture_output=True,
            text=True,
        )

    try:
        mount_point.rmdir()
    except OSError:
        logger.debug(f"Mount point left behind: {mount_point}")


def find_contained_directory(parent: Path) -> Optional[Path]:
    """Return the first real (non-symlink) directory directly inside parent."""
    for entry in sorted(parent.iterdir()):
        if entry.is_dir() and not entry.is_symlink():
            return entry
    return None


def normalize_root_directory(extract_dir: Path) -> Path:
    """
    Return the actual root of an extracted toolchain.

    Release archives usually wrap everything in a single top-level folder
    (e.g. ``ATfE-21.1.1-Linux-x86_64/``); that folder becomes the root.
    Otherwise extract_dir itself is the root.
    """
    items = list(extract_dir.iterdir())

    if len(items) == 1 and items[0].is_dir() and not items[0].is_symlink():
        return items[0]

    return extract_dir


# ============================================================================
# Safe File Operations
# ============================================================================


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Write file atomically using temp file + rename.

    This ensures the file is never in a partially-written state.
    If the write fails, the original file (if any) remains unchanged.

    Args:
        file_path: Path to write to
        content: Content to write (string or bytes)
        encoding: Text encoding (used only for string content)

    Raises:
        FilesystemError: If the temp file cannot be written or renamed
    """
    file_path = Path(file_path)

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Create temp file in same directory (ensures same filesystem)
        temp_fd, temp_path_str = tempfile.mkstemp(
            dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
        )
    except OSError as e:
        raise FilesystemError(f"Failed to write {file_path}: {e}") from e

    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

        # Atomic rename (replaces destination if it exists)
        temp_path.replace(file_path)

    except BaseException as e:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        if isinstance(e, OSError):
            raise FilesystemError(f"Failed to write {file_path}: {e}") from e
        raise


def remove_file(path: Union[str, Path]) -> None:
    """
    Delete a file if it exists.

    Raises:
        FilesystemError: If the file exists but cannot be deleted
    """
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        raise FilesystemError(f"Failed to remove file '{path}': {e}") from e


def safe_rmtree(
    path: Union[str, Path], require_prefix: Optional[Union[str, Path]] = None
) -> None:
    """
    Safely remove a directory tree with safeguards.

    Args:
        path: Directory to remove
        require_prefix: If specified, path must be under this directory

    Raises:
        ValueError: If path is not under require_prefix
        FilesystemError: If deletion fails

    Example:
        >>> safe_rmtree(layout.installs_dir / ".trash-v21.1.1", require_prefix=layout.root)
    """
    path = Path(path)

    if require_prefix is not None:
        resolved_prefix = Path(require_prefix).resolve()
        if not is_relative_to(path.resolve(), resolved_prefix):
            raise ValueError(
                f"Refusing to delete '{path}': not under required prefix '{resolved_prefix}'"
            )

    if not path.exists() and not path.is_symlink():
        return  # Already gone, nothing to do

    if path.is_symlink() or not path.is_dir():
        raise FilesystemError(f"Path is not a directory: {path}")

    try:
        if IS_WINDOWS:

            def handle_remove_readonly(func, failed_path, exc):
                """Error handler for Windows read-only files."""
                if not os.access(failed_path, os.W_OK):
                    os.chmod(failed_path, 0o777)
                    func(failed_path)
                else:
                    raise

            shutil.rmtree(path, onerror=handle_remove_readonly)
        else:
            shutil.rmtree(path)

    except OSError as e:
        raise FilesystemError(f"Failed to remove directory '{path}': {e}") from e


def directory_size(path: Union[str, Path]) -> int:
    """
    Calculate total size of a directory (or file) in bytes.

    Symlinks are not followed.
    """
    path = Path(path)
    if path.is_file():
        return path.stat().st_size

    total_size = 0
    for item in path.rglob("*"):
        if item.is_file() and not item.is_symlink():
            total_size += item.stat().st_size

    return total_size


# ============================================================================
# File Hashing
# ============================================================================


def compute_file_hash(
    file_path: Union[str, Path], algorithm: str = "sha256", chunk_size: int = 64 * 1024
) -> str:
    """
    Compute hash of a file.

    Memory-efficient implementation that reads file in chunks.

    Returns:
        Lowercase hex digest of the hash

    Raises:
        FilesystemError: If the file does not exist or cannot be read
        ValueError: If the algorithm is unknown
    """
    file_path = Path(file_path)

    try:
        hasher = hashlib.new(algorithm)
    except ValueError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    try:
        with open(file_path, "rb") as f:
            while chunk := f.read(chunk_size):
                hasher.update(chunk)
    except OSError as e:
        raise FilesystemError(f"Failed to hash {file_path}: {e}") from e

    return hasher.hexdigest()


__all__ = [
    "is_relative_to",
    "is_supported_archive",
    "extract_archive",
    "find_contained_directory",
    "normalize_root_directory",
    "atomic_write",
    "remove_file",
    "safe_rmtree",
    "directory_size",
    "compute_file_hash",
]
