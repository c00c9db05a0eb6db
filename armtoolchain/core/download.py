"""
Network download manager with progress tracking, resume and checksum verification.

This module provides the transfer half of the download cache:
- HTTP/HTTPS streaming downloads with TLS verification
- Resume of partial downloads (using Range headers)
- Progress reporting (bytes, percentage, speed, ETA)
- SHA-256 verification of the complete file
- Timeout handling surfaced as DownloadTimeout

Failed transfers are never retried here; retry policy belongs to the caller.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests
from requests.exceptions import HTTPError, RequestException, Timeout

from armtoolchain.core.cancellation import CancellationToken, check_cancelled
from armtoolchain.core.exceptions import (
    ChecksumMismatch,
    DownloadTimeout,
    FilesystemError,
    NetworkError,
    ResolutionFailed,
)
from armtoolchain.core.filesystem import compute_file_hash

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class DownloadProgress:
    """Progress information for a download."""

    bytes_downloaded: int
    total_bytes: int
    percentage: float
    speed_bps: float  # bytes per second
    eta_seconds: float  # estimated time remaining

    def __str__(self) -> str:
        return format_progress(self)


class StreamingHasher:
    """Compute a SHA-256 hash incrementally for streaming downloads."""

    def __init__(self):
        self.hasher = hashlib.sha256()

    def update(self, data: bytes):
        self.hasher.update(data)

    def finalize(self) -> str:
        """Get final hash value as lowercase hex string."""
        return self.hasher.hexdigest()

    def verify(self, expected_hash: str) -> bool:
        """Check if computed hash matches expected value (case-insensitive)."""
        return self.finalize().lower() == expected_hash.strip().lower()


def download_file(
    url: str,
    destination: Path,
    expected_sha256: str,
    expected_size: Optional[int] = None,
    session: Optional[requests.Session] = None,
    progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    resume: bool = True,
    timeout=(10, 60),
    cancel_token: Optional[CancellationToken] = None,
) -> Path:
    """
    Download file from URL to destination and verify its checksum.

    If destination already holds a partial transfer and ``resume`` is set, the
    download continues from its end with a Range request; the existing bytes
    are hashed again so the final checksum covers the whole file. A partial
    file larger than ``expected_size`` is discarded and the download restarts.

    Args:
        url: URL to download from
        destination: Local path to write (typically a ``.part`` file)
        expected_sha256: Expected SHA-256 hash of the complete file
        expected_size: Expected size in bytes, when the index reports it
        session: Optional requests session (headers, auth, connection reuse)
        progress_callback: Optional callback for progress updates
        resume: Whether to resume partial downloads
        timeout: requests timeout, seconds or (connect, read) tuple
        cancel_token: Checked before the transfer and between chunks

    Returns:
        Path to downloaded file

    Raises:
        Cancelled: If cancel_token is set; a partial file stays for resume
        ChecksumMismatch: If the complete file fails verification (the file
            is deleted)
        DownloadTimeout: If the server does not answer in time
        ResolutionFailed: If the asset disappeared from the server (404/410)
        NetworkError: If the HTTP transfer fails
        FilesystemError: If the destination cannot be written
    """
    if not url:
        raise ValueError("URL cannot be empty")

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    resume_from = 0
    if resume and destination.exists():
        resume_from = destination.stat().st_size
        if expected_size is not None and resume_from > expected_size:
            # Having *too much* data doesn't make sense, start over
            logger.warning(
                f"Partial download {destination.name} is larger than expected "
                f"({resume_from} > {expected_size}), restarting"
            )
            destination.unlink()
            resume_from = 0
    elif destination.exists():
        destination.unlink()

    hasher = StreamingHasher()
    if resume_from > 0:
        logger.debug(f"Re-computing hash for first {resume_from} bytes")
        with open(destination, "rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                hasher.update(chunk)

    if expected_size is not None and resume_from == expected_size:
        logger.info(f"File already downloaded, skipping transfer: {destination.name}")
    else:
        _transfer(
            url,
            destination,
            resume_from,
            hasher,
            session or requests.Session(),
            progress_callback,
            timeout,
            cancel_token,
        )

    if not hasher.verify(expected_sha256):
        actual_hash = hasher.finalize()
        destination.unlink(missing_ok=True)
        raise ChecksumMismatch(destination.name, expected_sha256.lower(), actual_hash)

    logger.info(f"Checksum verified: {destination.name}")
    return destination


def _transfer(
    url: str,
    destination: Path,
    resume_from: int,
    hasher: StreamingHasher,
    session: requests.Session,
    progress_callback: Optional[Callable[[DownloadProgress], None]],
    timeout,
    cancel_token: Optional[CancellationToken] = None,
) -> None:
    """Stream the response body into destination, updating hasher."""
    headers = {"Accept": "*/*"}
    if resume_from > 0:
        headers["Range"] = f"bytes={resume_from}-"
        logger.info(f"Resuming download of {destination.name} from byte {resume_from}")

    check_cancelled(cancel_token)
    logger.info(f"Downloading from {url}")

    try:
        response = session.get(
            url, headers=headers, stream=True, timeout=timeout, allow_redirects=True
        )
        response.raise_for_status()
    except Timeout as e:
        raise DownloadTimeout(f"Timed out connecting to {url}: {e}") from e
    except HTTPError as e:
        if e.response is not None and e.response.status_code in (404, 410):
            # Asset vanished from the index after it was resolved
            raise ResolutionFailed(f"Release asset is no longer available: {url}") from e
        raise NetworkError(f"Download failed for {url}: {e}") from e
    except RequestException as e:
        raise NetworkError(f"Download failed for {url}: {e}") from e

    with response:
        if resume_from > 0 and response.status_code != 206:
            # Server ignored the Range header, the body is the whole file
            logger.warning("Server does not support resuming, restarting download")
            resume_from = 0
            hasher.hasher = hashlib.sha256()

        content_length = response.headers.get("content-length")
        total_size = int(content_length) + resume_from if content_length else 0
        mode = "ab" if resume_from > 0 else "wb"

        downloaded = resume_from
        start_time = time.time()
        last_progress_time = start_time

        try:
            with open(destination, mode) as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    check_cancelled(cancel_token)
                    if not chunk:
                        continue
                    f.write(chunk)
                    hasher.update(chunk)
                    downloaded += len(chunk)

                    # Report progress (max once per 0.5 seconds to avoid spam)
                    current_time = time.time()
                    if progress_callback and (
                        current_time - last_progress_time >= 0.5
                        or downloaded == total_size
                    ):
                        progress_callback(
                            _make_progress(
                                downloaded, total_size, resume_from, start_time
                            )
                        )
                        last_progress_time = current_time
        except Timeout as e:
            raise DownloadTimeout(f"Timed out downloading {url}: {e}") from e
        except RequestException as e:
            raise NetworkError(f"Download interrupted for {url}: {e}") from e
        except OSError as e:
            raise FilesystemError(f"Failed to write {destination}: {e}") from e

    logger.info(f"Download complete: {destination.name} ({downloaded} bytes)")


def _make_progress(
    downloaded: int, total_size: int, resume_from: int, start_time: float
) -> DownloadProgress:
    elapsed = time.time() - start_time
    speed = (downloaded - resume_from) / elapsed if elapsed > 0 else 0
    remaining = total_size - downloaded if total_size > 0 else 0
    eta = remaining / speed if speed > 0 else 0

    return DownloadProgress(
        bytes_downloaded=downloaded,
        total_bytes=total_size if total_size > 0 else downloaded,
        percentage=(downloaded / total_size * 100) if total_size > 0 else 0,
        speed_bps=speed,
        eta_seconds=eta,
    )


def verify_checksum(file_path: Path, expected_sha256: str) -> bool:
    """
    Verify file SHA256 checksum.

    Raises:
        FileNotFoundError: If file doesn't exist
    """
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    actual = compute_file_hash(file_path, "sha256", chunk_size=CHUNK_SIZE)
    return actual == expected_sha256.strip().lower()


def format_progress(progress: DownloadProgress) -> str:
    """
    Format progress for display.

    Example:
        >>> progress = DownloadProgress(52428800, 104857600, 50.0, 1048576, 50)
        >>> print(format_progress(progress))
        50.0/100.0 MB (50.0%) at 1.0 MB/s ETA: 50s
    """
    mb_downloaded = progress.bytes_downloaded / 1024 / 1024
    mb_total = progress.total_bytes / 1024 / 1024
    speed_mbps = progress.speed_bps / 1024 / 1024

    if progress.total_bytes > 0 and progress.percentage > 0:
        return (
            f"{mb_downloaded:.1f}/{mb_total:.1f} MB "
            f"({progress.percentage:.1f}%) "
            f"at {speed_mbps:.1f} MB/s "
            f"ETA: {progress.eta_seconds:.0f}s"
        )
    else:
        # Unknown total size
        return f"{mb_downloaded:.1f} MB at {speed_mbps:.1f} MB/s"
