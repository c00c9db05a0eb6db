"""
Shared utilities for CLI commands.

Provides common functionality used across multiple CLI commands to
eliminate duplication and ensure consistent behavior.
"""

import asyncio
import logging
import sys
from typing import Callable, Optional

from armtoolchain.core.download import DownloadProgress, format_progress
from armtoolchain.toolchain.client import ToolchainClient

logger = logging.getLogger(__name__)


# ============================================================================
# Client Construction
# ============================================================================


def create_client(args) -> ToolchainClient:
    """
    Create a ToolchainClient for the data directory selected on the command line.

    Args:
        args: Parsed arguments (uses ``data_dir`` if present)

    Raises:
        ConfigError: If the configuration is invalid
        FilesystemError: If the data directory cannot be created
    """
    return ToolchainClient(data_dir=getattr(args, "data_dir", None))


def run_client(args, operation: Callable[[ToolchainClient], object]):
    """
    Run one coroutine-producing operation against a fresh client.

    Example:
        >>> versions = run_client(args, lambda c: c.installed_versions())
    """
    client = create_client(args)
    try:
        return asyncio.run(operation(client))
    finally:
        client.close()


# ============================================================================
# User Interface / Output Formatting
# ============================================================================


def format_bytes(size: int) -> str:
    """
    Format a byte count for display.

    Example:
        >>> format_bytes(1536)
        '1.5 KiB'
    """
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"


def make_progress_printer(quiet: bool = False) -> Optional[Callable[[DownloadProgress], None]]:
    """Return a download progress callback that redraws one stderr line."""
    if quiet or not sys.stderr.isatty():
        return None

    def _print(progress: DownloadProgress) -> None:
        sys.stderr.write(f"\r  {format_progress(progress)}\033[K")
        if progress.total_bytes and progress.bytes_downloaded >= progress.total_bytes:
            sys.stderr.write("\n")
        sys.stderr.flush()

    return _print


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)


def safe_print(message: str, file=None):
    """
    Print message with safe encoding handling for Windows console.

    Falls back to ASCII-safe characters if Unicode symbols can't be encoded.
    """
    try:
        print(message, file=file)
    except UnicodeEncodeError:
        safe_message = message.replace("✓", "[OK]").replace("•", "*")
        print(safe_message, file=file)


__all__ = [
    "create_client",
    "run_client",
    "format_bytes",
    "make_progress_printer",
    "print_error",
    "safe_print",
]
