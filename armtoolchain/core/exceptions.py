"""
Centralized exception hierarchy for armtoolchain.

Every failure raised by the core is a subclass of ArmToolchainError so the
CLI layer can tell failures apart by kind. Each class carries a stable
``exit_code`` used when the error reaches the terminal.
"""

from typing import List, Optional


# ============================================================================
# Base Exceptions
# ============================================================================


class ArmToolchainError(Exception):
    """Base exception for all armtoolchain errors."""

    exit_code = 1

    def __init__(self, message: str = ""):
        super().__init__(message)
        # Set by the client facade to the name of the failing operation.
        self.operation: Optional[str] = None


class ConfigError(ArmToolchainError):
    """Configuration file or environment override is invalid."""

    exit_code = 2


class Cancelled(ArmToolchainError):
    """The operation was cancelled before it committed anything."""

    exit_code = 130

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


# ============================================================================
# Resolution Exceptions
# ============================================================================


class ResolutionFailed(ArmToolchainError):
    """The release index is unreachable, malformed, or lacks a usable asset."""

    exit_code = 10


class ResolutionTimeout(ResolutionFailed):
    """The release index did not answer within the configured timeout."""

    exit_code = 11


class VersionNotFound(ArmToolchainError):
    """An explicit version token is not present in the release index."""

    exit_code = 12

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Toolchain version not found in release index: {version}")


class InvalidVersionError(ArmToolchainError):
    """A version token is not a well-formed identifier."""

    exit_code = 13


# ============================================================================
# Download Exceptions
# ============================================================================


class NetworkError(ArmToolchainError):
    """Transport failure while downloading a release archive."""

    exit_code = 20


class DownloadTimeout(NetworkError):
    """Download exceeded the configured network timeout."""

    exit_code = 21


class ChecksumMismatch(ArmToolchainError):
    """Downloaded bytes do not match the expected checksum."""

    exit_code = 22

    def __init__(self, name: str, expected: str, actual: str):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {name}: expected {expected}, got {actual}. "
            "The downloaded file may be corrupted or incomplete."
        )


class Busy(ArmToolchainError):
    """A required lock is held by another process (non-blocking mode only)."""

    exit_code = 23

    def __init__(self, scope: str, message: Optional[str] = None):
        self.scope = scope
        super().__init__(
            message or f"Lock '{scope}' is held by another armtoolchain process"
        )


# ============================================================================
# Install State Exceptions
# ============================================================================


class NotInstalled(ArmToolchainError):
    """The targeted version has no committed install record."""

    exit_code = 30

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Toolchain {version} is not installed")


class NoActiveToolchain(ArmToolchainError):
    """No active toolchain has been selected."""

    exit_code = 31

    def __init__(self):
        super().__init__(
            "No toolchain is active. Run 'armtoolchain use <version>' first."
        )


class CorruptState(ArmToolchainError):
    """The on-disk layout violates an invariant and needs manual attention."""

    exit_code = 32


class ArchiveExtractionError(ArmToolchainError):
    """A downloaded archive could not be unpacked."""

    exit_code = 33


class UnsupportedArchiveFormat(ArchiveExtractionError):
    """Archive format is not supported."""


class InsecureArchiveError(ArchiveExtractionError):
    """Archive contains insecure paths (directory traversal attempt)."""


class FilesystemError(ArmToolchainError):
    """Underlying filesystem operation failed."""

    exit_code = 34


# ============================================================================
# Process Exceptions
# ============================================================================


class CommandNotFound(ArmToolchainError):
    """The executable requested for a toolchain command cannot be located."""

    exit_code = 40

    def __init__(self, command: str, searched: Optional[List[str]] = None):
        self.command = command
        self.searched = searched or []
        super().__init__(f"Command not found: {command}")


__all__ = [
    "ArmToolchainError",
    "ConfigError",
    "Cancelled",
    "ResolutionFailed",
    "ResolutionTimeout",
    "VersionNotFound",
    "InvalidVersionError",
    "NetworkError",
    "DownloadTimeout",
    "ChecksumMismatch",
    "Busy",
    "NotInstalled",
    "NoActiveToolchain",
    "CorruptState",
    "ArchiveExtractionError",
    "UnsupportedArchiveFormat",
    "InsecureArchiveError",
    "FilesystemError",
    "CommandNotFound",
]
