"""
Core functionality for armtoolchain.

This package contains the foundational modules the toolchain lifecycle
components depend on: configuration, data-directory layout, platform
detection, locking, filesystem helpers and downloads.
"""

from .config import (
    ManagerConfig,
    load_config,
    resolve_data_dir,
)

from .directory import (
    DataLayout,
    get_default_data_dir,
    verify_directory_writable,
)

from .locking import (
    LockManager,
    try_lock,
    LockTimeout,
)

from .platform import (
    PlatformInfo,
    detect_platform,
)

from .exceptions import (
    ArmToolchainError,
    ConfigError,
    ResolutionFailed,
    ResolutionTimeout,
    VersionNotFound,
    InvalidVersionError,
    NetworkError,
    DownloadTimeout,
    ChecksumMismatch,
    Busy,
    NotInstalled,
    NoActiveToolchain,
    CorruptState,
    ArchiveExtractionError,
    FilesystemError,
    CommandNotFound,
)

__all__ = [
    # Config
    "ManagerConfig",
    "load_config",
    "resolve_data_dir",
    # Directory
    "DataLayout",
    "get_default_data_dir",
    "verify_directory_writable",
    # Locking
    "LockManager",
    "try_lock",
    "LockTimeout",
    # Platform
    "PlatformInfo",
    "detect_platform",
    # Exceptions
    "ArmToolchainError",
    "ConfigError",
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
    "FilesystemError",
    "CommandNotFound",
]
