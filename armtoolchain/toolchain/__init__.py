"""
Toolchain lifecycle management.

Version resolution, the download cache, atomic install and removal, the
active toolchain pointer, path lookup and process launching, composed by
the ToolchainClient facade.
"""

from .version import VersionId, ReleaseDescriptor
from .resolver import ReleaseIndex, VersionResolver
from .cache import DownloadCacheManager, CacheEntry, PurgeResult
from .installer import InstallManager, InstallRecord
from .active import ActiveToolchainTracker
from .locator import Locator, InstalledToolchain
from .runner import CommandRunner, ProcessOutcome
from .client import ToolchainClient, UseResult

__all__ = [
    "VersionId",
    "ReleaseDescriptor",
    "ReleaseIndex",
    "VersionResolver",
    "DownloadCacheManager",
    "CacheEntry",
    "PurgeResult",
    "InstallManager",
    "InstallRecord",
    "ActiveToolchainTracker",
    "Locator",
    "InstalledToolchain",
    "CommandRunner",
    "ProcessOutcome",
    "ToolchainClient",
    "UseResult",
]
