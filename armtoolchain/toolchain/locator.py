"""
Resolution of versions to install paths.

The Locator reads committed install state only; it never looks at PATH or
any other part of the process environment.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from armtoolchain.core.exceptions import CorruptState, NoActiveToolchain, NotInstalled
from armtoolchain.toolchain.active import ActiveToolchainTracker
from armtoolchain.toolchain.installer import InstallManager
from armtoolchain.toolchain.version import VersionId

logger = logging.getLogger(__name__)

ACTIVE_ALIAS = "active"


@dataclass(frozen=True)
class InstalledToolchain:
    """Handle to a committed toolchain install."""

    version: VersionId
    path: Path

    @property
    def bin_dir(self) -> Path:
        return self.path / "bin"

    @property
    def lib_dir(self) -> Path:
        return self.path / "lib"

    def tool(self, name: str) -> Path:
        """Path of an executable in bin/ (not checked for existence)."""
        return self.bin_dir / name


class Locator:
    """
    Maps a version, or the active pointer, to absolute install paths.

    Example:
        >>> locator.locate()
        PosixPath('/home/user/.armtoolchain/installs/v21.1.1')
        >>> locator.locate(subpath="bin")
        PosixPath('/home/user/.armtoolchain/installs/v21.1.1/bin')
    """

    def __init__(self, installer: InstallManager, tracker: ActiveToolchainTracker):
        self.installer = installer
        self.tracker = tracker

    def resolve_version(
        self, version_or_active: Optional[Union[str, VersionId]] = None
    ) -> VersionId:
        """
        Turn a version token, VersionId, None or "active" into a VersionId.

        Raises:
            NoActiveToolchain: If the active toolchain is requested but unset
            InvalidVersionError: If an explicit token is malformed
        """
        if isinstance(version_or_active, VersionId):
            return version_or_active

        if version_or_active is None or version_or_active.strip().lower() == ACTIVE_ALIAS:
            version = self.tracker.get()
            if version is None:
                raise NoActiveToolchain()
            return version

        return VersionId.parse(version_or_active)

    def toolchain(
        self, version_or_active: Optional[Union[str, VersionId]] = None
    ) -> InstalledToolchain:
        """
        Return a handle to a committed install.

        Raises:
            NoActiveToolchain: If the active toolchain is requested but unset
            CorruptState: If the active pointer names a missing install
            NotInstalled: If an explicit version has no committed install
        """
        use_active = not isinstance(version_or_active, VersionId) and (
            version_or_active is None
            or version_or_active.strip().lower() == ACTIVE_ALIAS
        )
        version = self.resolve_version(version_or_active)

        record = self.installer.record(version)
        if record is None:
            if use_active:
                raise CorruptState(
                    f"Active toolchain {version} is not installed. "
                    f"Run 'armtoolchain use {version}' to reinstall it."
                )
            raise NotInstalled(str(version))

        logger.debug(f"Located {version} at {record.path}")
        return InstalledToolchain(version=version, path=record.path)

    def locate(
        self,
        version_or_active: Optional[Union[str, VersionId]] = None,
        subpath: Optional[Union[str, Path]] = None,
    ) -> Path:
        """
        Absolute path of a toolchain root, or of a subpath within it.

        The subpath is joined as-is; whether it exists is up to the caller.
        """
        root = self.toolchain(version_or_active).path.absolute()
        if subpath:
            return root / subpath
        return root


__all__ = ["Locator", "InstalledToolchain", "ACTIVE_ALIAS"]
