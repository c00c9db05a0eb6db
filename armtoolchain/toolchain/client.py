"""
Toolchain client facade.

ToolchainClient binds every component to one data directory and exposes
the lifecycle operations as coroutines. Blocking filesystem and network
work runs in the loop's default executor, so several operations can be in
flight in one process while cross-process safety comes from the file locks.

Lock order used here and in the components:
    install-<version>  ->  download-<version>-<platform>
    install-<version>  ->  active

Errors raised by components pass through unchanged, with ``operation`` set
to the name of the client method that failed.

Example:
    >>> client = ToolchainClient(Path("~/.armtoolchain").expanduser())
    >>> result = asyncio.run(client.use("latest"))
    >>> asyncio.run(client.locate(subpath="bin"))
    PosixPath('/home/user/.armtoolchain/installs/v21.1.1/bin')
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import requests

from armtoolchain.core.cancellation import CancellationToken, check_cancelled
from armtoolchain.core.config import ManagerConfig, load_config
from armtoolchain.core.directory import DataLayout
from armtoolchain.core.download import DownloadProgress
from armtoolchain.core.exceptions import ArmToolchainError, NotInstalled
from armtoolchain.core.locking import LockManager
from armtoolchain.core.platform import PlatformInfo
from armtoolchain.toolchain.active import ActiveToolchainTracker
from armtoolchain.toolchain.cache import DownloadCacheManager, PurgeResult
from armtoolchain.toolchain.installer import InstallManager
from armtoolchain.toolchain.locator import InstalledToolchain, Locator
from armtoolchain.toolchain.resolver import ReleaseIndex, VersionResolver, create_session
from armtoolchain.toolchain.runner import CommandRunner, ProcessOutcome
from armtoolchain.toolchain.version import ReleaseDescriptor, VersionId, is_latest_alias

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]

REMOVE_ALL = "all"


@dataclass(frozen=True)
class UseResult:
    """Outcome of use() and install()."""

    version: VersionId
    path: Path
    installed: bool  # downloaded and installed by this call
    activated: bool  # active pointer now names this version


def _operation(name: str):
    """Tag component errors with the facade operation that raised them."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except ArmToolchainError as e:
                if e.operation is None:
                    e.operation = name
                raise

        return wrapper

    return decorator


class ToolchainClient:
    """
    Facade over resolver, cache, installer, active pointer, locator and runner.

    Constructing a client creates the data-directory layout if needed.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        config: Optional[ManagerConfig] = None,
        session: Optional[requests.Session] = None,
        platform_info: Optional[PlatformInfo] = None,
    ):
        self.config = config or load_config(data_dir)
        self.layout = DataLayout(Path(self.config.data_dir)).ensure()
        self.lock_manager = LockManager(self.layout.locks_dir, timeout=self.config.lock_timeout)
        self.session = session or create_session(self.config)

        self.index = ReleaseIndex(self.config, session=self.session)
        self.resolver = VersionResolver(self.index, self.config, platform_info)
        self.cache = DownloadCacheManager(
            self.layout, self.lock_manager, session=self.session, timeout=self.config.timeout
        )
        self.tracker = ActiveToolchainTracker(self.layout, self.lock_manager)
        self.installer = InstallManager(self.layout, self.lock_manager, self.tracker)
        self.locator = Locator(self.installer, self.tracker)
        self.runner = CommandRunner(
            self.locator, extra_env=self.config.env, cross_env=self.config.cross_env
        )

        logger.debug(f"Toolchain client bound to {self.layout.root}")

    @property
    def data_dir(self) -> Path:
        return self.layout.root

    async def _call(self, func, *args, **kwargs):
        """
        Run blocking work in the executor.

        A ``cancel_token`` keyword is passed through to func and also set
        when the awaiting coroutine is cancelled, so the worker thread stops
        at its next check instead of running on unobserved.
        """
        loop = asyncio.get_running_loop()
        cancel_token = kwargs.get("cancel_token")
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
        except asyncio.CancelledError:
            if cancel_token is not None:
                cancel_token.cancel()
            raise

    def close(self) -> None:
        self.session.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @_operation("installed_versions")
    async def installed_versions(self) -> List[VersionId]:
        return await self._call(self.installer.installed_versions)

    @_operation("active_toolchain")
    async def active_toolchain(self) -> Optional[VersionId]:
        return await self._call(self.tracker.get)

    @_operation("available_versions")
    async def available_versions(self) -> List[VersionId]:
        """Versions listed by the release index, newest first."""
        return await self._call(self.resolver.available_versions)

    @_operation("resolve")
    async def resolve(self, token: str = "latest") -> ReleaseDescriptor:
        return await self._call(self.resolver.resolve, token)

    @_operation("toolchain")
    async def toolchain(
        self, version: Optional[Union[str, VersionId]] = None
    ) -> InstalledToolchain:
        return await self._call(self.locator.toolchain, version)

    @_operation("locate")
    async def locate(
        self,
        version_or_active: Optional[Union[str, VersionId]] = None,
        subpath: Optional[Union[str, Path]] = None,
    ) -> Path:
        return await self._call(self.locator.locate, version_or_active, subpath)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @_operation("use")
    async def use(
        self,
        token: str = "latest",
        blocking: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UseResult:
        """
        Make a version active, downloading and installing it if needed.

        ``latest`` is re-resolved against the index on every call. An
        explicit version that is already installed is activated without
        contacting the index. If any step fails, or the call is cancelled,
        the active pointer keeps its previous value.
        """
        cancel_token = CancellationToken()
        version = await self._call(self._installed_explicit_version, token)
        if version is not None:
            return await self._call(
                self._activate_installed, version, blocking, cancel_token=cancel_token
            )

        descriptor = await self._call(self.resolver.resolve, token)
        return await self._call(
            self._ensure_installed,
            descriptor,
            blocking=blocking,
            progress_callback=progress_callback,
            activate=True,
            cancel_token=cancel_token,
        )

    @_operation("install")
    async def install(
        self,
        token: str = "latest",
        force: bool = False,
        blocking: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> UseResult:
        """
        Download and install a version without switching to it.

        The version becomes active only when no toolchain is active yet.
        With ``force`` the archive is downloaded and unpacked again and then
        swapped in for the existing install; if that fails the existing
        install and the active pointer are left as they were.
        """
        descriptor = await self._call(self.resolver.resolve, token)
        return await self._call(
            self._ensure_installed,
            descriptor,
            blocking=blocking,
            progress_callback=progress_callback,
            activate=False,
            force=force,
            cancel_token=CancellationToken(),
        )

    @_operation("remove")
    async def remove(
        self, version: Union[str, VersionId], blocking: bool = True
    ) -> Dict[VersionId, int]:
        """
        Remove one version, or every version with ``"all"``.

        Returns:
            Bytes freed per removed version
        """
        if isinstance(version, str) and version.strip().lower() == REMOVE_ALL:
            return await self._call(self.installer.remove_all, blocking=blocking)

        if not isinstance(version, VersionId):
            version = VersionId.parse(version)
        freed = await self._call(self.installer.remove, version, blocking=blocking)
        return {version: freed}

    @_operation("purge_cache")
    async def purge_cache(self) -> PurgeResult:
        """
        Delete cached downloads and install leftovers not in use.

        Covers every cache entry without a download in flight, and the temp
        and trash directories under installs/ whose version is not being
        installed or removed right now.
        """
        return await self._call(self._purge)

    @_operation("run")
    async def run(
        self,
        version_or_active: Optional[Union[str, VersionId]],
        command: str,
        args: Sequence[str] = (),
        cross_env: Optional[bool] = None,
    ) -> ProcessOutcome:
        return await self.runner.run(version_or_active, command, args, cross_env=cross_env)

    # ------------------------------------------------------------------
    # Blocking implementations (run in the executor)
    # ------------------------------------------------------------------

    def _installed_explicit_version(self, token: str) -> Optional[VersionId]:
        if token is None or is_latest_alias(token):
            return None
        version = VersionId.parse(token)
        return version if self.layout.is_committed(version) else None

    def _activate_installed(
        self,
        version: VersionId,
        blocking: bool,
        cancel_token: Optional[CancellationToken] = None,
    ) -> UseResult:
        with self.lock_manager.install_lock(
            version, blocking=blocking, cancel_token=cancel_token
        ):
            record = self.installer.record(version)
            if record is None:
                # Removed between the check and the lock
                raise NotInstalled(str(version))
            check_cancelled(cancel_token)
            self.tracker.set(version, blocking=blocking)
        return UseResult(version=version, path=record.path, installed=False, activated=True)

    def _ensure_installed(
        self,
        descriptor: ReleaseDescriptor,
        blocking: bool,
        progress_callback: Optional[ProgressCallback],
        activate: bool,
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> UseResult:
        version = descriptor.version

        with self.lock_manager.install_lock(
            version, blocking=blocking, cancel_token=cancel_token
        ):
            # A forced reinstall may also replace a directory without marker
            record = None if force else self.installer.record(version)

            installed = record is None
            if installed:
                if force:
                    logger.info(f"Reinstalling {version}")
                entry = self.cache.fetch(
                    descriptor,
                    blocking=blocking,
                    progress_callback=progress_callback,
                    cancel_token=cancel_token,
                )
                record = self.installer.install_locked(
                    entry, replace=force, cancel_token=cancel_token
                )
                self.cache.discard(entry)
            else:
                logger.info(f"Toolchain {version} is already installed")

            check_cancelled(cancel_token)
            if activate:
                self.tracker.set(version, blocking=blocking)
                activated = True
            else:
                activated = self._activate_if_unset(version, blocking)

        return UseResult(
            version=version, path=record.path, installed=installed, activated=activated
        )

    def _purge(self) -> PurgeResult:
        result = self.cache.purge_cache()
        return self.installer.purge_leftovers(result)

    def _activate_if_unset(self, version: VersionId, blocking: bool) -> bool:
        with self.tracker.locked(blocking=blocking):
            current = self.tracker.get()
            if current is None:
                self.tracker.set_locked(version)
                return True
            return current == version


__all__ = ["ToolchainClient", "UseResult", "REMOVE_ALL"]
