"""
Launching processes inside a toolchain environment.

The child gets a copy of the current environment with the toolchain's
``bin`` directory prepended to PATH, the cross-compilation variables
(TARGET_CC, TARGET_AR) unless disabled, and the variables from the
configuration on top. ``os.environ`` itself is never modified.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

from armtoolchain.core.exceptions import CommandNotFound, FilesystemError
from armtoolchain.toolchain.locator import InstalledToolchain, Locator
from armtoolchain.toolchain.version import VersionId

logger = logging.getLogger(__name__)

CROSS_ENV = {
    "TARGET_CC": "clang",
    "TARGET_AR": "llvm-ar",
}


@dataclass(frozen=True)
class ProcessOutcome:
    """
    How a child process terminated.

    Exactly one of exit_code and signal is set.
    """

    exit_code: Optional[int] = None
    signal: Optional[int] = None

    @classmethod
    def from_returncode(cls, returncode: int) -> "ProcessOutcome":
        """Negative return codes mean termination by that signal (POSIX)."""
        if returncode < 0:
            return cls(signal=-returncode)
        return cls(exit_code=returncode)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def shell_exit_code(self) -> int:
        """Exit status a shell would report (128 + signal when signalled)."""
        if self.signal is not None:
            return 128 + self.signal
        return self.exit_code


def build_environment(
    toolchain: InstalledToolchain,
    cross_env: bool = True,
    extra_env: Optional[Mapping[str, str]] = None,
    base_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Build the child environment for a toolchain.

    Args:
        toolchain: Installed toolchain handle
        cross_env: Set TARGET_CC/TARGET_AR for cross-compilation
        extra_env: Additional variables (applied last)
        base_env: Environment to start from (default: os.environ)

    Returns:
        New environment dictionary
    """
    env = dict(os.environ if base_env is None else base_env)

    bin_dir = str(toolchain.bin_dir)
    old_path = env.get("PATH")
    env["PATH"] = f"{bin_dir}{os.pathsep}{old_path}" if old_path else bin_dir

    if cross_env:
        env.update(CROSS_ENV)

    if extra_env:
        env.update(extra_env)

    return env


def find_executable(command: str, env: Mapping[str, str]) -> str:
    """
    Locate an executable using the PATH of the given environment.

    Raises:
        CommandNotFound: If the command cannot be found or is not executable
    """
    search_path = env.get("PATH", "")

    if os.sep in command or (os.altsep and os.altsep in command):
        candidate = Path(command)
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
        raise CommandNotFound(command, [str(candidate.parent)])

    found = shutil.which(command, path=search_path)
    if found is None:
        raise CommandNotFound(command, [p for p in search_path.split(os.pathsep) if p])
    return found


class CommandRunner:
    """
    Runs commands with a toolchain environment.

    Example:
        >>> runner = CommandRunner(locator)
        >>> outcome = asyncio.run(runner.run("active", "clang", ["--version"]))
        >>> outcome.exit_code
        0
    """

    def __init__(
        self,
        locator: Locator,
        extra_env: Optional[Mapping[str, str]] = None,
        cross_env: bool = True,
    ):
        self.locator = locator
        self.extra_env = dict(extra_env or {})
        self.cross_env = cross_env

    def build_environment(
        self, toolchain: InstalledToolchain, cross_env: Optional[bool] = None
    ) -> Dict[str, str]:
        if cross_env is None:
            cross_env = self.cross_env
        return build_environment(toolchain, cross_env=cross_env, extra_env=self.extra_env)

    async def run(
        self,
        version_or_active: Optional[Union[str, VersionId]],
        command: str,
        args: Sequence[str] = (),
        cross_env: Optional[bool] = None,
    ) -> ProcessOutcome:
        """
        Run a command with the toolchain environment and wait for it.

        stdin, stdout and stderr are inherited. No timeout is applied.

        Raises:
            NoActiveToolchain: If the active toolchain is requested but unset
            NotInstalled: If an explicit version is not installed
            CommandNotFound: If the command cannot be found
            FilesystemError: If the operating system refuses to execute it
        """
        loop = asyncio.get_running_loop()
        toolchain = await loop.run_in_executor(
            None, partial(self.locator.toolchain, version_or_active)
        )

        env = self.build_environment(toolchain, cross_env)
        executable = find_executable(command, env)

        logger.debug(f"Running {executable} {' '.join(args)} with {toolchain.version}")
        try:
            proc = await asyncio.create_subprocess_exec(executable, *args, env=env)
        except FileNotFoundError as e:
            # Removed after the lookup, or a script with a missing interpreter
            raise CommandNotFound(command, [str(Path(executable).parent)]) from e
        except OSError as e:
            raise FilesystemError(f"Cannot execute {executable}: {e}") from e
        returncode = await proc.wait()

        outcome = ProcessOutcome.from_returncode(returncode)
        if outcome.signal is not None:
            logger.debug(f"{command} terminated by signal {outcome.signal}")
        else:
            logger.debug(f"{command} exited with {outcome.exit_code}")
        return outcome


__all__ = [
    "CommandRunner",
    "ProcessOutcome",
    "build_environment",
    "find_executable",
    "CROSS_ENV",
]
