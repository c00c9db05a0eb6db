"""
Host platform detection for armtoolchain.

Release assets are published per host OS and CPU architecture. This module
detects the current host and maps it onto the names used in ATfE asset file
names (e.g. ``ATfE-21.1.1-Linux-x86_64.tar.xz``).

Usage:
    from armtoolchain.core.platform import detect_platform

    info = detect_platform()
    print(info.platform_string())   # 'linux-x64'
    print(info.asset_os)            # 'Linux'
"""

import functools
import platform
from dataclasses import dataclass
from typing import Tuple


# Asset OS component for each normalized OS name
ASSET_OS_NAMES = {
    "linux": "Linux",
    "macos": "Darwin",
    "windows": "Windows",
}

# Asset arch components accepted for each normalized architecture
ASSET_ARCH_NAMES = {
    "x64": ("x86_64",),
    "arm64": ("AArch64", "aarch64"),
}


@dataclass(frozen=True)
class PlatformInfo:
    """
    Host platform information.

    Attributes:
        os: Operating system ('linux', 'macos', 'windows')
        arch: CPU architecture ('x64', 'arm64')
    """

    os: str
    arch: str

    def platform_string(self) -> str:
        """
        Get canonical platform string (e.g., 'linux-x64', 'macos-arm64').

        Used as the platform half of cache keys.
        """
        return f"{self.os}-{self.arch}"

    @property
    def asset_os(self) -> str:
        """OS component expected in release asset names."""
        return ASSET_OS_NAMES[self.os]

    @property
    def asset_arches(self) -> Tuple[str, ...]:
        """Arch components accepted in release asset names, most specific first."""
        arches = ASSET_ARCH_NAMES.get(self.arch, (self.arch,))
        if self.os == "macos":
            # macOS releases ship a universal binary
            arches = arches + ("universal",)
        return arches

    def __str__(self) -> str:
        return self.platform_string()


@functools.lru_cache(maxsize=1)
def detect_platform() -> PlatformInfo:
    """
    Detect current platform information.

    This function is cached - it only runs detection once per process.

    Raises:
        RuntimeError: If the OS is not one the toolchain is published for
    """
    return PlatformInfo(os=_detect_os(), arch=_detect_architecture())


def _detect_os() -> str:
    system = platform.system().lower()

    if system == "linux":
        return "linux"
    elif system == "darwin":
        return "macos"
    elif system == "windows":
        return "windows"
    else:
        raise RuntimeError(f"Unsupported operating system: {system}")


def _detect_architecture() -> str:
    machine = platform.machine().lower()

    if machine in ("x86_64", "amd64", "x64"):
        return "x64"
    elif machine in ("aarch64", "arm64", "armv8l", "armv8b"):
        return "arm64"
    else:
        # Unknown architectures match no asset and fail at resolution time
        return machine


__all__ = ["PlatformInfo", "detect_platform", "ASSET_OS_NAMES", "ASSET_ARCH_NAMES"]
