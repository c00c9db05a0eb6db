"""
Pytest configuration and shared fixtures for armtoolchain tests.
"""

import hashlib
import io
import tarfile
from pathlib import Path

import pytest
import responses

from armtoolchain.core.config import ManagerConfig
from armtoolchain.core.directory import DataLayout
from armtoolchain.core.locking import LockManager
from armtoolchain.core.platform import PlatformInfo, detect_platform

INDEX_URL = "https://index.test/repos/arm/arm-toolchain/releases"
DOWNLOAD_BASE = "https://downloads.test/arm/arm-toolchain/releases/download"
LINUX_X64 = PlatformInfo(os="linux", arch="x64")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# ============================================================================
# Archive Helpers
# ============================================================================


def _add_file(tar: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644):
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    tar.addfile(info, io.BytesIO(data))


def build_toolchain_archive(path: Path, version: str = "21.1.1", wrap: bool = True) -> Path:
    """
    Write a small .tar.xz shaped like an ATfE release.

    With ``wrap`` every file sits under a single ``ATfE-<version>-Linux-x86_64/``
    folder, as in real releases.
    """
    prefix = f"ATfE-{version}-Linux-x86_64/" if wrap else ""
    script = f"#!/bin/sh\necho clang {version}\n".encode()

    with tarfile.open(path, "w:xz") as tar:
        _add_file(tar, f"{prefix}bin/clang", script, mode=0o755)
        _add_file(tar, f"{prefix}lib/libc.a", b"!<arch>\n")
        _add_file(tar, f"{prefix}VERSION.txt", f"{version}\n".encode())

    return path


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeReleaseIndex:
    """
    Registers a GitHub-style release index with ``responses``.

    Each added release gets a listing entry, a ``/tags/<tag>`` endpoint, a
    Linux x86_64 archive and its ``.sha256`` file.
    """

    def __init__(self, rsps: responses.RequestsMock, tmp_path: Path):
        self.rsps = rsps
        self.tmp_path = tmp_path
        self.releases = []
        self.archives = {}
        self._listing = None

    def asset_url(self, version: str) -> str:
        return f"{DOWNLOAD_BASE}/release-{version}-ATfE/ATfE-{version}-Linux-x86_64.tar.xz"

    def add_release(self, version: str, checksum: str = None, draft: bool = False) -> bytes:
        archive_path = build_toolchain_archive(
            self.tmp_path / f"archive-{version}.tar.xz", version
        )
        data = archive_path.read_bytes()
        self.archives[version] = data

        tag = f"release-{version}-ATfE"
        url = self.asset_url(version)
        release = {
            "tag_name": tag,
            "draft": draft,
            "prerelease": False,
            "assets": [
                {
                    "name": f"ATfE-{version}-Darwin-universal.dmg",
                    "browser_download_url": f"{DOWNLOAD_BASE}/{tag}/ATfE-{version}-Darwin-universal.dmg",
                    "size": 10,
                },
                {
                    "name": f"ATfE-{version}-Linux-x86_64.tar.xz",
                    "browser_download_url": url,
                    "size": len(data),
                },
                {
                    "name": f"ATfE-{version}-Linux-x86_64.tar.xz.sha256",
                    "browser_download_url": f"{url}.sha256",
                    "size": 64,
                },
            ],
        }
        self.releases.append(release)

        self.rsps.add(responses.GET, f"{INDEX_URL}/tags/{tag}", json=release)
        self.rsps.add(
            responses.GET,
            f"{url}.sha256",
            body=f"{checksum or sha256_of(data)}  ATfE-{version}-Linux-x86_64.tar.xz\n",
        )
        self.rsps.add(
            responses.GET,
            url,
            body=data,
            headers={"content-length": str(len(data))},
        )
        self._register_listing()
        return data

    def _register_listing(self):
        if self._listing is not None:
            self.rsps.remove(self._listing)
        # Index lists newest first
        self._listing = responses.Response(
            responses.GET, INDEX_URL, json=list(reversed(self.releases))
        )
        self.rsps.add(self._listing)

    def download_count(self, version: str) -> int:
        url = self.asset_url(version)
        return sum(1 for call in self.rsps.calls if call.request.url == url)


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def manager_config(data_dir: Path) -> ManagerConfig:
    return ManagerConfig(data_dir=data_dir, index_url=INDEX_URL, read_timeout=5.0)


@pytest.fixture
def layout(data_dir: Path) -> DataLayout:
    return DataLayout(data_dir).ensure()


@pytest.fixture
def lock_manager(layout: DataLayout) -> LockManager:
    return LockManager(layout.locks_dir)


@pytest.fixture
def make_archive(tmp_path: Path):
    """Factory building ATfE-shaped .tar.xz archives in tmp_path."""

    def _make(version: str = "21.1.1", wrap: bool = True, name: str = None) -> Path:
        filename = name or f"ATfE-{version}-Linux-x86_64.tar.xz"
        return build_toolchain_archive(tmp_path / filename, version, wrap=wrap)

    return _make


@pytest.fixture
def linux_x64() -> PlatformInfo:
    return LINUX_X64


@pytest.fixture
def mocked_responses():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


@pytest.fixture
def release_index(mocked_responses, tmp_path: Path) -> FakeReleaseIndex:
    return FakeReleaseIndex(mocked_responses, tmp_path)


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch) -> Path:
    """Keep tests away from the user's real data directory and tokens."""
    monkeypatch.setenv("ARM_TOOLCHAIN_HOME", str(tmp_path / "home-data"))
    for name in (
        "ARM_TOOLCHAIN_INDEX_URL",
        "ARM_TOOLCHAIN_TIMEOUT",
        "ARM_TOOLCHAIN_LOCK_TIMEOUT",
        "GITHUB_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path / "home-data"


@pytest.fixture(autouse=True)
def reset_caches():
    """Reset any module-level caches between tests."""
    yield
    detect_platform.cache_clear()
