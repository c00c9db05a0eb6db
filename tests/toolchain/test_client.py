"""
Integration tests for the ToolchainClient facade.

The release index and downloads are served by ``responses``; everything
else (cache, locks, installs, active pointer) uses a real temporary data
directory.
"""

import asyncio
import dataclasses
import json
import sys
import threading

import pytest
import responses

from armtoolchain.core.directory import MARKER_FILENAME, DataLayout
from armtoolchain.core.exceptions import (
    Busy,
    ChecksumMismatch,
    NetworkError,
    NoActiveToolchain,
    NotInstalled,
    VersionNotFound,
)
from armtoolchain.toolchain.client import ToolchainClient
from armtoolchain.toolchain.version import VersionId


@pytest.fixture
def client(manager_config, linux_x64):
    client = ToolchainClient(config=manager_config, platform_info=linux_x64)
    yield client
    client.close()


def v(token):
    return VersionId.parse(token)


def run(coro):
    return asyncio.run(coro)


def cancel_during_download(client, token):
    """Start use(token), cancel it while the archive is downloading, and wait."""
    started = threading.Event()
    resume = threading.Event()

    def slow_progress(progress):
        started.set()
        resume.wait(5)

    async def cancel_midway():
        task = asyncio.ensure_future(client.use(token, progress_callback=slow_progress))
        for _ in range(500):
            if started.is_set():
                break
            await asyncio.sleep(0.01)
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            resume.set()

    run(cancel_midway())


class TestUse:
    """Tests for ToolchainClient.use()."""

    def test_use_latest_locate_and_remove(self, client, release_index, data_dir):
        release_index.add_release("20.1.0")
        release_index.add_release("21.1.1")

        result = run(client.use("latest"))

        assert result.version == v("21.1.1")
        assert result.installed is True
        assert result.activated is True
        assert run(client.active_toolchain()) == v("21.1.1")
        assert run(client.installed_versions()) == [v("21.1.1")]

        install_path = data_dir / "installs" / "v21.1.1"
        assert run(client.locate()) == install_path
        assert run(client.locate(subpath="bin")) == install_path / "bin"
        assert (install_path / "bin" / "clang").is_file()

        removed = run(client.remove("v21.1.1"))

        assert list(removed) == [v("21.1.1")]
        with pytest.raises(NoActiveToolchain):
            run(client.locate())

    def test_cache_is_emptied_after_install(self, client, release_index, data_dir):
        release_index.add_release("21.1.1")

        run(client.use("21.1.1"))

        assert list((data_dir / "cache").iterdir()) == []

    def test_installed_version_skips_index(self, client, release_index, mocked_responses):
        release_index.add_release("21.1.1")
        run(client.use("21.1.1"))
        calls = len(mocked_responses.calls)

        result = run(client.use("v21.1.1"))

        assert result.installed is False
        assert result.activated is True
        assert len(mocked_responses.calls) == calls

    def test_switching_versions(self, client, release_index):
        release_index.add_release("20.1.0")
        release_index.add_release("21.1.1")

        run(client.use("20.1.0"))
        run(client.use("21.1.1"))
        run(client.use("20.1.0"))

        assert run(client.active_toolchain()) == v("20.1.0")
        assert run(client.installed_versions()) == [v("20.1.0"), v("21.1.1")]
        assert release_index.download_count("20.1.0") == 1

    def test_failed_use_keeps_previous_pointer(self, client, release_index, data_dir):
        release_index.add_release("20.1.0")
        run(client.use("20.1.0"))
        release_index.add_release("21.1.1", checksum="f" * 64)

        with pytest.raises(ChecksumMismatch) as exc_info:
            run(client.use("latest"))

        assert exc_info.value.operation == "use"
        assert run(client.active_toolchain()) == v("20.1.0")
        assert sorted(p.name for p in (data_dir / "installs").iterdir()) == ["v20.1.0"]

    def test_unknown_version(self, client, manager_config, mocked_responses):
        mocked_responses.add(
            responses.GET,
            f"{manager_config.index_url}/tags/release-99.0.0-ATfE",
            status=404,
        )

        with pytest.raises(VersionNotFound) as exc_info:
            run(client.use("99.0.0"))

        assert exc_info.value.operation == "use"

    def test_concurrent_use_downloads_once(self, manager_config, linux_x64, release_index):
        """Two clients on one data directory share a single download."""
        release_index.add_release("21.1.1")
        first = ToolchainClient(config=manager_config, platform_info=linux_x64)
        second = ToolchainClient(config=manager_config, platform_info=linux_x64)

        async def use_both():
            return await asyncio.gather(first.use("21.1.1"), second.use("21.1.1"))

        try:
            results = run(use_both())
        finally:
            first.close()
            second.close()

        assert release_index.download_count("21.1.1") == 1
        assert sorted(r.installed for r in results) == [False, True]
        assert all(r.version == v("21.1.1") for r in results)
        assert run(first.active_toolchain()) == v("21.1.1")

    def test_busy_when_install_in_progress(self, client, release_index, lock_manager):
        release_index.add_release("21.1.1")

        with lock_manager.install_lock("v21.1.1"):
            with pytest.raises(Busy):
                run(client.use("21.1.1", blocking=False))

        assert release_index.download_count("21.1.1") == 0

    def test_installed_check_runs_off_the_event_loop(self, client, release_index, monkeypatch):
        release_index.add_release("21.1.1")
        run(client.use("21.1.1"))
        threads = []
        is_committed = DataLayout.is_committed

        def recording(layout, version):
            threads.append(threading.current_thread())
            return is_committed(layout, version)

        monkeypatch.setattr(DataLayout, "is_committed", recording)
        run(client.use("21.1.1"))

        assert threads
        assert threading.main_thread() not in threads

    @pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh")
    def test_configured_env_reaches_child(
        self, manager_config, linux_x64, release_index, data_dir, tmp_path
    ):
        release_index.add_release("21.1.1")
        config = dataclasses.replace(manager_config, env={"ATFE_EXTRA": "from-config"})
        client = ToolchainClient(config=config, platform_info=linux_x64)
        output = tmp_path / "env.txt"

        try:
            run(client.use("21.1.1"))
            outcome = run(
                client.run(
                    None, "sh", ["-c", 'printf "%s" "$ATFE_EXTRA" > "$1"', "sh", str(output)]
                )
            )
        finally:
            client.close()

        assert outcome.exit_code == 0
        assert output.read_text() == "from-config"
        marker = json.loads((data_dir / "installs" / "v21.1.1" / MARKER_FILENAME).read_text())
        assert "environment" not in marker


class TestCancellation:
    """Cancelling a client coroutine stops its worker thread."""

    def test_cancelled_use_commits_nothing(self, client, release_index, lock_manager, data_dir):
        release_index.add_release("21.1.1")

        cancel_during_download(client, "21.1.1")

        # The worker holds the install lock until it has stopped
        with lock_manager.install_lock("v21.1.1"):
            pass

        assert run(client.installed_versions()) == []
        assert run(client.active_toolchain()) is None
        assert list((data_dir / "installs").iterdir()) == []

    def test_cancelled_use_keeps_previous_pointer(self, client, release_index, lock_manager):
        release_index.add_release("20.1.0")
        release_index.add_release("21.1.1")
        run(client.use("20.1.0"))

        cancel_during_download(client, "21.1.1")
        with lock_manager.install_lock("v21.1.1"):
            pass

        assert run(client.installed_versions()) == [v("20.1.0")]
        assert run(client.active_toolchain()) == v("20.1.0")


class TestInstall:
    """Tests for ToolchainClient.install()."""

    def test_install_activates_only_when_unset(self, client, release_index):
        release_index.add_release("20.1.0")
        release_index.add_release("21.1.1")

        first = run(client.install("20.1.0"))
        second = run(client.install("21.1.1"))

        assert first.activated is True
        assert second.activated is False
        assert run(client.active_toolchain()) == v("20.1.0")

    def test_install_existing_is_noop(self, client, release_index):
        release_index.add_release("21.1.1")
        run(client.install("21.1.1"))

        result = run(client.install("21.1.1"))

        assert result.installed is False
        assert release_index.download_count("21.1.1") == 1

    def test_force_reinstall_keeps_active(self, client, release_index):
        release_index.add_release("21.1.1")
        run(client.use("21.1.1"))

        result = run(client.install("21.1.1", force=True))

        assert result.installed is True
        assert result.activated is True
        assert release_index.download_count("21.1.1") == 2
        assert run(client.active_toolchain()) == v("21.1.1")

    def test_failed_forced_reinstall_keeps_install(
        self, client, release_index, mocked_responses, data_dir
    ):
        release_index.add_release("21.1.1")
        run(client.use("21.1.1"))
        mocked_responses.replace(
            responses.GET, release_index.asset_url("21.1.1"), status=500
        )

        with pytest.raises(NetworkError) as exc_info:
            run(client.install("21.1.1", force=True))

        assert exc_info.value.operation == "install"
        assert run(client.installed_versions()) == [v("21.1.1")]
        assert run(client.active_toolchain()) == v("21.1.1")
        assert (data_dir / "installs" / "v21.1.1" / "bin" / "clang").is_file()


class TestRemove:
    """Tests for ToolchainClient.remove()."""

    def test_remove_all(self, client, release_index):
        release_index.add_release("20.1.0")
        release_index.add_release("21.1.1")
        run(client.install("20.1.0"))
        run(client.install("21.1.1"))

        removed = run(client.remove("all"))

        assert sorted(removed) == [v("20.1.0"), v("21.1.1")]
        assert run(client.installed_versions()) == []
        assert run(client.active_toolchain()) is None

    def test_remove_missing(self, client):
        with pytest.raises(NotInstalled) as exc_info:
            run(client.remove("v21.1.1"))

        assert exc_info.value.operation == "remove"


class TestQueries:
    """Tests for query operations."""

    def test_construction_creates_layout(self, client, data_dir):
        for name in ("cache", "installs", "locks"):
            assert (data_dir / name).is_dir()

    def test_available_versions(self, client, release_index):
        release_index.add_release("20.1.0")
        release_index.add_release("21.1.1")

        assert run(client.available_versions()) == [v("21.1.1"), v("20.1.0")]

    def test_resolve(self, client, release_index):
        release_index.add_release("21.1.1")

        descriptor = run(client.resolve("latest"))

        assert descriptor.url == release_index.asset_url("21.1.1")

    def test_purge_empty_cache(self, client):
        assert run(client.purge_cache()).removed == []

    def test_purge_reclaims_install_leftovers(self, client, data_dir):
        orphan = data_dir / "installs" / ".tmp-v20.1.0-abc123xy"
        (orphan / "bin").mkdir(parents=True)
        (orphan / "bin" / "clang").write_bytes(b"partial")

        result = run(client.purge_cache())

        assert result.removed == [".tmp-v20.1.0-abc123xy"]
        assert not orphan.exists()

    def test_purge_skips_leftovers_of_running_install(self, client, data_dir, lock_manager):
        orphan = data_dir / "installs" / ".tmp-v20.1.0-abc123xy"
        orphan.mkdir()

        with lock_manager.install_lock("v20.1.0"):
            result = run(client.purge_cache())

        assert result.skipped == [".tmp-v20.1.0-abc123xy"]
        assert orphan.is_dir()


    def test_toolchain_handle(self, client, release_index, data_dir):
        release_index.add_release("21.1.1")
        run(client.use("21.1.1"))

        toolchain = run(client.toolchain())

        assert toolchain.bin_dir == data_dir / "installs" / "v21.1.1" / "bin"

    @pytest.mark.skipif(sys.platform == "win32", reason="archive tools are sh scripts")
    def test_run_installed_tool(self, client, release_index):
        release_index.add_release("21.1.1")
        run(client.use("21.1.1"))

        outcome = run(client.run(None, "clang", ["--version"]))

        assert outcome.exit_code == 0
