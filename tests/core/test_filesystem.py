"""
Unit tests for filesystem utilities.

Tests archive extraction, atomic writes, safe deletion and hashing.
"""

import hashlib
import io
import os
import tarfile
import zipfile

import pytest

from armtoolchain.core.exceptions import (
    ArchiveExtractionError,
    FilesystemError,
    InsecureArchiveError,
    UnsupportedArchiveFormat,
)
from armtoolchain.core.filesystem import (
    atomic_write,
    compute_file_hash,
    directory_size,
    extract_archive,
    is_supported_archive,
    normalize_root_directory,
    remove_file,
    safe_rmtree,
)


class TestExtractArchive:
    """Test extract_archive()."""

    def test_extract_tar_xz(self, make_archive, tmp_path):
        archive = make_archive("21.1.1")
        dest = tmp_path / "out"

        extract_archive(archive, dest)

        root = dest / "ATfE-21.1.1-Linux-x86_64"
        assert (root / "bin" / "clang").is_file()
        assert (root / "VERSION.txt").read_text() == "21.1.1\n"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_extract_tar_keeps_executable_bit(self, make_archive, tmp_path):
        archive = make_archive("21.1.1")
        dest = tmp_path / "out"

        extract_archive(archive, dest)

        clang = dest / "ATfE-21.1.1-Linux-x86_64" / "bin" / "clang"
        assert os.access(clang, os.X_OK)

    def test_extract_zip(self, tmp_path):
        archive = tmp_path / "toolchain.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("ATfE/bin/clang.exe", b"MZ")
            zf.writestr("ATfE/lib/libc.a", b"lib")

        extract_archive(archive, tmp_path / "out")

        assert (tmp_path / "out" / "ATfE" / "bin" / "clang.exe").read_bytes() == b"MZ"

    def test_progress_callback(self, make_archive, tmp_path):
        calls = []
        extract_archive(make_archive(), tmp_path / "out", lambda cur, total: calls.append((cur, total)))

        assert calls
        assert calls[-1][0] == calls[-1][1]

    def test_rejects_traversal(self, tmp_path):
        archive = tmp_path / "evil.tar.xz"
        with tarfile.open(archive, "w:xz") as tar:
            info = tarfile.TarInfo("../escaped.txt")
            info.size = 4
            tar.addfile(info, io.BytesIO(b"evil"))

        with pytest.raises(InsecureArchiveError):
            extract_archive(archive, tmp_path / "out")

        assert not (tmp_path / "escaped.txt").exists()

    @pytest.mark.parametrize("name", ["toolchain.rar", "toolchain.tar.gz", "toolchain.tgz"])
    def test_unsupported_format(self, tmp_path, name):
        archive = tmp_path / name
        archive.write_bytes(b"not a supported archive")

        with pytest.raises(UnsupportedArchiveFormat):
            extract_archive(archive, tmp_path / "out")

    def test_corrupt_archive(self, tmp_path):
        archive = tmp_path / "broken.tar.xz"
        archive.write_bytes(b"definitely not xz")

        with pytest.raises(ArchiveExtractionError):
            extract_archive(archive, tmp_path / "out")

    def test_missing_archive(self, tmp_path):
        with pytest.raises(ArchiveExtractionError, match="Archive not found"):
            extract_archive(tmp_path / "missing.tar.xz", tmp_path / "out")

    def test_is_supported_archive(self):
        assert is_supported_archive("ATfE-21.1.1-Linux-x86_64.tar.xz")
        assert is_supported_archive("ATfE-21.1.1-Windows-x86_64.ZIP")
        assert not is_supported_archive("ATfE-21.1.1.sha256")
        # Only the formats Arm publishes releases in
        assert not is_supported_archive("ATfE-21.1.1-Linux-x86_64.tar.gz")
        assert not is_supported_archive("ATfE-21.1.1-Linux-x86_64.tar.bz2")


class TestNormalizeRootDirectory:
    """Test normalize_root_directory()."""

    def test_single_folder_becomes_root(self, tmp_path):
        (tmp_path / "ATfE" / "bin").mkdir(parents=True)

        assert normalize_root_directory(tmp_path) == tmp_path / "ATfE"

    def test_flat_layout_keeps_root(self, tmp_path):
        (tmp_path / "bin").mkdir()
        (tmp_path / "README").write_text("x")

        assert normalize_root_directory(tmp_path) == tmp_path


class TestAtomicWrite:
    """Test atomic_write()."""

    def test_writes_text(self, tmp_path):
        target = tmp_path / "active-toolchain"
        atomic_write(target, "v21.1.1\n")

        assert target.read_text() == "v21.1.1\n"

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "active-toolchain"
        target.write_text("v20.1.0\n")

        atomic_write(target, "v21.1.1\n")

        assert target.read_text() == "v21.1.1\n"
        assert [p.name for p in tmp_path.iterdir()] == ["active-toolchain"]

    def test_writes_bytes(self, tmp_path):
        target = tmp_path / "blob"
        atomic_write(target, b"\x00\x01")

        assert target.read_bytes() == b"\x00\x01"

    def test_failure_keeps_original(self, tmp_path, monkeypatch):
        target = tmp_path / "active-toolchain"
        target.write_text("v20.1.0\n")

        def fail_replace(self, other):
            raise OSError("disk full")

        monkeypatch.setattr("pathlib.Path.replace", fail_replace)

        with pytest.raises(FilesystemError, match="disk full"):
            atomic_write(target, "v21.1.1\n")

        assert target.read_text() == "v20.1.0\n"
        assert [p.name for p in tmp_path.iterdir()] == ["active-toolchain"]


class TestSafeDeletion:
    """Test safe_rmtree() and remove_file()."""

    def test_safe_rmtree_removes_tree(self, tmp_path):
        target = tmp_path / "installs" / ".trash-v21.1.1-abc"
        (target / "bin").mkdir(parents=True)
        (target / "bin" / "clang").write_text("x")

        safe_rmtree(target, require_prefix=tmp_path / "installs")

        assert not target.exists()

    def test_safe_rmtree_refuses_outside_prefix(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()

        with pytest.raises(ValueError, match="not under required prefix"):
            safe_rmtree(outside, require_prefix=tmp_path / "installs")

        assert outside.exists()

    def test_safe_rmtree_missing_is_noop(self, tmp_path):
        safe_rmtree(tmp_path / "missing")

    def test_safe_rmtree_rejects_file(self, tmp_path):
        file_path = tmp_path / "file"
        file_path.write_text("x")

        with pytest.raises(FilesystemError):
            safe_rmtree(file_path)

    def test_remove_file_missing_is_noop(self, tmp_path):
        remove_file(tmp_path / "missing")

    def test_remove_file(self, tmp_path):
        file_path = tmp_path / "file"
        file_path.write_text("x")

        remove_file(file_path)

        assert not file_path.exists()


class TestSizeAndHash:
    """Test directory_size() and compute_file_hash()."""

    def test_directory_size(self, tmp_path):
        (tmp_path / "a").write_bytes(b"x" * 10)
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "b").write_bytes(b"y" * 5)

        assert directory_size(tmp_path) == 15

    def test_compute_file_hash(self, tmp_path):
        file_path = tmp_path / "data"
        file_path.write_bytes(b"hello world")

        assert compute_file_hash(file_path) == hashlib.sha256(b"hello world").hexdigest()

    def test_compute_file_hash_missing(self, tmp_path):
        with pytest.raises(FilesystemError):
            compute_file_hash(tmp_path / "missing")

    def test_compute_file_hash_unknown_algorithm(self, tmp_path):
        file_path = tmp_path / "data"
        file_path.write_bytes(b"x")

        with pytest.raises(ValueError, match="Unsupported hash algorithm"):
            compute_file_hash(file_path, algorithm="nope")
