"""
Tests for the atrun entry point.
"""

import sys

import pytest

from armtoolchain.cli.atrun import AtrunCLI
from armtoolchain.cli.parser import CLI


@pytest.fixture
def data_args(monkeypatch, isolated_env, manager_config, linux_x64, data_dir):
    monkeypatch.setenv("ARM_TOOLCHAIN_INDEX_URL", manager_config.index_url)
    monkeypatch.setattr(
        "armtoolchain.toolchain.resolver.detect_platform", lambda: linux_x64
    )
    return ["--data-dir", str(data_dir)]


class TestAtrunParsing:
    """atrun takes the arguments of 'armtoolchain run' directly."""

    def test_command_and_arguments(self):
        args = AtrunCLI().parse_args(["clang", "--target=armv7m-none-eabi", "-c", "x.c"])

        assert args.command == "run"
        assert args.program == "clang"
        assert args.toolchain is None
        assert args.no_cross_env is False
        assert args.args == ["--target=armv7m-none-eabi", "-c", "x.c"]

    def test_same_options_as_run(self):
        argv = ["-T", "20.1.0", "--no-cross-env", "llvm-ar", "--version"]

        atrun_args = AtrunCLI().parse_args(argv)
        run_args = CLI().parse_args(["run", *argv])

        assert vars(atrun_args) == vars(run_args)

    def test_requires_command(self):
        with pytest.raises(SystemExit):
            AtrunCLI().parse_args([])

    def test_version_flag(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            AtrunCLI().run(["--version"])

        assert exc_info.value.code == 0
        assert capsys.readouterr().out.startswith("atrun ")


@pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh")
class TestAtrunCommand:
    """atrun runs through the same command implementation as 'run'."""

    def test_exit_status_is_propagated(self, data_args, release_index):
        release_index.add_release("21.1.1")
        assert CLI().run([*data_args, "use", "21.1.1"]) == 0

        assert AtrunCLI().run([*data_args, "sh", "-c", "exit 5"]) == 5

    def test_toolchain_on_path(self, data_args, release_index, data_dir, tmp_path):
        release_index.add_release("21.1.1")
        CLI().run([*data_args, "use", "21.1.1"])
        output = tmp_path / "which.txt"

        code = AtrunCLI().run([*data_args, "sh", "-c", f'command -v clang > "{output}"'])

        assert code == 0
        expected = data_dir / "installs" / "v21.1.1" / "bin" / "clang"
        assert output.read_text().strip() == str(expected)

    def test_without_active_toolchain(self, data_args):
        assert AtrunCLI().run([*data_args, "clang"]) == 31
