"""
armtoolchain CLI argument parser.

This module implements the command-line interface for armtoolchain using argparse.
"""

import argparse
import importlib
import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import List, Optional

from armtoolchain.cli.utils import print_error
from armtoolchain.core.exceptions import ArmToolchainError

try:
    __version__ = version("armtoolchain")
except PackageNotFoundError:
    __version__ = "0.1.0"

logger = logging.getLogger(__name__)


def add_global_options(parser: argparse.ArgumentParser, prog: str = "armtoolchain"):
    """Add the options shared by every armtoolchain entry point."""
    parser.add_argument("--version", action="version", version=f"{prog} {__version__}")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Enable minimal output (errors only)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        metavar="PATH",
        help="Data directory (default: $ARM_TOOLCHAIN_HOME or ~/.armtoolchain)",
    )


def add_run_arguments(parser: argparse.ArgumentParser):
    """Add the arguments of 'armtoolchain run', also used by atrun."""
    parser.add_argument(
        "--toolchain",
        "-T",
        metavar="VERSION",
        help="Toolchain version (default: the active one)",
    )
    parser.add_argument(
        "--no-cross-env",
        action="store_true",
        help="Do not set TARGET_CC/TARGET_AR for cross-compilation",
    )
    parser.add_argument("program", metavar="COMMAND", help="Command to run")
    parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        metavar="ARGS",
        help="Arguments passed to the command",
    )


class CLI:
    """armtoolchain command-line interface."""

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="armtoolchain",
            description="armtoolchain - manage Arm Toolchain for Embedded installs",
            epilog='Use "armtoolchain COMMAND --help" for command-specific help',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        add_global_options(parser)

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command", help="Available commands", metavar="COMMAND"
        )

        self._add_list_command(subparsers)
        self._add_use_command(subparsers)
        self._add_install_command(subparsers)
        self._add_locate_command(subparsers)
        self._add_remove_command(subparsers)
        self._add_purge_cache_command(subparsers)
        self._add_run_command(subparsers)

        return parser

    def _add_no_wait_option(self, parser):
        parser.add_argument(
            "--no-wait",
            action="store_true",
            help="Fail immediately if another armtoolchain process holds a lock",
        )

    def _add_list_command(self, subparsers):
        """Add 'list' subcommand."""
        parser = subparsers.add_parser(
            "list",
            help="List installed toolchains",
            description="List installed toolchains; the active one is marked with '*'",
        )
        parser.add_argument(
            "--available",
            action="store_true",
            help="List versions published in the release index instead",
        )

    def _add_use_command(self, subparsers):
        """Add 'use' subcommand."""
        parser = subparsers.add_parser(
            "use",
            help="Install (if needed) and activate a toolchain",
            description="Resolve a version, install it if absent and make it active",
        )
        parser.add_argument(
            "version", metavar="VERSION", help="Version to use (e.g. 21.1.1, latest)"
        )
        self._add_no_wait_option(parser)

    def _add_install_command(self, subparsers):
        """Add 'install' subcommand."""
        parser = subparsers.add_parser(
            "install",
            help="Install a toolchain",
            description=(
                "Download and install a toolchain. It becomes active only if no "
                "toolchain is active yet."
            ),
        )
        parser.add_argument(
            "version",
            nargs="?",
            default="latest",
            metavar="VERSION",
            help="Version to install (default: latest)",
        )
        parser.add_argument(
            "--force",
            "-f",
            action="store_true",
            help="Reinstall even if the toolchain is already installed",
        )
        self._add_no_wait_option(parser)

    def _add_locate_command(self, subparsers):
        """Add 'locate' subcommand."""
        parser = subparsers.add_parser(
            "locate",
            help="Print the path of a toolchain",
            description="Print the install path of a toolchain, or of a path inside it",
        )
        parser.add_argument(
            "--toolchain",
            "-T",
            metavar="VERSION",
            help="Toolchain version (default: the active one)",
        )
        parser.add_argument(
            "subpath",
            nargs="?",
            metavar="SUBPATH",
            help="Path inside the toolchain, e.g. bin or lib",
        )

    def _add_remove_command(self, subparsers):
        """Add 'remove' subcommand."""
        parser = subparsers.add_parser(
            "remove",
            help="Remove installed toolchains",
            description="Remove one installed toolchain, or 'all' of them",
        )
        parser.add_argument(
            "version", metavar="VERSION", help="Version to remove, or 'all'"
        )
        self._add_no_wait_option(parser)

    def _add_purge_cache_command(self, subparsers):
        """Add 'purge-cache' subcommand."""
        subparsers.add_parser(
            "purge-cache",
            help="Delete cached downloads",
            description="Delete cached and partial downloads not currently in progress",
        )

    def _add_run_command(self, subparsers):
        """Add 'run' subcommand."""
        parser = subparsers.add_parser(
            "run",
            help="Run a command with a toolchain on PATH",
            description=(
                "Run a command with the toolchain's bin directory prepended to PATH. "
                "Exits with the command's exit status."
            ),
        )
        add_run_arguments(parser)

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse command-line arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with given arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code (0 for success, the error's exit code on failure)
        """
        parsed_args = self.parse_args(args)

        # Configure logging
        self._configure_logging(parsed_args)

        # Check if command specified
        if not parsed_args.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130  # Standard exit code for SIGINT
        except ArmToolchainError as e:
            print_error(str(e))
            if e.operation:
                logger.debug(f"Failed operation: {e.operation} ({type(e).__name__})")
            return e.exit_code
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return 1

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            force=True,  # Reconfigure if already configured
        )

    def _dispatch_command(self, args) -> int:
        """
        Dispatch to appropriate command handler.

        Args:
            args: Parsed arguments with command field

        Returns:
            Exit code from command handler
        """
        # Command module mapping
        command_map = {
            "list": "armtoolchain.cli.commands.list_versions",
            "use": "armtoolchain.cli.commands.use",
            "install": "armtoolchain.cli.commands.install",
            "locate": "armtoolchain.cli.commands.locate",
            "remove": "armtoolchain.cli.commands.remove",
            "purge-cache": "armtoolchain.cli.commands.purge_cache",
            "run": "armtoolchain.cli.commands.run",
        }

        module_name = command_map.get(args.command)
        if not module_name:
            logger.error(f"Unknown command: {args.command}")
            return 1

        module = importlib.import_module(module_name)
        return module.run(args)


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
