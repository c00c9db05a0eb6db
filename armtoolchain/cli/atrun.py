"""
atrun: run a command with the active toolchain on PATH.

Shorthand for ``armtoolchain run``; takes the same arguments and exits with
the command's status:

    atrun clang --version
    atrun -T 20.1.0 make all
"""

import argparse
import sys

from armtoolchain.cli.parser import CLI, add_global_options, add_run_arguments


class AtrunCLI(CLI):
    """Command-line interface of the atrun entry point."""

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="atrun",
            description=(
                "Run a command with the active Arm Toolchain for Embedded added to PATH. "
                "See also: armtoolchain"
            ),
        )
        add_global_options(parser, prog="atrun")
        add_run_arguments(parser)
        parser.set_defaults(command="run")
        return parser


def main():
    """Main entry point for atrun."""
    sys.exit(AtrunCLI().run())


if __name__ == "__main__":
    main()
