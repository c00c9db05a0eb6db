"""
Run command implementation.

Runs a command with a toolchain's bin directory on PATH and exits with the
command's status.
"""

import logging

from armtoolchain.cli.utils import run_client

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the run command.

    Args:
        args: Parsed command-line arguments with:
            - toolchain: Version override (default: the active one)
            - no_cross_env: Do not set TARGET_CC/TARGET_AR
            - program: Executable to run
            - args: Arguments for the executable

    Returns:
        The child's exit code, or 128 + signal number if it was killed
    """
    outcome = run_client(
        args,
        lambda client: client.run(
            args.toolchain,
            args.program,
            args.args,
            cross_env=False if args.no_cross_env else None,
        ),
    )

    if outcome.signal is not None:
        logger.debug(f"{args.program} terminated by signal {outcome.signal}")
    return outcome.shell_exit_code
