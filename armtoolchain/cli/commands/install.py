"""
Install command implementation.

Downloads and installs a toolchain without switching to it, unless no
toolchain is active yet.
"""

import logging

from armtoolchain.cli.utils import make_progress_printer, run_client, safe_print

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the install command.

    Args:
        args: Parsed command-line arguments with:
            - version: Version token (default: latest)
            - force: Reinstall even if already installed
            - no_wait: Fail instead of waiting for locks

    Returns:
        Exit code (0 for success)
    """
    progress = make_progress_printer(quiet=args.quiet)

    result = run_client(
        args,
        lambda client: client.install(
            args.version,
            force=args.force,
            blocking=not args.no_wait,
            progress_callback=progress,
        ),
    )

    if result.installed:
        safe_print(f"✓ Installed {result.version} at {result.path}")
    else:
        safe_print(f"✓ Toolchain up-to-date: {result.version} at {result.path}")

    if result.activated:
        logger.info(f"Active toolchain: {result.version}")

    return 0
