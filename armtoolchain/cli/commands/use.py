"""
Use command implementation.

Resolves a version, installs it if needed and makes it the active toolchain.
"""

import logging

from armtoolchain.cli.utils import make_progress_printer, run_client, safe_print

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the use command.

    Args:
        args: Parsed command-line arguments with:
            - version: Version token or 'latest'
            - no_wait: Fail instead of waiting for locks

    Returns:
        Exit code (0 for success)
    """
    progress = make_progress_printer(quiet=args.quiet)

    result = run_client(
        args,
        lambda client: client.use(
            args.version, blocking=not args.no_wait, progress_callback=progress
        ),
    )

    if result.installed:
        safe_print(f"✓ Installed {result.version} at {result.path}")
    safe_print(f"✓ Active toolchain: {result.version}")
    return 0
