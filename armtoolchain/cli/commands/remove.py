"""
Remove command implementation.

Removes one installed toolchain, or all of them.
"""

import logging

from armtoolchain.cli.utils import format_bytes, run_client, safe_print

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the remove command.

    Args:
        args: Parsed command-line arguments with:
            - version: Version to remove, or 'all'
            - no_wait: Fail instead of waiting for locks

    Returns:
        Exit code (0 for success)
    """
    removed = run_client(
        args, lambda client: client.remove(args.version, blocking=not args.no_wait)
    )

    if not removed:
        print("No toolchains installed")
        return 0

    for version, freed in removed.items():
        safe_print(f"✓ Removed {version} ({format_bytes(freed)})")

    return 0
