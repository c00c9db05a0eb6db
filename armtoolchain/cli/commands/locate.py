"""
Locate command implementation.

Prints the absolute path of a toolchain (or of a path inside it).
"""

import logging

from armtoolchain.cli.utils import run_client

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the locate command.

    Args:
        args: Parsed command-line arguments with:
            - toolchain: Version (default: the active one)
            - subpath: Optional path inside the toolchain, e.g. 'bin'

    Returns:
        Exit code (0 for success)
    """
    path = run_client(
        args, lambda client: client.locate(args.toolchain, subpath=args.subpath)
    )
    print(path)
    return 0
