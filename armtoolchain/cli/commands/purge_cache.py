"""
Purge-cache command implementation.

Deletes cached downloads that are not currently being written, and the
temporary directories left under installs/ by interrupted installs.
"""

import logging

from armtoolchain.cli.utils import format_bytes, run_client, safe_print

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the purge-cache command.

    Returns:
        Exit code (0 for success)
    """
    result = run_client(args, lambda client: client.purge_cache())

    for key in result.skipped:
        print(f"Skipped {key} (in use by another operation)")

    safe_print(
        f"✓ Purged {len(result.removed)} cache entries, "
        f"freed {format_bytes(result.bytes_freed)}"
    )
    return 0
