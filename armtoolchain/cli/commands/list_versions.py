"""
List command implementation.

Shows installed toolchains, marking the active one. With ``--available``
the versions published in the release index are listed instead.
"""

import logging

from armtoolchain.cli.utils import run_client, safe_print

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the list command.

    Args:
        args: Parsed command-line arguments with:
            - available: List versions from the release index

    Returns:
        Exit code (0 for success)
    """
    if getattr(args, "available", False):
        versions = run_client(args, lambda client: client.available_versions())
        if not versions:
            print("No releases found in the release index")
            return 0
        for version in versions:
            print(version)
        return 0

    async def _query(client):
        return await client.installed_versions(), await client.active_toolchain()

    installed, active = run_client(args, _query)

    if not installed:
        print("No toolchains installed")
        print("Use 'armtoolchain use latest' to install one")
        return 0

    for version in installed:
        marker = "*" if version == active else " "
        safe_print(f"{marker} {version}")

    return 0
