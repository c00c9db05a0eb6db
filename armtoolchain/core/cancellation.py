"""
Cooperative cancellation for work running in executor threads.

A thread cannot be interrupted from the outside, so long-running steps
(transfers, extraction, commits) poll a CancellationToken at safe points
and stop with Cancelled once it is set. The client facade sets the token
when the awaiting coroutine is cancelled.

Usage:
    token = CancellationToken()
    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
        token.check()
        ...
"""

import threading
from typing import Optional

from armtoolchain.core.exceptions import Cancelled


class CancellationToken:
    """Thread-safe flag that turns into Cancelled at the next check()."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """
        Raise Cancelled if cancel() has been called.

        Raises:
            Cancelled: If the token is set
        """
        if self._event.is_set():
            raise Cancelled()


def check_cancelled(token: Optional[CancellationToken]) -> None:
    """check() for an optional token."""
    if token is not None:
        token.check()


__all__ = ["CancellationToken", "check_cancelled"]
