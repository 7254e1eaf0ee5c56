"""Cooperative cancellation for engine runs.

The engine polls the token between units and between actions, so an
operator interrupt never leaves a store write half-applied: the in-flight
step finishes and the run stops at the next boundary.
"""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason


@contextmanager
def cancel_on_signals(
    token: CancellationToken,
    signals: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM),
) -> Iterator[CancellationToken]:
    """Route SIGINT/SIGTERM to ``token`` for the duration of a block.

    The first signal requests cancellation; a second SIGINT falls through
    to the default ``KeyboardInterrupt``.  Previous handlers are restored
    on exit.  Only usable from the main thread.
    """
    previous = {}

    def _handler(signum: int, frame: FrameType | None) -> None:
        if token.cancelled and signum == signal.SIGINT:
            raise KeyboardInterrupt
        name = signal.Signals(signum).name
        logger.warning(
            "Received %s; finishing the current step before stopping.", name
        )
        token.cancel(f"signal {name}")

    for sig in signals:
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
