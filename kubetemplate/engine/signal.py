"""Coalescing change signal shared by every monitor of an engine."""

from __future__ import annotations

import asyncio

from kubetemplate.observability.metrics import CHANGE_SIGNALS_TOTAL


class ChangeSignal:
    """A capacity-one queue used as a "something changed" flag.

    ``notify`` never blocks: when a signal is already pending the new one is
    dropped, so any number of changes between two waits collapse into one.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[None] = asyncio.Queue(maxsize=1)

    def notify(self) -> bool:
        """Post a signal. Returns False when one was already pending."""
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            CHANGE_SIGNALS_TOTAL.labels(outcome="coalesced").inc()
            return False
        CHANGE_SIGNALS_TOTAL.labels(outcome="queued").inc()
        return True

    @property
    def pending(self) -> bool:
        return self._queue.full()

    async def wait(self) -> None:
        """Block until a signal is pending, then consume it."""
        await self._queue.get()

    def clear(self) -> None:
        """Drop a pending signal, if any."""
        try:
            self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
