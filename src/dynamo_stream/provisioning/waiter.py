"""Cancellable fixed wait for IAM changes to propagate."""

from __future__ import annotations

import asyncio

import structlog

from dynamo_stream.provisioning.errors import WaitCancelledError

logger = structlog.get_logger()


class PropagationWaiter:
    """Sleeps a fixed number of seconds unless cancelled.

    Cancelling wakes every in-progress wait and fails every later one with
    ``WaitCancelledError``.
    """

    def __init__(self, seconds: float) -> None:
        if seconds < 0:
            msg = f"Propagation wait must be >= 0 seconds, got {seconds}"
            raise ValueError(msg)
        self._seconds = seconds
        self._cancelled = asyncio.Event()

    @property
    def seconds(self) -> float:
        return self._seconds

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    async def wait(self) -> None:
        if self._cancelled.is_set():
            raise WaitCancelledError("Propagation wait was cancelled")
        if self._seconds == 0:
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=self._seconds)
        except TimeoutError:
            return
        logger.warning("waiter.cancelled", seconds=self._seconds)
        raise WaitCancelledError("Propagation wait was cancelled")
