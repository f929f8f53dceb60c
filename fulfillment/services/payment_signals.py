"""
In-process payment signal bus.

The payment collaborator (gateway webhook handler, COD confirmation, ...)
publishes one PaymentSignal per order token; checkout waits on it. The first
signal for a token wins and later duplicates are ignored, so a retried
webhook cannot flip an outcome.

Recorded signals are kept for a retention window and then evicted. After
that the checkout attempt itself decides what a repeated signal means.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from fulfillment.domain.checkout import PaymentSignal

logger = logging.getLogger(__name__)


class PaymentSignalSource(Protocol):
    async def wait_for(self, order_token: str) -> PaymentSignal: ...


def _resolve(future: "asyncio.Future[PaymentSignal]", signal: PaymentSignal) -> None:
    if not future.done():
        future.set_result(signal)


class PaymentSignalBus:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._signals: Dict[str, Tuple[PaymentSignal, float]] = {}
        self._waiters: Dict[str, List["asyncio.Future[PaymentSignal]"]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)

    def publish(self, signal: PaymentSignal) -> bool:
        """
        Record the signal and wake anyone waiting on its order token.

        Returns False when a signal for this token was already published.
        Safe to call from any thread.
        """

        with self._lock:
            existing = self._signals.get(signal.order_token)
            if existing is not None:
                logger.warning(
                    "Duplicate payment signal for order %s ignored (%s, first was %s)",
                    signal.order_token,
                    signal.outcome.value,
                    existing[0].outcome.value,
                )
                return False
            self._signals[signal.order_token] = (signal, self._clock())
            waiters = self._waiters.pop(signal.order_token, [])

        for future in waiters:
            future.get_loop().call_soon_threadsafe(_resolve, future, signal)
        return True

    def get(self, order_token: str) -> Optional[PaymentSignal]:
        with self._lock:
            entry = self._signals.get(order_token)
        return entry[0] if entry is not None else None

    def evict_older_than(self, max_age_seconds: float) -> int:
        """Forget signals published more than `max_age_seconds` ago. Returns how many."""

        cutoff = self._clock() - max_age_seconds
        with self._lock:
            stale = [token for token, (_, at) in self._signals.items() if at <= cutoff]
            for token in stale:
                del self._signals[token]
        if stale:
            logger.debug("Evicted %d payment signals", len(stale))
        return len(stale)

    async def wait_for(self, order_token: str) -> PaymentSignal:
        loop = asyncio.get_running_loop()
        with self._lock:
            existing = self._signals.get(order_token)
            if existing is not None:
                return existing[0]
            future: "asyncio.Future[PaymentSignal]" = loop.create_future()
            self._waiters.setdefault(order_token, []).append(future)

        try:
            return await future
        finally:
            with self._lock:
                waiters = self._waiters.get(order_token)
                if waiters and future in waiters:
                    waiters.remove(future)
                    if not waiters:
                        del self._waiters[order_token]


__all__ = ["PaymentSignalBus", "PaymentSignalSource"]
