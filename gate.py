"""
Admission control for remote image calls.

The gate never queues: a caller that cannot acquire a token must not start
its work at all.
"""

import logging
from contextlib import asynccontextmanager

from config import MAX_CONCURRENT_REQUESTS

logger = logging.getLogger(__name__)


class ConcurrencyGate:
    def __init__(self, max_in_flight: int = MAX_CONCURRENT_REQUESTS):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.max_in_flight = max_in_flight
        self.in_flight = 0

    @property
    def at_limit(self) -> bool:
        return self.in_flight >= self.max_in_flight

    def try_acquire(self) -> bool:
        if self.at_limit:
            logger.info("Admission denied: %d/%d requests in flight", self.in_flight, self.max_in_flight)
            return False
        self.in_flight += 1
        return True

    def release(self) -> None:
        self.in_flight = max(0, self.in_flight - 1)

    @asynccontextmanager
    async def admit(self):
        """Yield True when a token was taken; the token is released on exit no matter how the body ends."""
        admitted = self.try_acquire()
        try:
            yield admitted
        finally:
            if admitted:
                self.release()
