"""Time-ordered invoice identifiers that can be assigned before the row exists.

Layout, most significant first::

    milliseconds since epoch | worker id (4 bits) | sequence (12 bits)

The result always fits a 53-bit safe integer so it survives JSON clients.
"""

from __future__ import annotations

import threading
import time
from functools import lru_cache
from typing import Callable

from app.core.exceptions import InvoiceIdConfigError, InvoiceIdOverflowError
from app.core.settings import settings

WORKER_BITS = 4
SEQUENCE_BITS = 12
MAX_WORKER_ID = (1 << WORKER_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1
MAX_SAFE_INTEGER = (1 << 53) - 1


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class InvoiceIdGenerator:
    def __init__(
        self,
        *,
        epoch_ms: int,
        worker_id: int,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        if isinstance(epoch_ms, bool) or not isinstance(epoch_ms, int) or epoch_ms < 0:
            raise InvoiceIdConfigError(f"Invoice id epoch must be a non-negative integer, got {epoch_ms!r}")
        if isinstance(worker_id, bool) or not isinstance(worker_id, int) or not 0 <= worker_id <= MAX_WORKER_ID:
            raise InvoiceIdConfigError(
                f"Invoice id worker id must be an integer between 0 and {MAX_WORKER_ID}, got {worker_id!r}"
            )
        self.epoch_ms = epoch_ms
        self.worker_id = worker_id
        self._clock = clock
        self._lock = threading.Lock()
        self._last_timestamp = -1
        self._sequence = 0

    def _current_timestamp(self) -> int:
        # A clock behind the epoch is clamped rather than producing negative ids.
        return max(self._clock(), self.epoch_ms)

    def _wait_next_millis(self, last: int) -> int:
        timestamp = self._current_timestamp()
        while timestamp <= last:
            timestamp = self._current_timestamp()
        return timestamp

    def next_id(self) -> int:
        with self._lock:
            timestamp = self._current_timestamp()
            if timestamp < self._last_timestamp:
                # Clock moved backwards; stay on the last issued millisecond.
                timestamp = self._last_timestamp

            if timestamp == self._last_timestamp:
                self._sequence = (self._sequence + 1) & MAX_SEQUENCE
                if self._sequence == 0:
                    timestamp = self._wait_next_millis(self._last_timestamp)
            else:
                self._sequence = 0

            self._last_timestamp = timestamp
            value = (
                ((timestamp - self.epoch_ms) << (WORKER_BITS + SEQUENCE_BITS))
                | (self.worker_id << SEQUENCE_BITS)
                | self._sequence
            )
            if value > MAX_SAFE_INTEGER:
                raise InvoiceIdOverflowError("Generated invoice id exceeds the 53-bit safe integer range")
            return value


def decompose_invoice_id(invoice_id: int, *, epoch_ms: int) -> tuple[int, int, int]:
    """Split an id back into (timestamp_ms, worker_id, sequence)."""
    sequence = invoice_id & MAX_SEQUENCE
    worker_id = (invoice_id >> SEQUENCE_BITS) & MAX_WORKER_ID
    timestamp = (invoice_id >> (WORKER_BITS + SEQUENCE_BITS)) + epoch_ms
    return timestamp, worker_id, sequence


@lru_cache(maxsize=1)
def get_invoice_id_generator() -> InvoiceIdGenerator:
    return InvoiceIdGenerator(
        epoch_ms=settings.invoice_id_epoch_ms,
        worker_id=settings.invoice_id_worker_id,
    )
