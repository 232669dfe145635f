"""
Delayed transmission of records.

Every send draws its own delay, so two records sent on the same channel can
arrive in the opposite order of sending. Nothing here restores FIFO order.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from codec import Record, encode_record
from errors import TransportError

logger = logging.getLogger(__name__)


def draw_delay(min_delay: int, max_delay: int, rng=None) -> int:
    # Milliseconds in [min_delay, max_delay); a degenerate range is a fixed delay
    rng = rng or random
    if min_delay < 0 or max_delay < min_delay:
        raise ValueError(f"invalid delay range [{min_delay}, {max_delay})")
    if min_delay == max_delay:
        return min_delay
    return rng.randrange(min_delay, max_delay)


@dataclass(eq=False)
class PendingSend:
    destination_id: int
    text: str
    delay_ms: int
    release_time: float
    cancelled: bool = False
    error: Optional[Exception] = None
    done: threading.Event = field(default_factory=threading.Event, repr=False)
    _timer: Optional[threading.Timer] = field(default=None, repr=False)
    _released: bool = field(default=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def cancel(self) -> bool:
        # False once the timer has claimed the send, even if the write is still running
        with self._lock:
            if self._released or self.cancelled:
                return False
            self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        self.done.set()
        return True

    def _claim(self) -> bool:
        with self._lock:
            if self.cancelled:
                return False
            self._released = True
            return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.done.wait(timeout)


class DelayScheduler:
    def __init__(
        self,
        min_delay: int,
        max_delay: int,
        rng: Optional[random.Random] = None,
        delay_fn: Optional[Callable[[], int]] = None,
    ):
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError(f"invalid delay range [{min_delay}, {max_delay})")
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.rng = rng or random.Random()
        self.delay_fn = delay_fn
        self._lock = threading.Lock()
        self._pending: list[PendingSend] = []

    def next_delay(self) -> int:
        if self.delay_fn is not None:
            return int(self.delay_fn())
        return draw_delay(self.min_delay, self.max_delay, self.rng)

    def schedule(self, channel, record: Record) -> PendingSend:
        """
        Queue a record for transmission after a random delay. Returns at once.

        The record is encoded before anything is scheduled, so an unencodable
        record raises FramingError here instead of failing later on the timer.
        """
        data = encode_record(record)
        delay_ms = self.next_delay()
        pending = PendingSend(
            destination_id=channel.peer_id,
            text=record.text,
            delay_ms=delay_ms,
            release_time=time.time() + delay_ms / 1000.0,
        )
        timer = threading.Timer(delay_ms / 1000.0, self._release, args=(pending, channel, data))
        timer.daemon = True
        pending._timer = timer
        with self._lock:
            self._pending.append(pending)
        timer.start()
        return pending

    def _release(self, pending: PendingSend, channel, data: bytes):
        with self._lock:
            if pending in self._pending:
                self._pending.remove(pending)
        if not pending._claim():
            return
        try:
            channel.send_bytes(data)
        except TransportError as e:
            pending.error = e
            logger.warning(f"Dropped delayed send to process {pending.destination_id}: {e}")
        finally:
            pending.done.set()

    def pending(self) -> list[PendingSend]:
        with self._lock:
            return list(self._pending)

    def cancel_all(self) -> int:
        with self._lock:
            pending, self._pending = self._pending, []
        return sum(1 for p in pending if p.cancel())
