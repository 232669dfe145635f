import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from channel import Channel
from errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageReceived:
    process_id: int
    sender_id: int
    text: str
    arrival_time: float


@dataclass(frozen=True)
class PeerLost:
    process_id: int
    peer_id: int
    reason: str


@dataclass(frozen=True)
class PeerUnreachable:
    process_id: int
    peer_id: int
    reason: str


class ReceiverLoop:
    """
    Drains one channel on a daemon thread: OPEN -> (DECODE -> EMIT)* -> CLOSED.

    Each record becomes a MessageReceived on the sink. When the stream ends or
    fails, on_closed(channel, reason) is called exactly once and the thread
    exits. A closed channel is never reopened.
    """
    def __init__(
        self,
        channel: Channel,
        sink: Callable[[object], None],
        on_closed: Optional[Callable[[Channel, str], None]] = None,
    ):
        self.channel = channel
        self.sink = sink
        self.on_closed = on_closed
        self.thread = threading.Thread(
            target=self.run,
            name=f"recv-{channel.local_id}<-{channel.peer_id}",
            daemon=True,
        )

    def start(self):
        self.thread.start()
        return self

    def run(self):
        reason = "stream closed"
        try:
            for record in self.channel.records():
                self.sink(MessageReceived(
                    process_id=self.channel.local_id,
                    sender_id=record.sender_id,
                    text=record.text,
                    arrival_time=time.time(),
                ))
        except TransportError as e:
            reason = str(e)
            if not self.channel.closed:
                logger.warning(f"Channel {self.channel.local_id}<-{self.channel.peer_id} failed: {e}")
        finally:
            self.channel.close()
            if self.on_closed is not None:
                self.on_closed(self.channel, reason)

    def join(self, timeout: Optional[float] = None):
        self.thread.join(timeout)
