import logging
import socket
import threading
from typing import Iterator, Optional

from codec import Record, encode_record, read_record
from errors import MeshEstablishmentError, TransportError

logger = logging.getLogger(__name__)


class Channel:
    """
    One live TCP stream between two processes, used for both directions.

    Writes are serialized with a lock so concurrent delayed sends never
    interleave their frames. Reads happen only on the receiver thread.
    """
    def __init__(self, local_id: int, peer_id: int, sock: socket.socket, reader=None):
        self.local_id = local_id
        self.peer_id = peer_id
        self.sock = sock
        self.reader = reader if reader is not None else sock.makefile('rb')
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

    def __repr__(self):
        state = "CLOSED" if self.closed else "OPEN"
        return f"Channel({self.local_id}<->{self.peer_id}, {state})"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send_bytes(self, data: bytes):
        if self.closed:
            raise TransportError(f"channel {self.local_id}->{self.peer_id} is closed")
        with self._write_lock:
            try:
                self.sock.sendall(data)
            except OSError as e:
                self.close()
                raise TransportError(f"write to process {self.peer_id} failed: {e}") from e

    def send_record(self, record: Record):
        self.send_bytes(encode_record(record))

    def records(self) -> Iterator[Record]:
        """Yield records until the peer closes the stream. Errors propagate."""
        while True:
            record = read_record(self.reader)
            if record is None:
                return
            yield record

    def close(self):
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            # Wakes a receiver thread blocked in recv
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.reader.close()
        except OSError as e:
            logger.debug(f"Closing reader for {self!r} failed: {e}")
        self.sock.close()


class ChannelRegistry:
    """
    Thread-safe table peer_id -> Channel for one process.

    The accept loop, the dialer, receiver threads and the send path all go
    through this object. A peer is "settled" once it is either connected or
    marked unreachable; unreachable peers never come back.
    """
    def __init__(self, local_id: int, peer_ids):
        self.local_id = local_id
        self.expected = frozenset(peer_ids)
        self._cond = threading.Condition()
        self._channels: dict[int, Channel] = {}
        self._unreachable: dict[int, str] = {}

    def register(self, channel: Channel):
        pid = channel.peer_id
        with self._cond:
            if pid not in self.expected:
                raise MeshEstablishmentError(f"process {pid} is not a peer of {self.local_id}", peer_id=pid)
            if pid in self._channels:
                raise MeshEstablishmentError(f"duplicate channel to process {pid}", peer_id=pid)
            if pid in self._unreachable:
                raise MeshEstablishmentError(
                    f"process {pid} was already marked unreachable ({self._unreachable[pid]})", peer_id=pid
                )
            self._channels[pid] = channel
            self._cond.notify_all()

    def get(self, peer_id: int) -> Optional[Channel]:
        with self._cond:
            return self._channels.get(peer_id)

    def remove(self, peer_id: int, reason: str) -> Optional[Channel]:
        with self._cond:
            channel = self._channels.pop(peer_id, None)
            self._unreachable.setdefault(peer_id, reason)
            self._cond.notify_all()
            return channel

    def mark_unreachable(self, peer_id: int, reason: str):
        self.remove(peer_id, reason)

    def is_unreachable(self, peer_id: int) -> bool:
        with self._cond:
            return peer_id in self._unreachable

    def peers(self) -> list[int]:
        with self._cond:
            return sorted(self._channels)

    def unreachable(self) -> dict[int, str]:
        with self._cond:
            return dict(self._unreachable)

    def _settled(self) -> bool:
        return len(self._channels) + len(self._unreachable) >= len(self.expected)

    def is_settled(self) -> bool:
        with self._cond:
            return self._settled()

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(self._settled, timeout)

    def drain(self) -> list[Channel]:
        """Remove every channel without marking peers unreachable (shutdown)."""
        with self._cond:
            channels = list(self._channels.values())
            self._channels.clear()
            self._cond.notify_all()
            return channels

    def __len__(self):
        with self._cond:
            return len(self._channels)
