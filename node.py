import logging
import random
import socket
import threading
from typing import Callable, Optional

from channel import Channel, ChannelRegistry
from codec import Record, encode_handshake, read_handshake
from console import print_event
from errors import FramingError, MeshEstablishmentError, UserInputError
from receiver import PeerLost, PeerUnreachable, ReceiverLoop
from scheduler import DelayScheduler, PendingSend
from settings import Settings
from topology import Process, Topology, peers_to_dial

logger = logging.getLogger(__name__)

ACCEPT_POLL = 0.5  # seconds between checks of the running flag while accepting


class Node:
    """
    One mesh participant.

    The lower id of every pair dials, the higher id accepts, so each pair ends
    up with exactly one channel. start() binds the listening socket and returns;
    accepting and dialing continue on background threads. Use
    wait_until_settled() to block until every peer is connected or given up on.

    A failed dial, a bad handshake or a dropped channel only affects that peer.
    Only a bind failure is raised out of start().
    """
    def __init__(
        self,
        process_id: int,
        topology: Topology,
        sink: Optional[Callable[[object], None]] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        delay_fn: Optional[Callable[[], int]] = None,
    ):
        self.id = process_id
        self.process: Process = topology.get(process_id)
        self.topology = topology
        self.settings = settings or Settings()
        self.sink = sink or print_event
        self.registry = ChannelRegistry(process_id, [p.id for p in topology.peers_of(process_id)])
        self.scheduler = DelayScheduler(topology.min_delay, topology.max_delay, rng=rng, delay_fn=delay_fn)
        self.receivers: dict[int, ReceiverLoop] = {}
        self.listener: Optional[socket.socket] = None
        self._lock = threading.Lock()
        self._started = False
        self._stopped = threading.Event()

    def __repr__(self):
        return f"Node({self.id} @ {self.process.address}:{self.process.port})"

    @property
    def running(self) -> bool:
        return self._started and not self._stopped.is_set()

    # ---------- Startup ----------
    def start(self):
        if self._started:
            return self
        self._bind()
        self._started = True
        threading.Thread(target=self._accept_loop, name=f"accept-{self.id}", daemon=True).start()
        for peer in peers_to_dial(self.topology, self.id):
            threading.Thread(target=self._connect_peer, args=(peer,), name=f"dial-{self.id}->{peer.id}",
                             daemon=True).start()
        return self

    def _bind(self):
        _, port = self.process.endpoint
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(('', port))
            sock.listen(self.settings.listen_backlog)
        except OSError as e:
            sock.close()
            raise MeshEstablishmentError(f"Process {self.id} cannot listen on port {port}: {e}") from e
        sock.settimeout(ACCEPT_POLL)
        self.listener = sock
        logger.info(f"Process {self.id} listening on port {port}")

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        return self.registry.wait_until_settled(timeout)

    # ---------- Acceptor side ----------
    def _accept_loop(self):
        while self.running:
            try:
                conn, addr = self.listener.accept()
            except socket.timeout:
                continue
            except OSError:
                break  # listener closed by stop()
            threading.Thread(target=self._handle_inbound, args=(conn, addr), daemon=True).start()

    def _handle_inbound(self, conn: socket.socket, addr):
        conn.settimeout(self.settings.handshake_timeout)
        reader = conn.makefile('rb')
        try:
            peer_id = read_handshake(reader)
            if peer_id not in self.registry.expected:
                raise MeshEstablishmentError(f"process {peer_id} is not in the topology", peer_id=peer_id)
            if peer_id > self.id:
                raise MeshEstablishmentError(
                    f"process {peer_id} dialed {self.id}, but the lower id must dial", peer_id=peer_id
                )
            conn.settimeout(self.settings.read_timeout)
            self._attach(Channel(self.id, peer_id, conn, reader))
            logger.info(f"Process {self.id} accepted channel from process {peer_id}")
        except MeshEstablishmentError as e:
            logger.warning(f"Process {self.id} rejected connection from {addr[0]}:{addr[1]}: {e}")
            reader.close()
            conn.close()

    # ---------- Initiator side ----------
    def _connect_peer(self, peer: Process):
        try:
            channel = self._dial(peer)
            self._attach(channel)
            logger.info(f"Process {self.id} connected to process {peer.id}")
        except MeshEstablishmentError as e:
            if self._stopped.is_set():
                return
            logger.error(f"Process {self.id} gave up on process {peer.id}: {e}")
            self.registry.mark_unreachable(peer.id, str(e))
            self.sink(PeerUnreachable(process_id=self.id, peer_id=peer.id, reason=str(e)))

    def _dial(self, peer: Process) -> Channel:
        attempts = self.settings.dial_attempts
        last_error = None
        for attempt in range(1, attempts + 1):
            if self._stopped.is_set():
                raise MeshEstablishmentError("process stopped while dialing", peer_id=peer.id)
            try:
                sock = socket.create_connection(peer.endpoint, timeout=self.settings.connect_timeout)
            except OSError as e:
                last_error = e
                logger.debug(f"Process {self.id} dial to {peer.id} attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    self._stopped.wait(attempt * self.settings.backoff_unit)
                continue

            try:
                sock.sendall(encode_handshake(self.id))
            except OSError as e:
                sock.close()
                raise MeshEstablishmentError(f"handshake to process {peer.id} failed: {e}", peer_id=peer.id) from e
            sock.settimeout(self.settings.read_timeout)
            return Channel(self.id, peer.id, sock)

        raise MeshEstablishmentError(
            f"no connection to {peer.address}:{peer.port} after {attempts} attempts ({last_error})",
            peer_id=peer.id,
        )

    def _attach(self, channel: Channel):
        with self._lock:
            if self._stopped.is_set():
                channel.close()
                raise MeshEstablishmentError("process stopped", peer_id=channel.peer_id)
            try:
                self.registry.register(channel)
            except MeshEstablishmentError:
                channel.close()
                raise
            self.receivers[channel.peer_id] = ReceiverLoop(channel, self.sink, self._on_channel_closed).start()

    def _on_channel_closed(self, channel: Channel, reason: str):
        if self._stopped.is_set():
            return
        self.registry.remove(channel.peer_id, reason)
        logger.info(f"Process {self.id} lost process {channel.peer_id}: {reason}")
        self.sink(PeerLost(process_id=self.id, peer_id=channel.peer_id, reason=reason))

    # ---------- Sending ----------
    def unicast_send(self, destination_id: int, text: str) -> PendingSend:
        """
        Schedule text for delivery to destination_id after a random delay.

        Returns immediately with the PendingSend. Raises UserInputError, without
        touching the network, when the destination is unknown or has no live channel.
        """
        if destination_id == self.id or destination_id not in self.topology:
            raise UserInputError(f"Invalid destination process ID: {destination_id}")
        channel = self.registry.get(destination_id)
        if channel is None or channel.closed:
            if self.registry.is_unreachable(destination_id):
                raise UserInputError(f"Process {destination_id} is unreachable")
            raise UserInputError(f"No channel to process {destination_id} yet")
        try:
            return self.scheduler.schedule(channel, Record(sender_id=self.id, text=text))
        except FramingError as e:
            raise UserInputError(str(e)) from e

    # ---------- Introspection / shutdown ----------
    def links(self) -> set[int]:
        return set(self.registry.peers())

    def status(self) -> dict:
        return {
            "id": self.id,
            "connected": self.registry.peers(),
            "unreachable": self.registry.unreachable(),
            "pending_sends": len(self.scheduler.pending()),
        }

    def stop(self):
        with self._lock:
            if self._stopped.is_set():
                return
            self._stopped.set()
        cancelled = self.scheduler.cancel_all()
        if self.listener is not None:
            self.listener.close()
        for channel in self.registry.drain():
            channel.close()
        for rx in self.receivers.values():
            if rx.thread is not threading.current_thread():
                rx.join(1.0)
        logger.info(f"Process {self.id} stopped ({cancelled} pending sends cancelled)")
