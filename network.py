import random
import time
from typing import Callable, Iterable, Optional

from errors import MeshEstablishmentError, UserInputError
from node import Node
from settings import Settings
from topology import Topology, verify_mesh


class Network:
    """Hosts several processes of one topology inside a single program."""

    def __init__(
        self,
        topology: Topology,
        sink: Optional[Callable[[object], None]] = None,
        settings: Optional[Settings] = None,
        seed: Optional[int] = None,
        only: Optional[Iterable[int]] = None,
        delay_fn: Optional[Callable[[], int]] = None,
    ):
        self.topology = topology
        wanted = set(topology.ids) if only is None else set(only)
        unknown = wanted - set(topology.ids)
        if unknown:
            raise UserInputError(f"Processes {sorted(unknown)} are not in the topology")

        seeder = random.Random(seed)
        self.nodes: dict[int, Node] = {}
        for pid in topology.ids:
            if pid not in wanted:
                continue
            rng = random.Random(seeder.getrandbits(64)) if seed is not None else None
            self.nodes[pid] = Node(pid, topology, sink=sink, settings=settings, rng=rng, delay_fn=delay_fn)

    def start(self):
        started = []
        try:
            for node in self.nodes.values():
                node.start()
                started.append(node)
        except MeshEstablishmentError:
            for node in started:
                node.stop()
            raise
        return self

    def wait_until_settled(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        for node in self.nodes.values():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not node.wait_until_settled(remaining):
                return False
        return True

    def send(self, from_id: int, to_id: int, text: str):
        node = self.nodes.get(from_id)
        if node is None:
            raise UserInputError(f"Process {from_id} is not hosted here")
        return node.unicast_send(to_id, text)

    def links(self) -> dict[int, set[int]]:
        return {pid: node.links() for pid, node in self.nodes.items()}

    def channel_pairs(self) -> set[tuple[int, int]]:
        pairs = set()
        for pid, peers in self.links().items():
            for peer in peers:
                pairs.add((min(pid, peer), max(pid, peer)))
        return pairs

    def verify(self):
        return verify_mesh(self.topology, self.links())

    def crash(self, process_id: int):
        # Abrupt stop of one process; its peers see the streams end
        self.nodes[process_id].stop()

    def stop(self):
        for node in self.nodes.values():
            node.stop()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
