from dataclasses import dataclass, field
import networkx as nx

from errors import ConfigurationError

# Process ids travel as the int64 sender field of every frame
MIN_PROCESS_ID = -2**63
MAX_PROCESS_ID = 2**63 - 1


@dataclass(frozen=True)
class Process:
    id: int
    address: str
    port: str

    @property
    def endpoint(self) -> tuple[str, int]:
        return self.address, int(self.port)


@dataclass(frozen=True)
class Topology:
    min_delay: int
    max_delay: int
    processes: tuple[Process, ...] = field(default_factory=tuple)

    def __post_init__(self):
        validate_topology(self)

    @property
    def ids(self) -> list[int]:
        return [p.id for p in self.processes]

    def get(self, process_id: int) -> Process:
        for p in self.processes:
            if p.id == process_id:
                return p
        raise KeyError(process_id)

    def __contains__(self, process_id) -> bool:
        return any(p.id == process_id for p in self.processes)

    def peers_of(self, process_id: int) -> list[Process]:
        return [p for p in self.processes if p.id != process_id]


def validate_topology(topology: Topology):
    if topology.min_delay < 0:
        raise ConfigurationError(f"minDelay must be >= 0, got {topology.min_delay}")
    if topology.min_delay >= topology.max_delay:
        raise ConfigurationError(
            f"minDelay must be smaller than maxDelay, got {topology.min_delay} >= {topology.max_delay}"
        )
    seen = set()
    for p in topology.processes:
        if not MIN_PROCESS_ID <= p.id <= MAX_PROCESS_ID:
            raise ConfigurationError(f"Process id {p.id} does not fit in a signed 64-bit integer")
        if p.id in seen:
            raise ConfigurationError(f"Duplicate process id {p.id}")
        seen.add(p.id)
        try:
            port = int(p.port)
        except ValueError:
            raise ConfigurationError(f"Process {p.id} has a non-numeric port {p.port!r}") from None
        if not 0 < port < 65536:
            raise ConfigurationError(f"Process {p.id} has an out of range port {port}")


def _parse_int(token: str, what: str, lineno: int) -> int:
    try:
        return int(token)
    except ValueError:
        raise ConfigurationError(f"line {lineno}: {what} {token!r} is not an integer") from None


def parse_config(text: str) -> Topology:
    """
    Parse a topology description.

    Format:
        <minDelay> <maxDelay>
        <id> <address> <port>
        <id> <address> <port>
        ...

    Delays are milliseconds. Blank lines are ignored.

    Returns:
        Topology with processes in file order

    Raises:
        ConfigurationError: on any malformed line or invalid value
    """
    lines = [(i, line.split()) for i, line in enumerate(text.splitlines(), start=1)]
    lines = [(i, parts) for i, parts in lines if parts]
    if not lines:
        raise ConfigurationError("Configuration is empty, expected '<minDelay> <maxDelay>' on the first line")

    lineno, header = lines[0]
    if len(header) != 2:
        raise ConfigurationError(f"line {lineno}: expected '<minDelay> <maxDelay>', got {' '.join(header)!r}")
    min_delay = _parse_int(header[0], "minDelay", lineno)
    max_delay = _parse_int(header[1], "maxDelay", lineno)

    processes = []
    for lineno, parts in lines[1:]:
        if len(parts) != 3:
            raise ConfigurationError(f"line {lineno}: expected '<id> <address> <port>', got {' '.join(parts)!r}")
        pid = _parse_int(parts[0], "process id", lineno)
        if not MIN_PROCESS_ID <= pid <= MAX_PROCESS_ID:
            raise ConfigurationError(f"line {lineno}: process id {pid} does not fit in a signed 64-bit integer")
        _parse_int(parts[2], "port", lineno)
        processes.append(Process(id=pid, address=parts[1], port=parts[2]))

    return Topology(min_delay=min_delay, max_delay=max_delay, processes=tuple(processes))


def load_config(path: str) -> Topology:
    try:
        with open(path, 'r') as f:
            text = f.read()
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e
    return parse_config(text)


# ---------------- mesh shape ----------------

def mesh_graph(topology: Topology) -> nx.Graph:
    # Full mesh: one undirected edge per unordered pair
    G = nx.complete_graph(topology.ids)
    for p in topology.processes:
        G.nodes[p.id]["address"] = p.address
        G.nodes[p.id]["port"] = p.port
    return G


def dial_plan(topology: Topology) -> nx.DiGraph:
    """Orient every mesh edge from the lower id (initiator) to the higher id (acceptor)."""
    D = nx.DiGraph()
    D.add_nodes_from(topology.ids)
    for u, v in mesh_graph(topology).edges():
        lo, hi = (u, v) if u < v else (v, u)
        D.add_edge(lo, hi)
    return D


def peers_to_dial(topology: Topology, process_id: int) -> list[Process]:
    plan = dial_plan(topology)
    return [topology.get(pid) for pid in sorted(plan.successors(process_id))]


def expected_inbound(topology: Topology, process_id: int) -> list[int]:
    return sorted(dial_plan(topology).predecessors(process_id))


def verify_mesh(topology: Topology, links: dict[int, set[int]]) -> tuple[bool, set, set]:
    """
    Check established channels against the full mesh.

    Args:
        topology: the run's topology
        links: process id -> set of peer ids it holds a channel to

    Returns:
        (complete, missing, one_sided) where missing holds pairs neither side
        sees and one_sided holds pairs only one side has registered
    """
    expected = mesh_graph(topology)
    seen = nx.Graph()
    seen.add_nodes_from(expected.nodes())
    one_sided = set()
    for u, peers in links.items():
        for v in peers:
            if not expected.has_edge(u, v):
                continue
            pair = (min(u, v), max(u, v))
            if u in links.get(v, set()):
                seen.add_edge(*pair)
            else:
                one_sided.add(pair)
    missing = {(min(u, v), max(u, v)) for u, v in nx.difference(expected, seen).edges()}
    missing -= one_sided
    complete = not missing and not one_sided
    return complete, missing, one_sided
