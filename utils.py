import socket

from topology import Process, Topology


def free_ports(count: int, host: str = "127.0.0.1") -> list[int]:
    # Hold every socket open until all are picked so the ports are distinct
    socks = []
    try:
        for _ in range(count):
            s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            s.bind((host, 0))
            socks.append(s)
        return [s.getsockname()[1] for s in socks]
    finally:
        for s in socks:
            s.close()


def local_topology(n: int, min_delay: int = 100, max_delay: int = 200, first_id: int = 1) -> Topology:
    """Topology of n processes on 127.0.0.1 with free ports, ids first_id..first_id+n-1."""
    ports = free_ports(n)
    processes = tuple(
        Process(id=first_id + i, address="127.0.0.1", port=str(port)) for i, port in enumerate(ports)
    )
    return Topology(min_delay=min_delay, max_delay=max_delay, processes=processes)
