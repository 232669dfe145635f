"""
Unicast Mesh - delayed point-to-point messaging between simulated processes
"""

from network import Network
from node import Node
from topology import Process, Topology, load_config

__all__ = ["Network", "Node", "Process", "Topology", "load_config"]
__version__ = "0.1.0"
