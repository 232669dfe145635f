class MeshError(Exception):
    """Base class for every error raised by the unicast mesh."""


class ConfigurationError(MeshError, ValueError):
    """Topology file unreadable or malformed. Fatal at startup."""


class MeshEstablishmentError(MeshError):
    """Bind failed, dial retries exhausted, or a handshake could not be parsed."""

    def __init__(self, message, peer_id=None):
        super().__init__(message)
        self.peer_id = peer_id


class TransportError(MeshError):
    """A read or write on an established channel failed."""


class FramingError(TransportError):
    """A record frame on the wire was malformed."""


class UserInputError(MeshError, ValueError):
    """Bad console command or unknown destination; reported, never propagated."""
