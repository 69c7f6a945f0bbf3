import time

from . import utils


class PeerRef:
    """
    A reference to a remote peer: its identifier and an opaque endpoint.

    The endpoint is whatever the transport needs to reach the peer, an
    in-process Node for LocalTransport or an (ip, port) tuple for
    DatagramTransport. Equality and hashing go by id only.

    `last_seen` is the monotonic time the peer last answered a request. A
    routing table with the evict-oldest policy drops the peer seen least
    recently.
    """
    __slots__ = ('id', 'endpoint', 'last_seen')

    def __init__(self, node_id, endpoint=None):
        if not isinstance(node_id, bytes):
            raise ValueError(f"peer id must be bytes, got {type(node_id).__name__}")
        self.id = node_id
        self.endpoint = endpoint
        self.last_seen = time.monotonic()

    def touch(self, now=None):
        self.last_seen = time.monotonic() if now is None else now

    def __eq__(self, other):
        if not isinstance(other, PeerRef):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __repr__(self):
        return f"PeerRef({utils.proper_id(self.id)[:8]}, {self.endpoint!r})"
