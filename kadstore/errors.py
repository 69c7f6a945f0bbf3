class DigestError(RuntimeError):
    """The configured digest function cannot be used."""


class RPCError(Exception):
    """A remote invocation failed."""


class PeerUnreachable(RPCError):
    """The peer did not answer (timeout, transport error, unknown endpoint)."""


class UnknownOperation(RPCError):
    """The peer does not implement the requested operation."""
