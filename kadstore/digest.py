import hashlib

from .errors import DigestError


def resolve_digest(algorithm):
    """
    Turns a hashlib algorithm name or a `bytes -> bytes` callable into a
    digest function, probing it once so a broken digest fails here rather
    than on the first store.

    Returns (digest, width_in_bytes).
    """
    if isinstance(algorithm, str):
        name = algorithm
        try:
            hashlib.new(name)
        except (ValueError, TypeError) as e:
            raise DigestError(f"digest algorithm {name!r} is not available") from e

        def digest(value):
            return hashlib.new(name, value).digest()
    elif callable(algorithm):
        digest = algorithm
    else:
        raise DigestError(f"expected an algorithm name or a callable, got {algorithm!r}")

    try:
        probe = digest(b"")
    except Exception as e:
        raise DigestError(f"digest function failed on probe input: {e}") from e

    if not isinstance(probe, bytes) or not probe:
        raise DigestError(f"digest function must return non-empty bytes, got {type(probe).__name__}")
    return digest, len(probe)
