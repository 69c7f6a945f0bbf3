import os


# Helper function to get integer values from environment variables, with a default.
def _get_int_env(key, default):
    value = os.environ.get(key)
    if value and value.isdigit():
        return int(value)
    return default


# Helper function to get float values from environment variables, with a default.
def _get_float_env(key, default):
    value = os.environ.get(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# -- Routing Table Configuration --
# Maximum number of peers per bucket (the Kademlia "k"). 0 disables the limit.
# Can be overridden by environment variable: KADSTORE_K
K = _get_int_env("KADSTORE_K", 20)

# What a full bucket does with a new peer: "reject", "evict-oldest" or "unbounded".
# Can be overridden by environment variable: KADSTORE_BUCKET_POLICY
BUCKET_POLICY = os.environ.get("KADSTORE_BUCKET_POLICY", "reject")


# -- Store/Fetch Configuration --
# Number of closer peers a store or fetch is forwarded to at each hop.
# Can be overridden by environment variable: KADSTORE_REPLICATION
REPLICATION_FACTOR = _get_int_env("KADSTORE_REPLICATION", 2)

# Maximum recursion depth of a single store or fetch.
# Can be overridden by environment variable: KADSTORE_MAX_HOPS
MAX_HOPS = _get_int_env("KADSTORE_MAX_HOPS", 16)

# Seconds to wait for one forwarded store or fetch before giving up on that peer.
# Can be overridden by environment variable: KADSTORE_RPC_TIMEOUT
RPC_TIMEOUT = _get_float_env("KADSTORE_RPC_TIMEOUT", 5.0)

# Failed requests after which a peer is dropped from the routing table. 0 keeps every peer.
# Can be overridden by environment variable: KADSTORE_MAX_FAILURES
MAX_FAILURES = _get_int_env("KADSTORE_MAX_FAILURES", 3)

# hashlib algorithm used to derive content keys. Its output width is the id width.
# Can be overridden by environment variable: KADSTORE_DIGEST
DIGEST_ALGORITHM = os.environ.get("KADSTORE_DIGEST", "sha1")


# -- Network Configuration --
# UDP port a served node listens on.
# Can be overridden by environment variable: KADSTORE_PORT
DEFAULT_PORT = _get_int_env("KADSTORE_PORT", 7881)

# Comma separated host:port list of peers to contact when serving.
# Can be overridden by environment variable: KADSTORE_BOOTSTRAP
BOOTSTRAP_NODES = tuple(
    addr.strip() for addr in os.environ.get("KADSTORE_BOOTSTRAP", "").split(",") if addr.strip()
)

# Logging level for the driver.
# Can be overridden by environment variable: KADSTORE_LOG_LEVEL
LOG_LEVEL = os.environ.get("KADSTORE_LOG_LEVEL", "INFO")


# -- Simulation Configuration --
# Number of in-process peers.
# Can be overridden by environment variable: SIM_PEERS
SIM_PEERS = _get_int_env("SIM_PEERS", 100)

# Number of random values stored.
# Can be overridden by environment variable: SIM_VALUES
SIM_VALUES = _get_int_env("SIM_VALUES", 200)

# Number of random lookups issued after storing.
# Can be overridden by environment variable: SIM_LOOKUPS
SIM_LOOKUPS = _get_int_env("SIM_LOOKUPS", 100)
