# Identifier space
ID_BITS = 160
ID_BYTES = ID_BITS // 8

# Bucket policies
POLICY_REJECT = "reject"
POLICY_EVICT_OLDEST = "evict-oldest"
POLICY_UNBOUNDED = "unbounded"
BUCKET_POLICIES = (POLICY_REJECT, POLICY_EVICT_OLDEST, POLICY_UNBOUNDED)

# Node operations
OP_PING = "ping"
OP_FIND_NODE = "find_node"
OP_STORE = "store"
OP_FETCH = "fetch"
OPERATIONS = (OP_PING, OP_FIND_NODE, OP_STORE, OP_FETCH)

# KRPC message dictionary keys
KRPC_Y = b"y"
KRPC_T = b"t"
KRPC_R = b"r"
KRPC_Q = b"q"
KRPC_A = b"a"
KRPC_E = b"e"

# KRPC message type values
KRPC_QUERY = b"q"
KRPC_RESPONSE = b"r"
KRPC_ERROR = b"e"

# KRPC argument and result keys
KRPC_ID = b"id"
KRPC_NODES = b"nodes"
KRPC_TARGET = b"target"
KRPC_COUNT = b"n"
KRPC_KEY = b"key"
KRPC_VALUE = b"value"
KRPC_VISITED = b"visited"
KRPC_HOPS = b"hops"
KRPC_OK = b"ok"

# Error messages
KRPC_SERVER_ERROR = [202, b"Server Error"]
KRPC_PROTOCOL_ERROR = [203, b"Protocol Error"]
KRPC_METHOD_UNKNOWN = [204, b"Method Unknown"]

# Compact node info: id + IPv4 + port
COMPACT_ADDR_LEN = 6
