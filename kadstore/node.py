import asyncio
import collections
import logging

import config
from . import constants
from . import utils
from .digest import resolve_digest
from .errors import RPCError, UnknownOperation
from .routing import RoutingTable


class Node:
    """
    One participant of the overlay: a routing table, a local content store
    and the recursive store/fetch protocol.

    Every value is stored under the digest of its bytes. A store or fetch
    that cannot be answered locally is forwarded to the `replication`
    closest peers the routing table knows, through `transport`. Each logical
    operation carries the set of ids it has already reached and a hop
    budget, so forwarding always terminates.
    """

    def __init__(self, node_id, transport, digest=None, replication=None, k=None,
                 bucket_policy=None, rpc_timeout=None, max_hops=None, max_failures=None):
        self.digest, id_bytes = resolve_digest(digest or config.DIGEST_ALGORITHM)
        if not isinstance(node_id, bytes) or len(node_id) != id_bytes:
            raise ValueError(f"node id must be {id_bytes} bytes to match the digest width")

        self.id = node_id
        self.transport = transport
        self.storage = {}
        self.table = RoutingTable(node_id, k=k, policy=bucket_policy)

        self.replication = config.REPLICATION_FACTOR if replication is None else replication
        self.rpc_timeout = config.RPC_TIMEOUT if rpc_timeout is None else rpc_timeout
        self.max_hops = config.MAX_HOPS if max_hops is None else max_hops
        self.max_failures = config.MAX_FAILURES if max_failures is None else max_failures

        self.failures = collections.Counter()
        self.background_tasks = set()
        self._lock = asyncio.Lock()
        self.log = logging.getLogger("Node")

    def __repr__(self):
        return f"Node({utils.proper_id(self.id)[:8]}, stored={len(self.storage)}, peers={len(self.table)})"

    def holds(self, key):
        return key in self.storage

    async def add_peer(self, peer):
        async with self._lock:
            return self.table.insert(peer)

    def find_closest(self, target_id, n=None):
        if n is None:
            n = self.table.k or len(self.table)
        return self.table.find_closest(target_id, n)

    async def store(self, key, value, visited=None, hops=None):
        """
        Stores `value` under `key` here and forwards it to the closest peers.

        Returns False if `key` is not the digest of `value`, True otherwise.
        A store that originates here waits for its direct forwards before
        returning; a forwarded store answers as soon as the local write is
        done and replicates further in the background. Forwarding is best
        effort: failed peers are logged and counted in `failures`, never
        reported to the caller.
        """
        if self.digest(value) != key:
            self.log.warning(f"Rejecting store of {utils.proper_id(key)}: key is not the digest of the value")
            return False

        async with self._lock:
            if key in self.storage:
                return True
            self.storage[key] = value

        forwarded = visited is not None
        targets, visited, hops = self._next_hop(key, visited, hops)
        if not targets:
            return True

        args = {"key": key, "value": value, "visited": visited, "hops": hops}
        replicate = self._replicate(targets, args)
        if forwarded:
            task = asyncio.ensure_future(replicate)
            self.background_tasks.add(task)
            task.add_done_callback(self.background_tasks.discard)
        else:
            await replicate
        return True

    async def fetch(self, key, visited=None, hops=None):
        """
        Returns the value stored under `key`, or None if neither this node
        nor any peer reached from it holds it.

        Peers are asked concurrently and the first answer wins; the other
        requests are left to finish on their own.
        """
        value = self.storage.get(key)
        if value is not None:
            return value

        targets, visited, hops = self._next_hop(key, visited, hops)
        if not targets:
            return None

        args = {"key": key, "visited": visited, "hops": hops}
        tasks = [asyncio.ensure_future(self._invoke(peer, constants.OP_FETCH, args)) for peer in targets]
        for task in tasks:
            self.background_tasks.add(task)
            task.add_done_callback(self.background_tasks.discard)

        for next_done in asyncio.as_completed(tasks):
            value = await next_done
            if value is not None:
                return value
        return None

    async def dispatch(self, op, args):
        """
        Entry point for transports delivering an operation to this node.
        """
        if op == constants.OP_PING:
            return self.id
        if op == constants.OP_FIND_NODE:
            return self.find_closest(args["target"], args.get("n"))
        if op == constants.OP_STORE:
            # Anything arriving here was forwarded by someone.
            return await self.store(args["key"], args["value"], visited=args.get("visited") or (), hops=args.get("hops"))
        if op == constants.OP_FETCH:
            return await self.fetch(args["key"], visited=args.get("visited"), hops=args.get("hops"))
        raise UnknownOperation(f"unknown operation {op!r}")

    def _next_hop(self, key, visited, hops):
        """
        Picks the peers to forward to and the state they receive: the
        visited ids extended with this node and the chosen peers, and the
        hop budget minus one.
        """
        hops = self.max_hops if hops is None else min(hops, self.max_hops)
        visited = set(visited or ())
        visited.add(self.id)
        if hops <= 0:
            self.log.debug(f"Hop budget exhausted for {utils.proper_id(key)}")
            return [], tuple(sorted(visited)), 0

        targets = [peer for peer in self.table.find_closest(key, self.replication) if peer.id not in visited]
        visited.update(peer.id for peer in targets)
        return targets, tuple(sorted(visited)), hops - 1

    async def _replicate(self, targets, args):
        await asyncio.gather(*(self._invoke(peer, constants.OP_STORE, args) for peer in targets))

    async def _invoke(self, peer, op, args):
        try:
            return await asyncio.wait_for(self.transport.invoke(peer, op, args), self.rpc_timeout)
        except asyncio.TimeoutError:
            self.log.warning(f"{op} to {peer} timed out after {self.rpc_timeout}s")
        except RPCError as e:
            self.log.warning(f"{op} to {peer} failed: {e}")
        except Exception:
            self.log.exception(f"Unexpected error forwarding {op} to {peer}")
        await self._record_failure(peer)
        return None

    async def _record_failure(self, peer):
        self.failures[peer.id] += 1
        if not self.max_failures or self.failures[peer.id] < self.max_failures:
            return
        async with self._lock:
            if self.table.remove(peer.id):
                self.log.info(f"Dropped {peer} after {self.failures[peer.id]} failed requests")
