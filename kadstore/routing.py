import collections
import logging

import config
from . import constants
from . import utils


class RoutingTable:
    """
    Kademlia routing table owned by a single node.

    Bucket `i` holds the peers whose XOR distance to the owner has exactly
    `i` leading zero bits, so bucket 0 is the farthest half of the space and
    bucket `id_bits - 1` the single closest id.

    A full bucket follows `policy`:
      - "reject": keep the existing peers, drop the newcomer.
      - "evict-oldest": drop the peer seen least recently, append the newcomer.
      - "unbounded": buckets never fill; `k` is ignored.
    """

    def __init__(self, owner_id, k=None, policy=None, id_bits=None):
        if not isinstance(owner_id, bytes) or not owner_id:
            raise ValueError("owner id must be non-empty bytes")
        if id_bits is None:
            id_bits = len(owner_id) * 8
        if len(owner_id) * 8 != id_bits:
            raise ValueError(f"owner id is {len(owner_id) * 8} bits, expected {id_bits}")

        k = config.K if k is None else k
        policy = policy or config.BUCKET_POLICY
        if policy not in constants.BUCKET_POLICIES:
            raise ValueError(f"unknown bucket policy {policy!r}")
        if not k:
            policy = constants.POLICY_UNBOUNDED

        self.owner_id = owner_id
        self.id_bits = id_bits
        self.k = k if policy != constants.POLICY_UNBOUNDED else None
        self.policy = policy
        self.buckets = [collections.deque() for _ in range(id_bits)]
        self.log = logging.getLogger("RoutingTable")

    def bucket_index(self, target_id):
        return utils.bucket_index(self.owner_id, target_id, self.id_bits)

    def _check_id(self, node_id):
        if len(node_id) * 8 != self.id_bits:
            raise ValueError(f"id is {len(node_id) * 8} bits, expected {self.id_bits}")

    def insert(self, peer):
        """
        Adds `peer` to its bucket. Returns True if the table changed.
        """
        self._check_id(peer.id)
        index = self.bucket_index(peer.id)
        if index == self.id_bits:
            # That's us.
            return False

        bucket = self.buckets[index]
        if any(p.id == peer.id for p in bucket):
            return False

        if self.k is not None and len(bucket) >= self.k:
            if self.policy == constants.POLICY_REJECT:
                self.log.debug(f"Bucket {index} is full, rejecting {utils.proper_id(peer.id)}")
                return False
            evicted = min(bucket, key=lambda p: p.last_seen)
            bucket.remove(evicted)
            self.log.debug(
                f"Bucket {index} is full, evicting {utils.proper_id(evicted.id)} "
                f"for {utils.proper_id(peer.id)}"
            )

        bucket.append(peer)
        return True

    def remove(self, peer_id):
        self._check_id(peer_id)
        index = self.bucket_index(peer_id)
        if index == self.id_bits:
            return False
        bucket = self.buckets[index]
        peer = next((p for p in bucket if p.id == peer_id), None)
        if peer is None:
            return False
        bucket.remove(peer)
        return True

    def get(self, peer_id):
        if len(peer_id) * 8 != self.id_bits:
            return None
        index = self.bucket_index(peer_id)
        if index == self.id_bits:
            return None
        return next((p for p in self.buckets[index] if p.id == peer_id), None)

    def contains(self, peer_id):
        """
        True if a peer with this id is in the table. This says nothing about
        content the owner stores under the same identifier.
        """
        return self.get(peer_id) is not None

    __contains__ = contains

    def find_closest(self, target_id, n):
        """
        Returns up to `n` peers ordered by XOR distance to `target_id`, ties
        broken by id.

        Candidates are gathered in tiers that are each strictly farther from
        the target than the previous one: the target's own bucket, then every
        bucket closer to the owner than that, then each farther bucket in
        turn. Gathering stops once a complete tier brings the count to `n`.
        """
        self._check_id(target_id)
        if n <= 0:
            return []

        index = self.bucket_index(target_id)
        candidates = []
        if index < self.id_bits:
            candidates.extend(self.buckets[index])
        if len(candidates) < n:
            for bucket in self.buckets[index + 1:]:
                candidates.extend(bucket)
        i = index - 1
        while len(candidates) < n and i >= 0:
            candidates.extend(self.buckets[i])
            i -= 1

        candidates.sort(key=lambda p: (utils.get_distance(p.id, target_id), p.id))
        return candidates[:n]

    def __iter__(self):
        for bucket in self.buckets:
            yield from bucket

    def __len__(self):
        return sum(len(bucket) for bucket in self.buckets)

    def __repr__(self):
        return f"RoutingTable({utils.proper_id(self.owner_id)[:8]}, peers={len(self)})"
