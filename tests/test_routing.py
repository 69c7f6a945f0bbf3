import pytest

from kadstore import constants
from kadstore import utils
from kadstore.peer import PeerRef
from kadstore.routing import RoutingTable


def ids8(*values):
    return [bytes([v]) for v in values]


@pytest.fixture
def table():
    """A routing table for a 160-bit owner id with a small bucket size."""
    return RoutingTable(b'\x00' * 20, k=3, policy=constants.POLICY_REJECT)


def peer_in_bucket(owner, index, tag):
    """
    A peer id landing in bucket `index` of `owner`, distinguished by `tag`
    in the lowest byte.
    """
    distance = (1 << (159 - index)) | tag
    return PeerRef((int.from_bytes(owner, 'big') ^ distance).to_bytes(20, 'big'), ("1.1.1.1", 1000 + tag))


def test_empty_table(table):
    assert len(table) == 0
    assert table.find_closest(b'\x42' * 20, 5) == []
    assert not table.contains(b'\x42' * 20)


def test_insert_places_peer_by_distance(table):
    peer = PeerRef(b'\x00' * 19 + b'\x01')
    assert table.insert(peer)
    assert list(table.buckets[159]) == [peer]
    assert len(table) == 1

    far = PeerRef(b'\xff' * 20)
    assert table.insert(far)
    assert list(table.buckets[0]) == [far]


def test_insert_spreads_over_buckets(table):
    for index in (0, 10, 100, 159):
        table.insert(peer_in_bucket(table.owner_id, index, 0))
    assert [i for i, bucket in enumerate(table.buckets) if bucket] == [0, 10, 100, 159]


def test_duplicate_insert_is_noop(table):
    peer_id = b'\x10' * 20
    first = PeerRef(peer_id, ("1.1.1.1", 1))
    assert table.insert(first)
    assert not table.insert(PeerRef(peer_id, ("2.2.2.2", 2)))
    assert len(table) == 1
    assert table.get(peer_id).endpoint == ("1.1.1.1", 1)


def test_insert_owner_is_ignored(table):
    assert not table.insert(PeerRef(table.owner_id))
    assert len(table) == 0


def test_insert_rejects_wrong_width(table):
    with pytest.raises(ValueError):
        table.insert(PeerRef(b'\x01'))


def test_full_bucket_rejects_newcomer(table):
    peers = [peer_in_bucket(table.owner_id, 5, tag) for tag in range(3)]
    for peer in peers:
        assert table.insert(peer)

    newcomer = peer_in_bucket(table.owner_id, 5, 3)
    assert not table.insert(newcomer)
    assert list(table.buckets[5]) == peers


def test_full_bucket_evicts_oldest():
    table = RoutingTable(b'\x00' * 20, k=3, policy=constants.POLICY_EVICT_OLDEST)
    peers = [peer_in_bucket(table.owner_id, 5, tag) for tag in range(3)]
    for peer in peers:
        table.insert(peer)

    newcomer = peer_in_bucket(table.owner_id, 5, 3)
    assert table.insert(newcomer)
    assert list(table.buckets[5]) == peers[1:] + [newcomer]
    assert not table.contains(peers[0].id)


def test_evict_oldest_keeps_recently_seen_peers():
    table = RoutingTable(b'\x00' * 20, k=3, policy=constants.POLICY_EVICT_OLDEST)
    peers = [peer_in_bucket(table.owner_id, 5, tag) for tag in range(3)]
    for peer in peers:
        table.insert(peer)

    # The first peer answered a request after the others joined.
    peers[0].touch(now=peers[2].last_seen + 1.0)

    newcomer = peer_in_bucket(table.owner_id, 5, 3)
    assert table.insert(newcomer)
    assert table.contains(peers[0].id)
    assert not table.contains(peers[1].id)
    assert list(table.buckets[5]) == [peers[0], peers[2], newcomer]


@pytest.mark.parametrize("k, policy", [
    (3, constants.POLICY_UNBOUNDED),
    (0, constants.POLICY_REJECT),
])
def test_unbounded_buckets(k, policy):
    table = RoutingTable(b'\x00' * 20, k=k, policy=policy)
    assert table.policy == constants.POLICY_UNBOUNDED
    for tag in range(50):
        assert table.insert(peer_in_bucket(table.owner_id, 5, tag))
    assert len(table.buckets[5]) == 50


def test_unknown_policy():
    with pytest.raises(ValueError):
        RoutingTable(b'\x00' * 20, policy="random")


def test_contains_is_routing_only(table):
    peer = PeerRef(b'\x20' * 20)
    table.insert(peer)
    assert table.contains(peer.id)
    assert peer.id in table
    assert not table.contains(b'\x21' * 20)
    # Wrong width ids are simply unknown.
    assert not table.contains(b'\x20')


def test_remove(table):
    peer = PeerRef(b'\x20' * 20)
    table.insert(peer)
    assert table.remove(peer.id)
    assert not table.remove(peer.id)
    assert len(table) == 0


def test_find_closest_orders_by_xor_distance():
    table = RoutingTable(bytes([0]), policy=constants.POLICY_UNBOUNDED)
    for peer_id in ids8(1, 4, 7):
        table.insert(PeerRef(peer_id))

    closest = table.find_closest(bytes([5]), 2)
    assert [p.id for p in closest] == ids8(4, 7)
    assert [p.id[0] ^ 5 for p in closest] == [1, 2]


def test_find_closest_returns_everything_when_sparse():
    table = RoutingTable(bytes([0]), policy=constants.POLICY_UNBOUNDED)
    for peer_id in ids8(1, 4, 7):
        table.insert(PeerRef(peer_id))
    assert [p.id for p in table.find_closest(bytes([5]), 10)] == ids8(4, 7, 1)
    assert table.find_closest(bytes([5]), 0) == []


def test_find_closest_spans_buckets():
    # Owner 0b00000000. Target 0b01000000 lands in bucket 1, which is empty,
    # so the answer has to come from the closer and farther buckets.
    table = RoutingTable(bytes([0]), policy=constants.POLICY_UNBOUNDED)
    for peer_id in ids8(0b00000011, 0b00100000, 0b10000000, 0b11000000):
        table.insert(PeerRef(peer_id))

    closest = table.find_closest(bytes([0b01000000]), 3)
    assert [p.id for p in closest] == ids8(0b00000011, 0b00100000, 0b11000000)


def test_find_closest_target_is_owner():
    table = RoutingTable(bytes([0]), policy=constants.POLICY_UNBOUNDED)
    for peer_id in ids8(0x80, 0x01, 0x10):
        table.insert(PeerRef(peer_id))
    assert [p.id for p in table.find_closest(bytes([0]), 2)] == ids8(0x01, 0x10)


def test_find_closest_matches_brute_force():
    import random
    rng = random.Random(7)
    owner = utils.random_node_id(rng=rng)
    table = RoutingTable(owner, policy=constants.POLICY_UNBOUNDED)
    peers = [PeerRef(utils.random_node_id(rng=rng)) for _ in range(200)]
    for peer in peers:
        table.insert(peer)

    for _ in range(20):
        target = utils.random_node_id(rng=rng)
        expected = sorted(peers, key=lambda p: (utils.get_distance(p.id, target), p.id))[:8]
        assert table.find_closest(target, 8) == expected
