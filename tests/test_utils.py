import pytest
from kadstore import utils
from kadstore.peer import PeerRef


def test_split_nodes():
    # Test with a valid node string for one node
    # Node ID: 20 bytes of 'a'
    # IP: 192.168.1.1 -> b'\xc0\xa8\x01\x01'
    # Port: 6881 -> b'\x1a\xe1'
    node_id = b'a' * 20
    node_addr = b'\xc0\xa8\x01\x01\x1a\xe1'
    nodes_data = node_id + node_addr
    expected_nodes = [(node_id, "192.168.1.1", 6881)]
    result = list(utils.split_nodes(nodes_data))
    assert result == expected_nodes

    # Test with a string for two nodes
    node_id_2 = b'b' * 20
    node_addr_2 = b'\x0a\x0a\x0a\x0a\xff\xff'
    nodes_data_two = nodes_data + node_id_2 + node_addr_2
    expected_nodes_two = [
        (node_id, "192.168.1.1", 6881),
        (node_id_2, "10.10.10.10", 65535)
    ]
    result_two = list(utils.split_nodes(nodes_data_two))
    assert result_two == expected_nodes_two

    # Test with an empty string
    assert list(utils.split_nodes(b'')) == []

    # Test with a malformed string (not a multiple of 26)
    assert list(utils.split_nodes(b'a' * 25)) == []


def test_split_nodes_short_ids():
    nodes_data = b'\x07' + b'\x7f\x00\x00\x01\x1a\xe1'
    assert list(utils.split_nodes(nodes_data, id_size=1)) == [(b'\x07', "127.0.0.1", 6881)]


def test_pack_nodes():
    peers = [
        PeerRef(b'a' * 20, ("192.168.1.1", 6881)),
        PeerRef(b'b' * 20, object()),  # in-process endpoint, not packable
        PeerRef(b'c' * 20, ("10.10.10.10", 65535)),
    ]
    packed = utils.pack_nodes(peers)
    assert len(packed) == 2 * 26
    assert list(utils.split_nodes(packed)) == [
        (b'a' * 20, "192.168.1.1", 6881),
        (b'c' * 20, "10.10.10.10", 65535),
    ]


def test_pack_nodes_skips_bad_port():
    assert utils.pack_nodes([PeerRef(b'a' * 20, ("1.2.3.4", 70000))]) == b''


def test_get_distance():
    id1 = b'\x00' * 20
    id2 = b'\x00' * 19 + b'\x01'
    assert utils.get_distance(id1, id2) == 1

    id3 = b'\xff' * 20
    id4 = b'\x00' * 20
    expected_distance = (2**160) - 1
    assert utils.get_distance(id3, id4) == expected_distance

    # Test distance is symmetric
    assert utils.get_distance(id1, id3) == utils.get_distance(id3, id1)


def test_bucket_index_counts_leading_zero_bits():
    owner = b'\x00' * 20
    assert utils.bucket_index(owner, b'\x80' + b'\x00' * 19) == 0
    assert utils.bucket_index(owner, b'\x01' + b'\x00' * 19) == 7
    assert utils.bucket_index(owner, b'\x00' * 19 + b'\x01') == 159
    assert utils.bucket_index(owner, owner) == 160


def test_bucket_index_depends_on_target():
    owner = bytes(range(20))
    indexes = set()
    for bit in range(160):
        target = (int.from_bytes(owner, 'big') ^ (1 << bit)).to_bytes(20, 'big')
        indexes.add(utils.bucket_index(owner, target))
    assert indexes == set(range(160))


def test_bucket_index_is_symmetric():
    a = b'\x12' * 20
    b = b'\x34' * 20
    assert utils.bucket_index(a, b) == utils.bucket_index(b, a)


def test_bucket_index_small_space():
    assert utils.bucket_index(bytes([0]), bytes([1])) == 7
    assert utils.bucket_index(bytes([0]), bytes([4]), id_bits=8) == 5
    assert utils.bucket_index(bytes([0]), bytes([0x80])) == 0


def test_proper_id():
    assert utils.proper_id(b'\xab\xcd') == "ABCD"
    assert utils.proper_id("abcd") == "ABCD"


def test_random_node_id_with_rng():
    import random
    assert utils.random_node_id(rng=random.Random(1)) == utils.random_node_id(rng=random.Random(1))
    assert len(utils.random_node_id()) == 20


def test_parse_hostport():
    assert utils.parse_hostport("127.0.0.1:7881") == ("127.0.0.1", 7881)
    assert utils.parse_hostport("example.org", default_port=9) == ("example.org", 9)
    with pytest.raises(ValueError):
        utils.parse_hostport("example.org")
