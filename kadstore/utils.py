import binascii
import os
import socket
from socket import inet_ntoa
import struct
from struct import pack, unpack

from . import constants


def proper_id(node_id):
    if isinstance(node_id, bytes):
        # Convert bytes to hex
        node_id = binascii.hexlify(node_id).decode('utf-8')
    return node_id.upper()


def random_node_id(size=constants.ID_BYTES, rng=None):
    """
    Returns a random identifier. Pass a `random.Random` instance as `rng`
    for reproducible ids.
    """
    if rng is not None:
        return rng.randbytes(size)
    return os.urandom(size)


def get_distance(node1_id, node2_id):
    """
    Calculate the XOR distance between two node IDs.
    """
    return int.from_bytes(node1_id, 'big') ^ int.from_bytes(node2_id, 'big')


def bucket_index(owner_id, target_id, id_bits=None):
    """
    Number of leading zero bits of `owner_id XOR target_id`.

    Index 0 means the top bit differs (farthest bucket), `id_bits - 1`
    means only the lowest bit differs (closest bucket). Equal ids give
    `id_bits`, which is not a bucket.
    """
    if id_bits is None:
        id_bits = len(owner_id) * 8
    return id_bits - get_distance(owner_id, target_id).bit_length()


def split_nodes(nodes, id_size=constants.ID_BYTES):
    """
    Parses compact node info into (node_id, ip, port) tuples.
    """
    entry = id_size + constants.COMPACT_ADDR_LEN
    length = len(nodes)
    if (length % entry) != 0:
        return

    for i in range(0, length, entry):
        nid = nodes[i:i+id_size]
        ip = inet_ntoa(nodes[i+id_size:i+id_size+4])
        port = unpack("!H", nodes[i+id_size+4:i+entry])[0]
        yield nid, ip, port


def pack_nodes(peers):
    """
    Packs peers into the compact node info format. Peers whose endpoint is
    not an (ipv4, port) tuple are skipped.
    """
    packed_nodes = []
    for peer in peers:
        try:
            ip, port = peer.endpoint
            packed_nodes.append(peer.id + socket.inet_aton(ip) + pack("!H", port))
        except (TypeError, ValueError, OSError, struct.error):
            continue
    return b"".join(packed_nodes)


def parse_hostport(value, default_port=None):
    """
    Splits "host:port" into a (host, port) tuple.
    """
    host, sep, port = value.rpartition(":")
    if not sep:
        if default_port is None:
            raise ValueError(f"missing port in {value!r}")
        return value, default_port
    return host, int(port)
