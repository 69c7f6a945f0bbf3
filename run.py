import argparse
import asyncio
import logging
import random
import signal
import string

import uvloop

import config
from kadstore.digest import resolve_digest
from kadstore.node import Node
from kadstore.overlay import build_overlay, settle
from kadstore.transport import DatagramTransport
from kadstore.utils import parse_hostport, proper_id, random_node_id

# Configure basic logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
log = logging.getLogger(__name__)


def random_string(rng, length):
    return "".join(rng.choice(string.ascii_lowercase) for _ in range(length))


async def simulate(args):
    """
    Builds an in-process overlay, stores random strings from random peers
    and looks a sample of them up from other random peers.
    """
    rng = random.Random(args.seed)
    digest, id_bytes = resolve_digest(config.DIGEST_ALGORITHM)

    node_ids = []
    while len(node_ids) < args.peers:
        node_id = random_node_id(id_bytes, rng=rng)
        if node_id not in node_ids:
            node_ids.append(node_id)

    nodes = await build_overlay(node_ids, contacts=args.contacts, rng=rng)
    log.info(f"Created {len(nodes)} peers ({'fully connected' if args.contacts is None else f'{args.contacts} contacts each'})")

    keys = []
    for _ in range(args.values):
        value = random_string(rng, 10).encode()
        key = digest(value)
        keys.append(key)
        await rng.choice(nodes).store(key, value)
    await settle(nodes)

    found = 0
    for _ in range(args.lookups):
        key = rng.choice(keys)
        value = await rng.choice(nodes).fetch(key)
        if value is not None:
            found += 1
            log.info(f"Key: {proper_id(key)} , Value: {value.decode(errors='replace')}")
        else:
            log.info(f"Key: {proper_id(key)} , Value not found")

    copies = sum(len(node.storage) for node in nodes)
    failures = sum(sum(node.failures.values()) for node in nodes)
    log.info(
        f"Found {found}/{args.lookups} values, "
        f"{copies / max(len(set(keys)), 1):.1f} copies per key, {failures} failed forwards"
    )


async def serve(args):
    """
    Runs one node on UDP until interrupted.
    """
    loop = asyncio.get_running_loop()
    _, id_bytes = resolve_digest(config.DIGEST_ALGORITHM)
    node_id = bytes.fromhex(args.node_id) if args.node_id else random_node_id(id_bytes)

    transport = DatagramTransport()
    node = Node(node_id, transport)
    transport.bind(node)

    host, port = await transport.listen(args.host, args.port)
    log.info(f"Node {proper_id(node.id)} is listening on {host}:{port}")

    if args.bootstrap:
        await transport.bootstrap([parse_hostport(addr, config.DEFAULT_PORT) for addr in args.bootstrap])

    for value in args.put or ():
        data = value.encode()
        key = node.digest(data)
        await node.store(key, data)
        log.info(f"Stored {value!r} under {proper_id(key)}")

    for key_hex in args.get or ():
        value = await node.fetch(bytes.fromhex(key_hex))
        if value is not None:
            log.info(f"Key: {key_hex.upper()} , Value: {value.decode(errors='replace')}")
        else:
            log.info(f"Key: {key_hex.upper()} , Value not found")

    log.info("Press Ctrl+C to stop.")
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    await stop

    log.info("Shutting down...")
    transport.close()


def build_parser():
    parser = argparse.ArgumentParser(description="A content-addressed Kademlia key-value overlay.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sim = subparsers.add_parser("simulate", help="Run an in-process overlay.")
    sim.add_argument("--peers", type=int, default=config.SIM_PEERS, help="Number of peers.")
    sim.add_argument("--values", type=int, default=config.SIM_VALUES, help="Number of values to store.")
    sim.add_argument("--lookups", type=int, default=config.SIM_LOOKUPS, help="Number of lookups.")
    sim.add_argument("--contacts", type=int, default=None,
                     help="Peers each node learns about. Fully connected when omitted.")
    sim.add_argument("--seed", type=int, default=None, help="Seed for ids and values.")
    sim.set_defaults(func=simulate)

    srv = subparsers.add_parser("serve", help="Run a node over UDP.")
    srv.add_argument("--host", default="0.0.0.0", help="Address to bind.")
    srv.add_argument("--port", type=int, default=config.DEFAULT_PORT, help="UDP listening port.")
    srv.add_argument("--node-id", default=None, help="Hex node id. Random when omitted.")
    srv.add_argument("--bootstrap", nargs="*", default=list(config.BOOTSTRAP_NODES),
                     help="host:port of peers to join through.")
    srv.add_argument("--put", nargs="*", help="Values to store after joining.")
    srv.add_argument("--get", nargs="*", help="Hex keys to fetch after joining.")
    srv.set_defaults(func=serve)
    return parser


if __name__ == "__main__":
    args = build_parser().parse_args()
    try:
        uvloop.run(args.func(args))
    except KeyboardInterrupt:
        log.info("Stopped by user.")
