"""
Helpers that assemble in-process overlays out of Nodes sharing a
LocalTransport, for simulations and tests.
"""
import asyncio
import random

from .node import Node
from .peer import PeerRef
from .transport import LocalTransport


def peer_of(node):
    """A reference other in-process nodes can use to reach `node`."""
    return PeerRef(node.id, node)


async def connect(a, b):
    """Puts `a` and `b` into each other's routing tables."""
    await a.add_peer(peer_of(b))
    await b.add_peer(peer_of(a))


async def build_overlay(node_ids, transport=None, contacts=None, rng=None, **node_kwargs):
    """
    Creates one Node per id on a shared transport and wires their tables.

    With `contacts` unset every node knows every other one. Otherwise each
    node learns `contacts` peers picked with `rng` (a seeded random.Random
    by default), so lookups have to travel through the overlay.
    """
    transport = transport or LocalTransport()
    nodes = [Node(node_id, transport, **node_kwargs) for node_id in node_ids]

    if contacts is None:
        for node in nodes:
            for other in nodes:
                if other is not node:
                    await node.add_peer(peer_of(other))
        return nodes

    rng = rng or random.Random(0)
    for node in nodes:
        others = [other for other in nodes if other is not node]
        for other in rng.sample(others, min(contacts, len(others))):
            await connect(node, other)
    return nodes


async def settle(nodes):
    """Waits until none of `nodes` has forwarded requests still in flight."""
    while True:
        pending = [task for node in nodes for task in node.background_tasks]
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
