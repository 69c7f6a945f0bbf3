import asyncio
import logging
import os
import socket

from fastbencode import bencode, bdecode

import config
from . import constants
from . import utils
from .errors import PeerUnreachable, RPCError, UnknownOperation
from .peer import PeerRef


# Argument names as the node sees them, keyed by their wire names.
_ARG_KEYS = {
    constants.KRPC_TARGET: "target",
    constants.KRPC_COUNT: "n",
    constants.KRPC_KEY: "key",
    constants.KRPC_VALUE: "value",
    constants.KRPC_VISITED: "visited",
    constants.KRPC_HOPS: "hops",
}


class LocalTransport:
    """
    Delivers operations to nodes living in the same process. A peer's
    endpoint is the Node object itself.
    """

    def __init__(self):
        self.unreachable = set()
        self.calls = 0

    def disconnect(self, node_id):
        """Makes every later call to `node_id` fail as if the peer were down."""
        self.unreachable.add(node_id)

    def reconnect(self, node_id):
        self.unreachable.discard(node_id)

    async def invoke(self, peer, op, args):
        if peer.id in self.unreachable or peer.endpoint is None:
            raise PeerUnreachable(f"{utils.proper_id(peer.id)[:8]} is unreachable")
        self.calls += 1
        result = await peer.endpoint.dispatch(op, args)
        peer.touch()
        return result


class DatagramTransport(asyncio.DatagramProtocol):
    """
    KRPC-style transport over UDP. Messages are bencoded dicts:

        t  transaction id
        y  "q" query, "r" response, "e" error
        q  method name (ping, find_node, store, fetch)
        a  query arguments, always including the sender's "id"
        r  response values, always including the responder's "id"
        e  [code, message]

    Peers are addressed by (ip, port). Incoming queries are handed to the
    bound node's `dispatch`, and their senders are added to its routing
    table.
    """

    def __init__(self, node=None, loop=None, timeout=None):
        self.node = node
        self.loop = loop
        self.transport = None
        self.timeout = config.RPC_TIMEOUT if timeout is None else timeout
        self.log = logging.getLogger("Transport")
        self._pending_queries = {}
        self.background_tasks = set()

    def bind(self, node):
        self.node = node

    async def listen(self, host="0.0.0.0", port=config.DEFAULT_PORT):
        """
        Opens the UDP endpoint and returns the bound (host, port).
        """
        self.loop = self.loop or asyncio.get_running_loop()
        await self.loop.create_datagram_endpoint(
            lambda: self, local_addr=(host, port)
        )
        return self.transport.get_extra_info('sockname')[:2]

    def connection_made(self, transport):
        self.transport = transport

    def connection_lost(self, exc):
        for future in self._pending_queries.values():
            if not future.done():
                future.set_exception(PeerUnreachable("transport closed"))
        self._pending_queries.clear()
        super().connection_lost(exc)

    def close(self):
        for task in self.background_tasks:
            task.cancel()
        if self.transport:
            self.transport.close()

    def datagram_received(self, data, addr):
        try:
            msg = bdecode(data)
        except Exception:
            return
        if not isinstance(msg, dict):
            return
        return self.handle_message(msg, addr)

    def send_message(self, data, addr):
        data.setdefault(constants.KRPC_T, b"tt")
        self.transport.sendto(bencode(data), addr)

    def handle_message(self, msg, addr):
        msg_type = msg.get(constants.KRPC_Y)
        tid = msg.get(constants.KRPC_T)

        if msg_type in (constants.KRPC_RESPONSE, constants.KRPC_ERROR):
            future = self._pending_queries.pop(tid, None)
            if future is not None and not future.done():
                future.set_result(msg)
            return

        if msg_type == constants.KRPC_QUERY:
            task = asyncio.ensure_future(
                self.handle_query(tid, msg.get(constants.KRPC_Q), msg.get(constants.KRPC_A, {}), addr)
            )
            self.background_tasks.add(task)
            task.add_done_callback(self.background_tasks.discard)
            return task

    async def handle_query(self, tid, method, a_args, addr):
        if self.node is None or not isinstance(method, bytes) or not isinstance(a_args, dict):
            return

        sender_id = a_args.get(constants.KRPC_ID)
        if isinstance(sender_id, bytes) and len(sender_id) == len(self.node.id):
            await self.node.add_peer(PeerRef(sender_id, addr))

        op = method.decode(errors='replace')
        try:
            args = {name: a_args[key] for key, name in _ARG_KEYS.items() if key in a_args}
            result = await self.node.dispatch(op, args)
        except UnknownOperation:
            self._send_error(tid, constants.KRPC_METHOD_UNKNOWN, addr)
            return
        except (KeyError, TypeError, ValueError):
            self._send_error(tid, constants.KRPC_PROTOCOL_ERROR, addr)
            return
        except Exception:
            self.log.exception(f"Error handling {op} from {addr}")
            self._send_error(tid, constants.KRPC_SERVER_ERROR, addr)
            return

        self.send_message({
            constants.KRPC_T: tid,
            constants.KRPC_Y: constants.KRPC_RESPONSE,
            constants.KRPC_R: self._encode_result(op, result)
        }, addr=addr)

    def _send_error(self, tid, error, addr):
        self.send_message({
            constants.KRPC_T: tid,
            constants.KRPC_Y: constants.KRPC_ERROR,
            constants.KRPC_E: error
        }, addr=addr)

    def _encode_result(self, op, result):
        r_args = {constants.KRPC_ID: self.node.id}
        if op == constants.OP_FIND_NODE:
            r_args[constants.KRPC_NODES] = utils.pack_nodes(result)
        elif op == constants.OP_STORE:
            r_args[constants.KRPC_OK] = 1 if result else 0
        elif op == constants.OP_FETCH and result is not None:
            r_args[constants.KRPC_VALUE] = result
        return r_args

    def _decode_result(self, op, r_args):
        if op == constants.OP_PING:
            return r_args.get(constants.KRPC_ID)
        if op == constants.OP_FIND_NODE:
            id_size = len(self.node.id) if self.node else constants.ID_BYTES
            return [
                PeerRef(node_id, (ip, port))
                for node_id, ip, port in utils.split_nodes(r_args.get(constants.KRPC_NODES, b""), id_size=id_size)
            ]
        if op == constants.OP_STORE:
            return bool(r_args.get(constants.KRPC_OK))
        return r_args.get(constants.KRPC_VALUE)

    async def invoke(self, peer, op, args):
        return await self.query(peer.endpoint, op, args)

    async def query(self, addr, op, args=None):
        """
        Sends `op` to `addr` and returns the decoded result.

        Raises PeerUnreachable when no answer arrives in time and RPCError
        when the peer answers with an error.
        """
        if op not in constants.OPERATIONS:
            raise UnknownOperation(f"unknown operation {op!r}")

        a_args = {constants.KRPC_ID: self.node.id} if self.node else {}
        for key, name in _ARG_KEYS.items():
            if args and args.get(name) is not None:
                value = args[name]
                a_args[key] = list(value) if name == "visited" else value

        msg = await self._send_query_and_wait({
            constants.KRPC_Y: constants.KRPC_QUERY,
            constants.KRPC_Q: op.encode(),
            constants.KRPC_A: a_args
        }, addr, timeout=self.timeout)

        if msg is None:
            raise PeerUnreachable(f"no answer from {addr[0]}:{addr[1]} within {self.timeout}s")

        if msg.get(constants.KRPC_Y) == constants.KRPC_ERROR:
            error = msg.get(constants.KRPC_E) or [0, b""]
            message = error[1].decode(errors='replace') if isinstance(error[1], bytes) else error[1]
            raise RPCError(f"{addr[0]}:{addr[1]} answered {op} with error {error[0]}: {message}")

        r_args = msg.get(constants.KRPC_R, {})
        responder_id = r_args.get(constants.KRPC_ID)
        if self.node is not None and isinstance(responder_id, bytes):
            known = self.node.table.get(responder_id)
            if known is not None:
                known.touch()
        return self._decode_result(op, r_args)

    async def _send_query_and_wait(self, query_data, addr, timeout=2):
        """
        Sends a query to a specific address and waits for a response.
        """
        if self.transport is None:
            raise PeerUnreachable("transport is not listening")

        tid = os.urandom(4)
        query_data[constants.KRPC_T] = tid

        future = self.loop.create_future()
        self._pending_queries[tid] = future

        try:
            self.send_message(query_data, addr)
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            return None
        except OSError as e:
            raise PeerUnreachable(f"cannot send to {addr[0]}:{addr[1]}: {e}") from e
        finally:
            self._pending_queries.pop(tid, None)

    async def bootstrap(self, addrs):
        """
        Pings each (host, port), adds the responders to the node's table and
        asks them for the peers closest to our own id. Returns the number of
        peers added.
        """
        added = 0
        for host, port in addrs:
            try:
                addr = (socket.gethostbyname(host), port)
            except socket.gaierror:
                self.log.warning(f"Cannot resolve bootstrap node {host}")
                continue

            try:
                peer_id = await self.query(addr, constants.OP_PING)
                if not isinstance(peer_id, bytes) or len(peer_id) != len(self.node.id):
                    self.log.warning(f"Bootstrap node {host}:{port} sent an invalid id")
                    continue
                if await self.node.add_peer(PeerRef(peer_id, addr)):
                    added += 1
                peers = await self.query(addr, constants.OP_FIND_NODE, {"target": self.node.id})
            except RPCError as e:
                self.log.warning(f"Bootstrap node {host}:{port} failed: {e}")
                continue

            for peer in peers:
                if await self.node.add_peer(peer):
                    added += 1
        self.log.info(f"Bootstrap finished, {added} peers added, {len(self.node.table)} known")
        return added
