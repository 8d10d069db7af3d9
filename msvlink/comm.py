"""Function-call broker over TCP: serves local functions and calls remote ones.

One side listens (server mode) or connects (client mode).  Every request is a
packet named after the function; the answer comes back as a packet named
``OnReturn_<function>``.  On connection each side asks the other for its
function list with the built-in ``ASK_FUNLIST`` function.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Hashable, List, Optional, Union

from .framing import PacketAssembler
from .protocol import CallbackFunc, CommPorts, DecodedPacket, HImage, HValue, Packet
from .registry import LocalFunctions, PeerTable, decode_function_list, encode_function_list
from .transport import AsyncTcpClient, AsyncTcpServer

log = logging.getLogger(__name__)

ASK_FUNLIST = "ASK_FUNLIST"
RETURN_PREFIX = "OnReturn_"
MAX_RETURNS = 100
DEFAULT_TIMEOUT = 2.0
_POLL = 0.05


class RemoteCallError(Exception):
    """A remote call could not be delivered or got no answer in time."""

    def __init__(self, errcode: int, errmsg: str) -> None:
        super().__init__(errmsg)
        self.errcode = errcode
        self.errmsg = errmsg


@dataclass
class CallResult:
    """Images and values a function produced, with its error code and message."""

    images: List[HImage] = field(default_factory=list)
    values: List[HValue] = field(default_factory=list)
    errcode: int = 0
    errmsg: str = ""


def _as_result(output: object) -> CallResult:
    if isinstance(output, CallResult):
        return output
    if output is None:
        return CallResult()
    items = tuple(output)  # type: ignore[arg-type]
    if len(items) == 2:
        images, values = items
        return CallResult(list(images), list(values))
    if len(items) == 4:
        images, values, errcode, errmsg = items
        return CallResult(list(images), list(values), int(errcode), str(errmsg))
    raise TypeError("a handler returns (images, values) or (images, values, errcode, errmsg)")


class ServerComm:
    """Broker for one endpoint described by a ``CommPorts``.

    Timeouts are in seconds.
    """

    def __init__(self, ports: CommPorts) -> None:
        self.ports = ports
        self._local = LocalFunctions()
        self._peers = PeerTable()
        self._assemblers: Dict[Hashable, PacketAssembler] = {}
        self._assemblers_lock = threading.Lock()
        self._returns: Deque[DecodedPacket] = deque(maxlen=MAX_RETURNS)
        self._returns_cond = threading.Condition()
        self._recv_ready = threading.Event()
        self._send_ready = threading.Event()
        self._transport: Optional[Union[AsyncTcpServer, AsyncTcpClient]] = None
        self._threads: List[threading.Thread] = []
        self._running = False
        self._state_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def port(self) -> int:
        """The listening port in server mode, once started."""
        transport = self._transport
        if isinstance(transport, AsyncTcpServer):
            return transport.port
        return self.ports.localhost_ip.port

    def __enter__(self) -> "ServerComm":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # lifecycle

    def start(self) -> None:
        """Open the connection, start the workers and offer ``ASK_FUNLIST``."""
        if not self._local.exists(ASK_FUNLIST):
            try:
                self._local.register(
                    CallbackFunc(ASK_FUNLIST, 0, 0, 0, 1, func=self._answer_function_list)
                )
            except ValueError:
                pass
        with self._state_lock:
            if self._running:
                return
            self._running = True
            name = self.ports.port_name or "comm"
            self._threads = [
                threading.Thread(target=self._recv_loop, name=f"{name}-recv", daemon=True),
                threading.Thread(target=self._send_loop, name=f"{name}-send", daemon=True),
            ]
            for thread in self._threads:
                thread.start()
            try:
                self._transport = self._open_transport()
            except Exception:
                self._running = False
                self._join_workers()
                raise

    def stop(self) -> None:
        """Close the connection, stop the workers and forget all peers."""
        with self._state_lock:
            if self._running:
                self._running = False
                transport, self._transport = self._transport, None
                if isinstance(transport, AsyncTcpServer):
                    transport.stop()
                elif transport is not None:
                    transport.disconnect()
                self._join_workers()
        self._peers.clear()
        with self._assemblers_lock:
            self._assemblers.clear()
        with self._returns_cond:
            self._returns.clear()

    def _join_workers(self) -> None:
        self._recv_ready.set()
        self._send_ready.set()
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join()
        self._threads = []

    def _open_transport(self) -> Union[AsyncTcpServer, AsyncTcpClient]:
        if self.ports.is_act_as_server == 1:
            server = AsyncTcpServer(
                self.ports.localhost_ip.port,
                on_receive=self._on_receive,
                on_connect=self._add_peer,
                on_disconnect=self._remove_peer,
            )
            server.start()
            return server
        client = AsyncTcpClient(
            self.ports.remote_ip.ip,
            self.ports.remote_ip.port,
            on_receive=self._on_receive,
            on_connect=self._on_client_state,
        )
        client.connect()
        return client

    # local functions

    def register_local(self, func: CallbackFunc) -> None:
        """Offer ``func`` to peers; a name already taken raises ``ValueError``."""
        self._local.register(func)

    def local_functions(self) -> List[CallbackFunc]:
        return self._local.all()

    def call_local(self, name: str, images=(), values=()) -> CallResult:
        """Run a registered function; an exception it raises becomes error code -1."""
        func = self._local.find(name)
        if func is None or func.func is None:
            raise KeyError(f"No function found: {name!r}")
        try:
            return _as_result(func.func(list(images), list(values)))
        except Exception as exc:
            log.exception("function %s failed", name)
            return CallResult(errcode=-1, errmsg=str(exc))

    def _answer_function_list(self, images, values):
        return [], encode_function_list(self._local.all())

    # remote functions

    def call_remote(
        self, ports: CommPorts, name: str, images=(), values=(), timeout: float = DEFAULT_TIMEOUT
    ) -> CallResult:
        """Call ``name`` on a peer and wait up to ``timeout`` seconds for the answer.

        With ``ports.is_act_as_server == 0`` the peer is the one at
        ``ports.remote_ip``; otherwise the first peer offering ``name``.
        """
        if ports.is_act_as_server == 0:
            peer_id = self._peers.find_by_address(ports.remote_ip.ip, ports.remote_ip.port)
        else:
            peer_id = self._peers.find_by_function(name)
        if peer_id is None:
            raise RemoteCallError(-1, "No socket found.")
        request = Packet.build(name, images, values)
        try:
            self._peers.push_send(peer_id, request)
        except KeyError:
            raise RemoteCallError(-1, "No socket found.") from None
        self._send_ready.set()

        expected = RETURN_PREFIX + name
        deadline = time.monotonic() + timeout
        with self._returns_cond:
            while True:
                for reply in self._returns:
                    if reply.func_name == expected:
                        self._returns.remove(reply)
                        return CallResult(list(reply.images), list(reply.values))
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise RemoteCallError(-1, "No response data from server.")
                self._returns_cond.wait(remaining)

    def remote_functions(self, ports: CommPorts) -> List[CallbackFunc]:
        """Functions offered by the peer at ``ports.remote_ip`` (or ``localhost_ip``)."""
        target = ports.remote_ip if ports.remote_ip.ip else ports.localhost_ip
        peer_id = self._peers.find_by_address(target.ip, target.port)
        if peer_id is None:
            return []
        try:
            return self._peers.functions_of(peer_id)
        except KeyError:
            return []

    def remote_commports(self) -> List[CommPorts]:
        """Addresses of all connected peers."""
        return [CommPorts(is_act_as_server=0, localhost_ip=addr) for addr in self._peers.addresses()]

    # transport callbacks

    def _add_peer(self, sock: socket.socket) -> None:
        try:
            address = sock.getpeername()[:2]
        except OSError:
            address = ("", 0)
        with self._assemblers_lock:
            self._assemblers[sock] = PacketAssembler()
        try:
            self._peers.add(sock, address)
        except ValueError:
            return
        self._peers.push_send(sock, Packet.build(ASK_FUNLIST, [], []))
        self._send_ready.set()
        log.info("peer connected: %s:%d", address[0], address[1])

    def _remove_peer(self, sock: socket.socket) -> None:
        self._peers.remove(sock)
        with self._assemblers_lock:
            self._assemblers.pop(sock, None)
        log.info("peer disconnected")

    def _on_client_state(self, sock: socket.socket, connected: bool) -> None:
        if connected:
            self._add_peer(sock)
        else:
            self._remove_peer(sock)

    def _on_receive(self, sock: socket.socket, data: bytes) -> None:
        with self._assemblers_lock:
            assembler = self._assemblers.get(sock)
        if assembler is None:
            return
        try:
            packets = assembler.feed(data)
        except ValueError as exc:
            log.warning("dropping malformed stream data: %s", exc)
            assembler.reset()
            return
        for packet in packets:
            try:
                self._peers.push_recv(sock, packet)
            except KeyError:
                return
        if packets:
            self._recv_ready.set()

    # workers

    def _recv_loop(self) -> None:
        while self._running:
            self._recv_ready.wait(_POLL)
            self._recv_ready.clear()
            for peer_id in self._peers.ids():
                while self._running and (packet := self._peers.pop_recv(peer_id)) is not None:
                    self._handle_packet(peer_id, packet)
        log.info("receive worker stopped")

    def _handle_packet(self, peer_id: Hashable, packet: Packet) -> None:
        try:
            decoded = packet.decode()
        except ValueError as exc:
            log.warning("dropping undecodable packet: %s", exc)
            return
        name = decoded.func_name
        if name.startswith(RETURN_PREFIX):
            if name == RETURN_PREFIX + ASK_FUNLIST:
                try:
                    funcs = decode_function_list(decoded.values)
                    self._peers.update_functions(peer_id, funcs)
                except (ValueError, KeyError) as exc:
                    log.warning("could not update function list: %s", exc)
            else:
                with self._returns_cond:
                    self._returns.append(decoded)
                    self._returns_cond.notify_all()
            return
        if self._local.exists(name):
            result = self.call_local(name, decoded.images, decoded.values)
            errcode, errmsg = result.errcode, result.errmsg
            try:
                reply = Packet.build(RETURN_PREFIX + name, result.images, result.values)
                self._peers.push_send(peer_id, reply)
                self._send_ready.set()
            except (ValueError, KeyError) as exc:
                log.warning("could not answer %s: %s", name, exc)
        else:
            errcode, errmsg = -1, "function does not exist"
        log.info(
            "request %s: %d values, %d images, errcode %d, %s",
            name,
            len(decoded.values),
            len(decoded.images),
            errcode,
            errmsg,
        )

    def _send_loop(self) -> None:
        while self._running:
            self._send_ready.wait(_POLL)
            self._send_ready.clear()
            for peer_id in self._peers.ids():
                while self._running and (packet := self._peers.pop_send(peer_id)) is not None:
                    self._transmit(peer_id, packet)
        log.info("send worker stopped")

    def _transmit(self, peer_id: Hashable, packet: Packet) -> None:
        data = packet.to_bytes()
        transport = self._transport
        if isinstance(transport, AsyncTcpServer):
            sent = transport.send_to_client(peer_id, data)  # type: ignore[arg-type]
        elif transport is not None:
            sent = transport.send(data)
        else:
            sent = False
        if sent:
            log.debug("sent %d bytes", len(data))
        else:
            log.warning("failed to send %d bytes", len(data))