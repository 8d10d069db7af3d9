"""Bookkeeping of callable functions and of connected peers with their queues."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Hashable, Iterable, List, Optional, Tuple

from .protocol import CallbackFunc, HValue, IPPort, Packet

MAX_QUEUE = 128
_FIELDS_PER_FUNCTION = 5


def encode_function_list(funcs: Iterable[CallbackFunc]) -> List[HValue]:
    """Flatten functions into values: name, then the four counts, per function."""
    values: List[HValue] = []
    for func in funcs:
        values.append(HValue.of(func.name))
        values.append(HValue.of(func.input_images))
        values.append(HValue.of(func.input_params))
        values.append(HValue.of(func.output_images))
        values.append(HValue.of(func.output_params))
    return values


def decode_function_list(values: Iterable[HValue]) -> List[CallbackFunc]:
    """Rebuild function descriptions from values made by ``encode_function_list``."""
    values = list(values)
    if len(values) % _FIELDS_PER_FUNCTION:
        raise ValueError(
            f"function list needs a multiple of {_FIELDS_PER_FUNCTION} values, got {len(values)}"
        )
    funcs = []
    for start in range(0, len(values), _FIELDS_PER_FUNCTION):
        name, in_images, in_params, out_images, out_params = values[
            start : start + _FIELDS_PER_FUNCTION
        ]
        funcs.append(
            CallbackFunc(
                name=name.as_str(),
                input_images=in_images.as_int(),
                input_params=in_params.as_int(),
                output_images=out_images.as_int(),
                output_params=out_params.as_int(),
            )
        )
    return funcs


class LocalFunctions:
    """Functions this side offers, looked up by name."""

    def __init__(self) -> None:
        self._funcs: Dict[str, CallbackFunc] = {}
        self._lock = threading.Lock()

    def register(self, func: CallbackFunc) -> None:
        """Add ``func``; a name that is already taken raises ``ValueError``."""
        with self._lock:
            if func.name in self._funcs:
                raise ValueError(f"function {func.name!r} is already registered")
            self._funcs[func.name] = func

    def find(self, name: str) -> Optional[CallbackFunc]:
        with self._lock:
            return self._funcs.get(name)

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._funcs

    def all(self) -> List[CallbackFunc]:
        """Every registered function, in registration order."""
        with self._lock:
            return list(self._funcs.values())


@dataclass
class Peer:
    """A connected remote end with its functions and packet queues."""

    peer_id: Hashable
    address: Tuple[str, int]
    functions: List[CallbackFunc] = field(default_factory=list)
    send_queue: Deque[Packet] = field(default_factory=lambda: deque(maxlen=MAX_QUEUE))
    recv_queue: Deque[Packet] = field(default_factory=lambda: deque(maxlen=MAX_QUEUE))


class PeerTable:
    """Thread-safe table of peers in connection order.

    Each queue holds at most ``MAX_QUEUE`` packets; pushing onto a full queue
    drops its oldest packet.
    """

    def __init__(self) -> None:
        self._peers: Dict[Hashable, Peer] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, peer_id: object) -> bool:
        with self._lock:
            return peer_id in self._peers

    def add(self, peer_id: Hashable, address: Tuple[str, int]) -> Peer:
        with self._lock:
            if peer_id in self._peers:
                raise ValueError(f"peer {peer_id!r} is already present")
            peer = Peer(peer_id, (address[0], address[1]))
            self._peers[peer_id] = peer
            return peer

    def remove(self, peer_id: Hashable) -> bool:
        """Drop a peer and its queues; False if it was not present."""
        with self._lock:
            return self._peers.pop(peer_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._peers.clear()

    def ids(self) -> List[Hashable]:
        with self._lock:
            return list(self._peers)

    def _peer(self, peer_id: Hashable) -> Peer:
        try:
            return self._peers[peer_id]
        except KeyError:
            raise KeyError(f"unknown peer {peer_id!r}") from None

    def push_send(self, peer_id: Hashable, packet: Packet) -> int:
        """Queue a packet for sending; returns the queue length."""
        with self._lock:
            queue = self._peer(peer_id).send_queue
            queue.append(packet)
            return len(queue)

    def pop_send(self, peer_id: Hashable) -> Optional[Packet]:
        """Oldest packet waiting to be sent, or None if none (or no such peer)."""
        with self._lock:
            peer = self._peers.get(peer_id)
            if peer is None or not peer.send_queue:
                return None
            return peer.send_queue.popleft()

    def push_recv(self, peer_id: Hashable, packet: Packet) -> int:
        """Queue a received packet; returns the queue length."""
        with self._lock:
            queue = self._peer(peer_id).recv_queue
            queue.append(packet)
            return len(queue)

    def pop_recv(self, peer_id: Hashable) -> Optional[Packet]:
        """Oldest received packet, or None if none (or no such peer)."""
        with self._lock:
            peer = self._peers.get(peer_id)
            if peer is None or not peer.recv_queue:
                return None
            return peer.recv_queue.popleft()

    def find_by_address(self, ip: str, port: int) -> Optional[Hashable]:
        with self._lock:
            for peer in self._peers.values():
                if peer.address == (ip, port):
                    return peer.peer_id
            return None

    def find_by_function(self, name: str) -> Optional[Hashable]:
        """First peer offering a function called ``name``."""
        with self._lock:
            for peer in self._peers.values():
                if any(func.name == name for func in peer.functions):
                    return peer.peer_id
            return None

    def functions_of(self, peer_id: Hashable) -> List[CallbackFunc]:
        with self._lock:
            return list(self._peer(peer_id).functions)

    def update_functions(self, peer_id: Hashable, funcs: Iterable[CallbackFunc]) -> None:
        with self._lock:
            self._peer(peer_id).functions = list(funcs)

    def addresses(self) -> List[IPPort]:
        with self._lock:
            return [IPPort(ip, port) for ip, port in (p.address for p in self._peers.values())]