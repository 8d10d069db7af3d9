"""Reassembly of packets from a TCP byte stream."""

from __future__ import annotations

import logging
from typing import List

from .protocol import HEAD_LABEL_1, HEAD_LABEL_2, HEAD_SIZE, Packet, PacketHead

log = logging.getLogger(__name__)

_LABEL = bytes((HEAD_LABEL_1, HEAD_LABEL_2))


class PacketAssembler:
    """Collects stream chunks and yields the complete packets they contain.

    Bytes before a packet label are dropped.  Once a head's worth of bytes is
    buffered and no label can be found anywhere in it, the buffer is discarded.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[Packet]:
        """Add ``data`` and return every packet that is now complete, in order."""
        self._buffer += data
        packets: List[Packet] = []
        while len(self._buffer) >= HEAD_SIZE:
            start = self._buffer.find(_LABEL)
            if start < 0:
                log.warning("discarding %d bytes without a packet label", len(self._buffer))
                self._buffer.clear()
                break
            if start > 0:
                log.warning("skipping %d bytes before a packet label", start)
                del self._buffer[:start]
                continue
            head = PacketHead.from_bytes(bytes(self._buffer[:HEAD_SIZE]))
            total = HEAD_SIZE + head.data_len
            if len(self._buffer) < total:
                break
            packets.append(Packet(head, bytes(self._buffer[HEAD_SIZE:total])))
            del self._buffer[:total]
        return packets

    def reset(self) -> None:
        """Forget any partially received data."""
        self._buffer.clear()

    def pending(self) -> int:
        """Number of bytes buffered and not yet part of a complete packet."""
        return len(self._buffer)