"""IPv6 fragmentation and reassembly of Ethernet frames."""

from __future__ import annotations

import random
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from vpcsim.headers import (
    IPPROTO_AH,
    IPPROTO_FRAGMENT,
    EthernetHeader,
    IPv6FragmentHeader,
    IPv6Header,
)

FRAG_TIMEOUT = 30
MAX_FRAGMENTS = 16
FF_HEAD = 1
FF_TAIL = 2

_ETH = EthernetHeader.SIZE
_EILEN = _ETH + IPv6Header.SIZE
_HLEN = IPv6Header.SIZE + IPv6FragmentHeader.SIZE

_EXTENSION_HEADERS = frozenset({0, 43, IPPROTO_FRAGMENT, IPPROTO_AH, 60})


def _parse(frame: bytes) -> Tuple[bytes, IPv6Header]:
    frame = bytes(frame)
    if len(frame) < _EILEN:
        raise ValueError(f"frame too short for an IPv6 packet: {len(frame)} bytes")
    return frame, IPv6Header.from_bytes(frame[_ETH:])


def _find_fragment_header(packet: bytes) -> Optional[Tuple[int, int]]:
    """Locate the fragment header in an IPv6 packet.

    Returns its offset and the offset of the next-header field that names
    it, or None if the packet has no fragment header.
    """
    nxt = packet[6]
    pos = IPv6Header.SIZE
    nxt_field = 6
    while nxt in _EXTENSION_HEADERS:
        if nxt == IPPROTO_FRAGMENT:
            if pos + IPv6FragmentHeader.SIZE > len(packet):
                return None
            return pos, nxt_field
        if pos + 2 > len(packet):
            return None
        if nxt == IPPROTO_AH:
            size = (packet[pos + 1] + 2) * 4
        else:
            size = (packet[pos + 1] + 1) * 8
        nxt_field = pos
        nxt = packet[pos]
        pos += size
    return None


def fragment_ipv6(frame: bytes, mtu: int, ident: Optional[int] = None) -> List[bytes]:
    """Split an Ethernet frame carrying IPv6 into fragments that fit the MTU.

    Each fragment gets a fragment header with identification ``ident``
    (random if not given). Returns the frame alone if it already fits.
    """
    frame, ip0 = _parse(frame)
    plen = ip0.payload_length + IPv6Header.SIZE
    if plen <= mtu:
        return [frame]
    size = (mtu - _HLEN) & ~7
    if size < 8:
        return [frame]
    data = frame[_EILEN:_ETH + plen]
    if len(data) < ip0.payload_length:
        raise ValueError("frame shorter than its IPv6 payload length")
    if ident is None:
        ident = random.getrandbits(32)

    eth = frame[:_ETH]
    fragments = []
    for off in range(0, len(data), size):
        chunk = data[off:off + size]
        header = replace(
            ip0,
            next_header=IPPROTO_FRAGMENT,
            payload_length=len(chunk) + IPv6FragmentHeader.SIZE,
        )
        frag = IPv6FragmentHeader(
            next_header=ip0.next_header,
            offset=off,
            more=off + size < len(data),
            ident=ident,
        )
        fragments.append(eth + header.to_bytes() + frag.to_bytes() + chunk)
    return fragments


@dataclass
class _Fragment:
    eth: bytes
    packet: bytes
    hoff: int
    nxt_field: int
    header: IPv6FragmentHeader

    @property
    def payload(self) -> bytes:
        return self.packet[self.hoff + IPv6FragmentHeader.SIZE:]


@dataclass
class _Chain:
    created: float
    flags: int = 0
    fragments: List[_Fragment] = field(default_factory=list)


def _edge_flags(frag: IPv6FragmentHeader) -> int:
    if frag.more and frag.offset == 0:
        return FF_HEAD
    if not frag.more:
        return FF_TAIL
    return 0


def _defrag(fragments: List[_Fragment]) -> bytes:
    first = fragments[0]
    prefix = bytearray(first.packet[:first.hoff])
    prefix[first.nxt_field] = first.header.next_header
    payload = b"".join(f.payload for f in fragments)
    plen = first.hoff - IPv6Header.SIZE + len(payload)
    prefix[4:6] = plen.to_bytes(2, "big")
    return first.eth + bytes(prefix) + payload


class Ipv6Reassembler:
    """Collect IPv6 fragments and rebuild the original packet.

    ``clock`` returns the current time in seconds; chains older than
    ``FRAG_TIMEOUT`` seconds are discarded.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._chains: Dict[Tuple[int, int, bytes, bytes], _Chain] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._chains)

    def add(self, frame: bytes) -> Optional[bytes]:
        """Add a frame; unfragmented frames come back unchanged.

        Returns None while a fragmented packet is incomplete and the whole
        frame once every piece has arrived.
        """
        frame, ip = _parse(frame)
        if ip.payload_length == 0:
            return frame
        packet = frame[_ETH:_EILEN + ip.payload_length]
        found = _find_fragment_header(packet)
        if found is None:
            return frame
        hoff, nxt_field = found
        fh = IPv6FragmentHeader.from_bytes(packet[hoff:])
        piece = _Fragment(frame[:_ETH], packet, hoff, nxt_field, fh)
        key = (fh.ident, fh.next_header, ip.src, ip.dst)

        with self._lock:
            now = self._clock()
            self._chains = {
                k: c for k, c in self._chains.items() if now - c.created <= FRAG_TIMEOUT
            }
            chain = self._chains.get(key)
            if chain is None:
                self._chains[key] = _Chain(now, _edge_flags(fh), [piece])
                return None

            chain.flags |= _edge_flags(fh)
            index = next(
                (i for i, f in enumerate(chain.fragments) if f.header.offset > fh.offset),
                len(chain.fragments),
            )
            chain.fragments.insert(index, piece)

            if len(chain.fragments) > MAX_FRAGMENTS:
                del self._chains[key]
                return None

            if chain.flags == FF_HEAD | FF_TAIL:
                covered = 0
                for f in chain.fragments:
                    if covered < f.header.offset:
                        return None
                    if not f.header.more:
                        del self._chains[key]
                        return _defrag(chain.fragments)
                    covered = max(covered, f.header.offset + len(f.payload))
            return None