"""IPv4 fragmentation and reassembly of Ethernet frames."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

from vpcsim.headers import IP_MF, IP_OFFMASK, EthernetHeader, IPv4Header
from vpcsim.ipnet import checksum

FRAG_TIMEOUT = 30
MAX_FRAGMENTS = 16
FF_HEAD = 1
FF_TAIL = 2

_ETH = EthernetHeader.SIZE
_ELEN = _ETH + IPv4Header.SIZE


def _parse(frame: bytes) -> Tuple[bytes, IPv4Header]:
    frame = bytes(frame)
    if len(frame) < _ELEN:
        raise ValueError(f"frame too short for an IPv4 packet: {len(frame)} bytes")
    header = IPv4Header.from_bytes(frame[_ETH:])
    if header.header_length < IPv4Header.SIZE:
        raise ValueError(f"invalid IPv4 header length: {header.header_length}")
    if len(frame) < _ETH + header.header_length:
        raise ValueError("frame shorter than its IPv4 header")
    return frame, header


def _build(eth: bytes, header: IPv4Header, options: bytes, payload: bytes) -> bytes:
    """Assemble a frame, filling in the IPv4 header checksum."""
    header.checksum = 0
    header.checksum = checksum(header.to_bytes() + options)
    return eth + header.to_bytes() + options + payload


def fragment_ipv4(frame: bytes, mtu: int) -> List[bytes]:
    """Split an Ethernet frame carrying IPv4 into fragments that fit the MTU.

    Returns the frame alone if it already fits, or if the MTU leaves room
    for less than eight bytes of payload per fragment.
    """
    frame, ip0 = _parse(frame)
    total = ip0.length
    if total <= mtu:
        return [frame]
    hlen = ip0.header_length
    size = (mtu - hlen) & ~7
    if size < 8:
        return [frame]
    if len(frame) < _ETH + total:
        raise ValueError("frame shorter than its IPv4 total length")

    eth = frame[:_ETH]
    options = frame[_ELEN:_ETH + hlen]

    first = replace(ip0, length=hlen + size, frag=IP_MF)
    fragments = [_build(eth, first, options, frame[_ETH + hlen:_ETH + hlen + size])]

    for off in range(hlen + size, total, size):
        end = min(off + size, total)
        last = off + size >= total
        frag = (off - hlen) >> 3
        if not last:
            frag |= IP_MF
        chunk = frame[_ETH + off:_ETH + end]
        header = replace(ip0, ihl=5, length=IPv4Header.SIZE + len(chunk), frag=frag)
        fragments.append(_build(eth, header, b"", chunk))
    return fragments


def _edge_flags(header: IPv4Header) -> int:
    if header.frag & IP_MF:
        return FF_HEAD
    if header.frag & ~IP_OFFMASK & 0xFFFF == 0:
        return FF_TAIL
    return 0


@dataclass
class _Fragment:
    offset: int
    header: IPv4Header
    frame: bytes

    @property
    def payload(self) -> bytes:
        start = _ETH + self.header.header_length
        return self.frame[start:_ETH + self.header.length]


@dataclass
class _Chain:
    created: float
    flags: int = 0
    fragments: List[_Fragment] = field(default_factory=list)


def _defrag(fragments: List[_Fragment]) -> bytes:
    first = fragments[0]
    hlen = first.header.header_length
    payload = b"".join(f.payload for f in fragments)
    header = replace(first.header, length=hlen + len(payload), frag=0)
    options = first.frame[_ELEN:_ETH + hlen]
    return _build(first.frame[:_ETH], header, options, payload)


class Ipv4Reassembler:
    """Collect IPv4 fragments and rebuild the original packet.

    ``clock`` returns the current time in seconds; chains older than
    ``FRAG_TIMEOUT`` seconds are discarded.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._chains: Dict[Tuple[int, int, int, int], _Chain] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._chains)

    def add(self, frame: bytes) -> Optional[bytes]:
        """Add a fragment; return the whole frame once all pieces have arrived."""
        frame, ip = _parse(frame)
        piece = _Fragment(ip.fragment_offset, ip, frame)
        key = (ip.ident, ip.proto, ip.src, ip.dst)

        with self._lock:
            now = self._clock()
            self._chains = {
                k: c for k, c in self._chains.items() if now - c.created <= FRAG_TIMEOUT
            }
            chain = self._chains.get(key)
            if chain is None:
                self._chains[key] = _Chain(now, _edge_flags(ip), [piece])
                return None

            chain.flags |= _edge_flags(ip)
            if piece.offset == 0 and ip.more_fragments:
                payload_len = ip.length - ip.header_length
                if payload_len <= 0 or payload_len % 8:
                    del self._chains[key]
                    return None
                chain.fragments.insert(0, piece)
            else:
                index = next(
                    (i for i, f in enumerate(chain.fragments) if f.offset > piece.offset),
                    len(chain.fragments),
                )
                chain.fragments.insert(index, piece)

            if len(chain.fragments) > MAX_FRAGMENTS:
                del self._chains[key]
                return None

            if chain.flags == FF_HEAD | FF_TAIL:
                covered = 0
                for f in chain.fragments:
                    if covered < f.offset:
                        return None
                    if not f.header.more_fragments:
                        del self._chains[key]
                        return _defrag(chain.fragments)
                    covered = max(covered, f.offset + len(f.payload))
            return None