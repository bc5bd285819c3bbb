"""Checksums, netmask arithmetic and small helpers for raw frames."""

from __future__ import annotations

import struct

from vpcsim.headers import (
    BROADCAST_MAC,
    ETH_ALEN,
    ZERO_MAC,
    EthernetHeader,
    IPv6Header,
)
from vpcsim.inet6 import ntop6

_MASK64 = (1 << 64) - 1

IP_MASKS = tuple(((0xFFFFFFFF << (32 - n)) & 0xFFFFFFFF) for n in range(33))

_DEST_UNREACH = (
    "Destination network unreachable",
    "Destination host unreachable",
    "Destination protocol unreachable",
    "Destination port unreachable",
    "Fragmentation required, and DF flag set",
    "Source route failed",
    "Destination network unknown",
    "Destination host unknown",
    "Source host isolated",
    "Network administratively prohibited",
    "Host administratively prohibited",
    "Network unreachable for TOS",
    "Host unreachable for TOS",
    "Communication administratively prohibited",
)
_REDIRECT = (
    "Redirect Datagram for the Network",
    "Redirect Datagram for the Host",
    "Redirect Datagram for the TOS & network",
    "Redirect Datagram for the TOS & host",
)
_TIME_EXCEED = ("TTL expired in transit", "Fragment reassembly time exceeded")
_DEST6_UNREACH = (
    "No route to destination",
    "Communication with destination administratively prohibited",
    "Beyond scope of source address",
    "Address unreachable",
    "Port unreachable",
    "Source address failed ingress/egress policy",
    "Reject route to destination",
)
_TIME6_EXCEED = ("Hop limit exceeded in transit", "Fragment reassembly time exceeded")
_ND_MESSAGES = (
    "ICMPv6 router solicitation",
    "ICMPv6 router advertisement",
    "ICMPv6 neighbor solicitation",
    "ICMPv6 neighbor advertisement",
    "ICMPv6 redirect",
)

_IP6_SRC = EthernetHeader.SIZE + 8
_IP6_DST = _IP6_SRC + 16


def checksum(data: bytes) -> int:
    """Internet checksum of data, as a 16-bit value in network order."""
    data = bytes(data)
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return ~total & 0xFFFF


def checksum_fixup(csum: int, old: int, new: int, udp: bool = False) -> int:
    """Update a checksum after a 16-bit field changed from old to new.

    For UDP a zero checksum means "none" and stays zero, and a result of
    zero is written as 0xFFFF.
    """
    if udp and not csum:
        return 0x0000
    value = (csum + old - new) & _MASK64
    value = (value >> 16) + (value & 0xFFFF)
    value &= 0xFFFF
    if udp and not value:
        return 0xFFFF
    return value


def checksum6(src: bytes, dst: bytes, next_header: int, payload: bytes) -> int:
    """Checksum of an upper-layer payload with the IPv6 pseudo-header."""
    src, dst, payload = bytes(src), bytes(dst), bytes(payload)
    if len(src) != 16 or len(dst) != 16:
        raise ValueError("IPv6 addresses must be 16 bytes")
    pseudo = src + dst + struct.pack("!I3xB", len(payload), next_header & 0xFF)
    return checksum(pseudo + payload)


def mask_from_cidr(cidr: int) -> int:
    """The IPv4 netmask, as an integer, for a prefix length of 0 to 32."""
    if not 0 <= cidr <= 32:
        raise ValueError(f"prefix length out of range: {cidr}")
    return IP_MASKS[cidr]


def cidr_from_mask(mask: int) -> int:
    """The prefix length of an IPv4 netmask; 0 if it is not a valid mask."""
    try:
        return IP_MASKS.index(mask)
    except ValueError:
        return 0


def same_net(ip1: int, ip2: int, cidr: int) -> bool:
    """Whether two IPv4 addresses share the first cidr bits."""
    mask = mask_from_cidr(cidr)
    return (ip1 & mask) == (ip2 & mask)


def same_net6(a: bytes, b: bytes, cidr: int) -> bool:
    """Whether two IPv6 addresses share the first cidr bits."""
    a, b = bytes(a), bytes(b)
    if len(a) != 16 or len(b) != 16:
        raise ValueError("IPv6 addresses must be 16 bytes")
    if not 0 <= cidr <= 128:
        raise ValueError(f"prefix length out of range: {cidr}")
    whole, bits = divmod(cidr, 8)
    if a[:whole] != b[:whole]:
        return False
    if bits and whole < 16:
        shift = 8 - bits
        return (a[whole] >> shift) == (b[whole] >> shift)
    return True


def _need_frame(frame: bytes, size: int) -> bytes:
    frame = bytes(frame)
    if len(frame) < size:
        raise ValueError(f"frame needs at least {size} bytes, got {len(frame)}")
    return frame


def swap_ether_header(frame: bytes) -> bytes:
    """Return the frame with its Ethernet source and destination swapped."""
    frame = _need_frame(frame, EthernetHeader.SIZE)
    return frame[6:12] + frame[0:6] + frame[12:]


def encap_ether_header(frame: bytes, src: bytes, dst: bytes, ether_type: int) -> bytes:
    """Return the frame with a new Ethernet header written over the first 14 bytes."""
    frame = _need_frame(frame, EthernetHeader.SIZE)
    header = EthernetHeader(dst=dst, src=src, type=ether_type).to_bytes()
    return header + frame[EthernetHeader.SIZE :]


def swap_ip6_addresses(frame: bytes) -> bytes:
    """Return the frame with the IPv6 source and destination swapped."""
    frame = _need_frame(frame, EthernetHeader.SIZE + IPv6Header.SIZE)
    src = frame[_IP6_SRC:_IP6_DST]
    dst = frame[_IP6_DST : _IP6_DST + 16]
    return frame[:_IP6_SRC] + dst + src + frame[_IP6_DST + 16 :]


def ether_is_zero(mac: bytes) -> bool:
    """Whether the MAC address is all zeros."""
    return bytes(mac[:ETH_ALEN]) == ZERO_MAC


def ether_is_broadcast(mac: bytes) -> bool:
    """Whether the MAC address is the broadcast address."""
    return bytes(mac[:ETH_ALEN]) == BROADCAST_MAC


def icmp_description(version: int, icmp_type: int, code: int) -> str:
    """A human-readable description of an ICMP or ICMPv6 type and code."""
    if version == 4:
        if icmp_type == 0:
            return "Echo reply"
        if icmp_type == 8:
            return "Echo"
        table = {3: _DEST_UNREACH, 5: _REDIRECT, 11: _TIME_EXCEED}.get(icmp_type)
    elif version == 6:
        if icmp_type == 2:
            return "ICMPv6 packet too big"
        if icmp_type == 128:
            return "ICMPv6 echo request"
        if icmp_type == 129:
            return "ICMPv6 echo reply"
        if 133 <= icmp_type <= 137:
            return _ND_MESSAGES[icmp_type - 133]
        table = {1: _DEST6_UNREACH, 3: _TIME6_EXCEED}.get(icmp_type)
    else:
        table = None
    if table is not None and 0 <= code < len(table):
        return table[code]
    return ""


def ip6_to_str(addr: bytes) -> str:
    """Format a 16-byte IPv6 address as text."""
    return ntop6(addr)