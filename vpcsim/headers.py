"""Wire formats of the Ethernet, ARP, IPv4, IPv6, ICMP, UDP and TCP headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar

MTU = 1500
IPV6_MMTU = 1280

ETH_ALEN = 6
ETHERTYPE_IP = 0x0800
ETHERTYPE_ARP = 0x0806
ETHERTYPE_IPV6 = 0x86DD

BROADCAST_MAC = b"\xff" * ETH_ALEN
ZERO_MAC = b"\x00" * ETH_ALEN

ARPHRD_ETHER = 1
ARPOP_REQUEST = 1
ARPOP_REPLY = 2

IP_DF = 0x4000
IP_MF = 0x2000
IP_OFFMASK = 0x1FFF
TTL = 64

IPPROTO_ICMP = 1
IPPROTO_TCP = 6
IPPROTO_UDP = 17
IPPROTO_FRAGMENT = 44
IPPROTO_AH = 51
IPPROTO_ICMPV6 = 58

ICMP_ECHOREPLY = 0
ICMP_UNREACH = 3
ICMP_UNREACH_PORT = 3
ICMP_UNREACH_NEEDFRAG = 4
ICMP_REDIRECT = 5
ICMP_REDIRECT_NET = 0
ICMP_ECHO = 8
ICMP_TIMXCEED = 11

ICMP6_DST_UNREACH = 1
ICMP6_PACKET_TOO_BIG = 2
ICMP6_TIME_EXCEEDED = 3
ICMP6_DST_UNREACH_NOPORT = 4
ICMP6_ECHO_REQUEST = 128
ICMP6_ECHO_REPLY = 129

ND_ROUTER_SOLICIT = 133
ND_ROUTER_ADVERT = 134
ND_NEIGHBOR_SOLICIT = 135
ND_NEIGHBOR_ADVERT = 136
ND_REDIRECT = 137
ND_NA_FLAG_OVERRIDE = 0x20
ND_RA_FLAG_MANAGED = 0x80
ND_RA_FLAG_OTHER = 0x40
ND_RA_FLAG_HA = 0x20

TH_FIN = 0x01
TH_SYN = 0x02
TH_RST = 0x04
TH_PUSH = 0x08
TH_ACK = 0x10
TH_URG = 0x20
TH_ECE = 0x40
TH_CWR = 0x80
TH_FLAGS = TH_FIN | TH_SYN | TH_RST | TH_PUSH | TH_ACK | TH_URG | TH_ECE | TH_CWR

TCPOPT_MAXSEG = 2
TCPOLEN_MAXSEG = 4
TCPOPT_WINDOW = 3
TCPOLEN_WINDOW = 3
TCPOPT_TIMESTAMP = 8
TCPOLEN_TIMESTAMP = 10

PKT_MAXSIZE = 1520
ARP_PSIZE = 64
ICMP_PSIZE = 128
UDP_PSIZE = 128

IPV6_VERSION = 0x60
IPV6_VERSION_MASK = 0xF0

IP6F_MORE_FRAG = 0x0001
IP6F_OFF_MASK = 0xFFF8
IP6F_RESERVED_MASK = 0x0006


def _need(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


def _check_len(value: bytes, size: int, what: str) -> None:
    if len(value) != size:
        raise ValueError(f"{what} must be {size} bytes, got {len(value)}")


@dataclass
class EthernetHeader:
    """Ethernet II header."""

    SIZE: ClassVar[int] = 14

    dst: bytes = ZERO_MAC
    src: bytes = ZERO_MAC
    type: int = ETHERTYPE_IP

    def __post_init__(self) -> None:
        self.dst = bytes(self.dst)
        self.src = bytes(self.src)
        _check_len(self.dst, ETH_ALEN, "destination MAC")
        _check_len(self.src, ETH_ALEN, "source MAC")

    @classmethod
    def from_bytes(cls, data: bytes) -> EthernetHeader:
        _need(data, cls.SIZE, "Ethernet header")
        dst, src, etype = struct.unpack_from("!6s6sH", data)
        return cls(dst, src, etype)

    def to_bytes(self) -> bytes:
        return struct.pack("!6s6sH", self.dst, self.src, self.type)


@dataclass
class ArpHeader:
    """ARP packet for Ethernet and IPv4."""

    SIZE: ClassVar[int] = 28

    op: int = ARPOP_REQUEST
    sea: bytes = ZERO_MAC
    sip: bytes = b"\x00" * 4
    dea: bytes = ZERO_MAC
    dip: bytes = b"\x00" * 4
    hrd: int = ARPHRD_ETHER
    pro: int = ETHERTYPE_IP
    hln: int = ETH_ALEN
    pln: int = 4

    def __post_init__(self) -> None:
        self.sea, self.dea = bytes(self.sea), bytes(self.dea)
        self.sip, self.dip = bytes(self.sip), bytes(self.dip)
        _check_len(self.sea, ETH_ALEN, "sender MAC")
        _check_len(self.dea, ETH_ALEN, "target MAC")
        _check_len(self.sip, 4, "sender IP")
        _check_len(self.dip, 4, "target IP")

    @classmethod
    def from_bytes(cls, data: bytes) -> ArpHeader:
        _need(data, cls.SIZE, "ARP header")
        hrd, pro, hln, pln, op, sea, sip, dea, dip = struct.unpack_from(
            "!HHBBH6s4s6s4s", data
        )
        return cls(op, sea, sip, dea, dip, hrd, pro, hln, pln)

    def to_bytes(self) -> bytes:
        return struct.pack(
            "!HHBBH6s4s6s4s",
            self.hrd,
            self.pro,
            self.hln,
            self.pln,
            self.op,
            self.sea,
            self.sip,
            self.dea,
            self.dip,
        )


@dataclass
class IPv4Header:
    """IPv4 header without options; addresses are 32-bit integers."""

    SIZE: ClassVar[int] = 20

    version: int = 4
    ihl: int = 5
    tos: int = 0
    length: int = 0
    ident: int = 0
    frag: int = 0
    ttl: int = TTL
    proto: int = 0
    checksum: int = 0
    src: int = 0
    dst: int = 0

    @property
    def header_length(self) -> int:
        return self.ihl << 2

    @property
    def dont_fragment(self) -> bool:
        return bool(self.frag & IP_DF)

    @property
    def more_fragments(self) -> bool:
        return bool(self.frag & IP_MF)

    @property
    def fragment_offset(self) -> int:
        """Fragment offset in bytes."""
        return (self.frag & IP_OFFMASK) << 3

    @classmethod
    def from_bytes(cls, data: bytes) -> IPv4Header:
        _need(data, cls.SIZE, "IPv4 header")
        vi, tos, length, ident, frag, ttl, proto, csum, src, dst = struct.unpack_from(
            "!BBHHHBBHII", data
        )
        return cls(vi >> 4, vi & 0xF, tos, length, ident, frag, ttl, proto, csum, src, dst)

    def to_bytes(self) -> bytes:
        return struct.pack(
            "!BBHHHBBHII",
            ((self.version & 0xF) << 4) | (self.ihl & 0xF),
            self.tos,
            self.length,
            self.ident,
            self.frag,
            self.ttl,
            self.proto,
            self.checksum,
            self.src,
            self.dst,
        )


@dataclass
class UdpHeader:
    """UDP header."""

    SIZE: ClassVar[int] = 8

    sport: int = 0
    dport: int = 0
    length: int = 0
    checksum: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> UdpHeader:
        _need(data, cls.SIZE, "UDP header")
        return cls(*struct.unpack_from("!HHHH", data))

    def to_bytes(self) -> bytes:
        return struct.pack("!HHHH", self.sport, self.dport, self.length, self.checksum)


@dataclass
class TcpHeader:
    """TCP header without options; offset is in 32-bit words."""

    SIZE: ClassVar[int] = 20

    sport: int = 0
    dport: int = 0
    seq: int = 0
    ack: int = 0
    offset: int = 5
    flags: int = 0
    window: int = 0
    checksum: int = 0
    urgent: int = 0
    reserved: int = 0

    @property
    def header_length(self) -> int:
        return self.offset << 2

    @classmethod
    def from_bytes(cls, data: bytes) -> TcpHeader:
        _need(data, cls.SIZE, "TCP header")
        sport, dport, seq, ack, off, flags, win, csum, urp = struct.unpack_from(
            "!HHIIBBHHH", data
        )
        return cls(sport, dport, seq, ack, off >> 4, flags, win, csum, urp, off & 0xF)

    def to_bytes(self) -> bytes:
        return struct.pack(
            "!HHIIBBHHH",
            self.sport,
            self.dport,
            self.seq,
            self.ack,
            ((self.offset & 0xF) << 4) | (self.reserved & 0xF),
            self.flags,
            self.window,
            self.checksum,
            self.urgent,
        )


@dataclass
class IcmpHeader:
    """ICMP echo-style header; for ICMPv6 ident/seq hold the data words."""

    SIZE: ClassVar[int] = 8

    type: int = ICMP_ECHO
    code: int = 0
    checksum: int = 0
    ident: int = 0
    seq: int = 0

    @property
    def data32(self) -> int:
        """The four bytes after the checksum as one 32-bit value."""
        return (self.ident << 16) | self.seq

    @classmethod
    def from_bytes(cls, data: bytes) -> IcmpHeader:
        _need(data, cls.SIZE, "ICMP header")
        return cls(*struct.unpack_from("!BBHHH", data))

    def to_bytes(self) -> bytes:
        return struct.pack(
            "!BBHHH", self.type, self.code, self.checksum, self.ident, self.seq
        )


@dataclass
class IPv6Header:
    """IPv6 fixed header; addresses are 16-byte strings."""

    SIZE: ClassVar[int] = 40

    version: int = 6
    traffic_class: int = 0
    flow_label: int = 0
    payload_length: int = 0
    next_header: int = 0
    hop_limit: int = TTL
    src: bytes = b"\x00" * 16
    dst: bytes = b"\x00" * 16

    def __post_init__(self) -> None:
        self.src, self.dst = bytes(self.src), bytes(self.dst)
        _check_len(self.src, 16, "source address")
        _check_len(self.dst, 16, "destination address")

    @classmethod
    def from_bytes(cls, data: bytes) -> IPv6Header:
        _need(data, cls.SIZE, "IPv6 header")
        word, plen, nxt, hlim, src, dst = struct.unpack_from("!IHBB16s16s", data)
        return cls(
            word >> 28, (word >> 20) & 0xFF, word & 0xFFFFF, plen, nxt, hlim, src, dst
        )

    def to_bytes(self) -> bytes:
        word = (
            ((self.version & 0xF) << 28)
            | ((self.traffic_class & 0xFF) << 20)
            | (self.flow_label & 0xFFFFF)
        )
        return struct.pack(
            "!IHBB16s16s",
            word,
            self.payload_length,
            self.next_header,
            self.hop_limit,
            self.src,
            self.dst,
        )


@dataclass
class IPv6FragmentHeader:
    """IPv6 fragment extension header; offset is in bytes, a multiple of 8."""

    SIZE: ClassVar[int] = 8

    next_header: int = 0
    offset: int = 0
    more: bool = False
    ident: int = 0
    reserved: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> IPv6FragmentHeader:
        _need(data, cls.SIZE, "IPv6 fragment header")
        nxt, reserved, offlg, ident = struct.unpack_from("!BBHI", data)
        return cls(nxt, offlg & IP6F_OFF_MASK, bool(offlg & IP6F_MORE_FRAG), ident, reserved)

    def to_bytes(self) -> bytes:
        offlg = (self.offset & IP6F_OFF_MASK) | (IP6F_MORE_FRAG if self.more else 0)
        return struct.pack("!BBHI", self.next_header, self.reserved, offlg, self.ident)


def ether_map_ipv6_multicast(addr: bytes) -> bytes:
    """Map an IPv6 multicast address to its Ethernet multicast address."""
    addr = bytes(addr)
    _check_len(addr, 16, "IPv6 address")
    return b"\x33\x33" + addr[12:16]


def format_mac(mac: bytes) -> str:
    """Format a MAC address as six colon-separated hex pairs."""
    mac = bytes(mac)
    _check_len(mac, ETH_ALEN, "MAC address")
    return ":".join(f"{b:02x}" for b in mac)