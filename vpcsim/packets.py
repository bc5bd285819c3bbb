"""The IPv4 side of a virtual host: building probes, answering peers, ARP."""

from __future__ import annotations

import enum
import struct
import threading
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, Deque, Dict, List, Optional, Tuple

from vpcsim.frag import Ipv4Reassembler, fragment_ipv4
from vpcsim.headers import (
    ARP_PSIZE,
    ARPOP_REPLY,
    ARPOP_REQUEST,
    BROADCAST_MAC,
    ETHERTYPE_ARP,
    ETHERTYPE_IP,
    ETHERTYPE_IPV6,
    ICMP_ECHO,
    ICMP_ECHOREPLY,
    ICMP_REDIRECT,
    ICMP_REDIRECT_NET,
    ICMP_TIMXCEED,
    ICMP_UNREACH,
    ICMP_UNREACH_NEEDFRAG,
    ICMP_UNREACH_PORT,
    IP_DF,
    IP_MF,
    IP_OFFMASK,
    IPPROTO_ICMP,
    IPPROTO_TCP,
    IPPROTO_UDP,
    MTU,
    TCPOLEN_MAXSEG,
    TCPOLEN_TIMESTAMP,
    TCPOLEN_WINDOW,
    TCPOPT_MAXSEG,
    TCPOPT_TIMESTAMP,
    TCPOPT_WINDOW,
    TH_ACK,
    TH_PUSH,
    TH_SYN,
    TTL,
    ZERO_MAC,
    ArpHeader,
    EthernetHeader,
    IcmpHeader,
    IPv4Header,
    TcpHeader,
    UdpHeader,
)
from vpcsim.ipnet import checksum, ether_is_broadcast, ether_is_zero, same_net, swap_ether_header

PAYLOAD56 = 56
ARP_TIMEOUT = 120
ARP_RETRIES = 3

_ETH = EthernetHeader.SIZE
_MAX_UNREACH_QUOTE = 44


class Verdict(enum.Enum):
    """What became of a received frame."""

    UP = "up"
    ENQ = "enqueued"
    DROP = "drop"


@dataclass
class HostConfig:
    """Addressing of a virtual host; addresses are 32-bit integers."""

    ip: int
    mac: bytes
    cidr: int = 24
    gw: int = 0
    mtu: int = MTU
    fragment: bool = False


@dataclass
class Session:
    """State of a probe session (ping, trace, TCP/UDP exchange)."""

    sip: int = 0
    dip: int = 0
    smac: bytes = ZERO_MAC
    dmac: bytes = ZERO_MAC
    proto: int = IPPROTO_ICMP
    sport: int = 0
    dport: int = 0
    sn: int = 0
    ipid: int = 0
    dsize: int = PAYLOAD56
    rdsize: int = 0
    ttl: int = TTL
    rttl: int = 0
    frag: bool = False
    mtu: int = MTU
    seq: int = 0
    ack: int = 0
    rseq: int = 0
    rack: int = 0
    winsize: int = 0
    flags: int = 0
    rflags: int = 0
    rmss: int = 0
    icmptype: int = 0
    icmpcode: int = 0
    rdip: int = 0
    timeout: int = 0
    waittime: int = 0
    data: Optional[bytes] = None


def _now16() -> int:
    return int(time.time()) & 0xFFFF


def _pseudo_checksum(src: int, dst: int, proto: int, segment: bytes) -> int:
    pseudo = struct.pack("!IIxBH", src, dst, proto, len(segment))
    return checksum(pseudo + segment)


def _ip_header(frame: bytes) -> IPv4Header:
    frame = bytes(frame)
    if len(frame) < _ETH + IPv4Header.SIZE:
        raise ValueError(f"frame too short for an IPv4 packet: {len(frame)} bytes")
    return IPv4Header.from_bytes(frame[_ETH:])


def _seal(header: IPv4Header) -> bytes:
    header.checksum = 0
    header.checksum = checksum(header.to_bytes())
    return header.to_bytes()


def _icmp_echo(session: Session, dlen: int) -> bytes:
    data = bytes((i + IcmpHeader.SIZE) & 0xFF for i in range(dlen))
    icmp = IcmpHeader(type=ICMP_ECHO, code=0, ident=_now16(), seq=session.sn & 0xFFFF)
    icmp.checksum = checksum(icmp.to_bytes() + data)
    return icmp.to_bytes() + data


def _udp_segment(session: Session, dlen: int) -> bytes:
    if session.data is not None:
        data = bytes(session.data[:dlen]).ljust(dlen, b"\x00")
    else:
        fill = bytes((i + UdpHeader.SIZE) & 0xFF for i in range(6, dlen))
        data = (bytes(session.smac) + fill)[:dlen]
    udp = UdpHeader(session.sport, session.dport, UdpHeader.SIZE + len(data), 0)
    udp.checksum = _pseudo_checksum(session.sip, session.dip, IPPROTO_UDP, udp.to_bytes() + data)
    return udp.to_bytes() + data


def _tcp_segment(session: Session, dlen: int) -> bytes:
    if session.flags != (TH_ACK | TH_PUSH):
        dlen = 0
    dlen = 4 + 2 + 2 + 8 + 1 + 3 if session.flags == TH_SYN else dlen + 2 + 2 + 8
    if session.rmss and dlen > session.rmss:
        dlen = session.rmss - _ETH - IPv4Header.SIZE - TcpHeader.SIZE

    stamp = struct.pack("!I", int(time.time()) & 0xFFFFFFFF) + b"\x00" * 4
    timestamp = bytes((TCPOPT_TIMESTAMP, TCPOLEN_TIMESTAMP)) + stamp
    if session.flags == TH_SYN:
        options = (
            bytes((TCPOPT_MAXSEG, TCPOLEN_MAXSEG, 0x05, 0xB4, 0x01, 0x01))
            + timestamp
            + bytes((0x01, TCPOPT_WINDOW, TCPOLEN_WINDOW, 1))
        )
    else:
        options = b"\x01\x01" + timestamp
    fill = bytes(0x0D if i % 2 == 0 else 0x0A for i in range(len(options), dlen))
    body = options + fill

    tcp = TcpHeader(
        sport=session.sport,
        dport=session.dport,
        seq=session.seq & 0xFFFFFFFF,
        ack=session.ack & 0xFFFFFFFF,
        offset=(TcpHeader.SIZE + len(options)) >> 2,
        flags=session.flags,
        window=session.winsize,
    )
    tcp.checksum = _pseudo_checksum(session.sip, session.dip, IPPROTO_TCP, tcp.to_bytes() + body)
    return tcp.to_bytes() + body


def build_packet(session: Session) -> List[bytes]:
    """Build the next probe frame of a session, fragmented to its MTU."""
    builders = {
        IPPROTO_ICMP: _icmp_echo,
        IPPROTO_UDP: _udp_segment,
        IPPROTO_TCP: _tcp_segment,
    }
    builder = builders.get(session.proto)
    if builder is None:
        raise ValueError(f"unsupported protocol: {session.proto}")
    body = builder(session, session.dsize)

    header = IPv4Header(
        length=IPv4Header.SIZE + len(body),
        ident=session.ipid & 0xFFFF,
        frag=0 if session.frag else IP_DF,
        ttl=session.ttl,
        proto=session.proto,
        src=session.sip,
        dst=session.dip,
    )
    session.ipid = (session.ipid + 1) & 0xFFFF
    eth = EthernetHeader(dst=session.dmac, src=session.smac, type=ETHERTYPE_IP).to_bytes()
    return fragment_ipv4(eth + _seal(header) + body, session.mtu)


def arp_request(host: HostConfig, dip: int) -> bytes:
    """An ARP request from the host asking for the owner of dip."""
    arp = ArpHeader(
        op=ARPOP_REQUEST,
        sea=host.mac,
        sip=host.ip.to_bytes(4, "big"),
        dea=BROADCAST_MAC,
        dip=dip.to_bytes(4, "big"),
    )
    eth = EthernetHeader(dst=BROADCAST_MAC, src=host.mac, type=ETHERTYPE_ARP)
    return (eth.to_bytes() + arp.to_bytes()).ljust(ARP_PSIZE, b"\x00")


def udp_reply(frame: bytes) -> bytes:
    """Echo a UDP frame back to its sender."""
    frame = bytes(frame)
    ip = _ip_header(frame)
    hlen = ip.header_length
    udp_at = _ETH + hlen
    udp = UdpHeader.from_bytes(frame[udp_at:])
    reply_ip = replace(ip, src=ip.dst, dst=ip.src, ttl=TTL)
    udp.sport, udp.dport = udp.dport, udp.sport
    rebuilt = (
        frame[:_ETH]
        + _seal(reply_ip)
        + frame[_ETH + IPv4Header.SIZE:udp_at]
        + udp.to_bytes()
        + frame[udp_at + UdpHeader.SIZE:]
    )
    return swap_ether_header(rebuilt)


def icmp_reply(frame: bytes, icmp_type: int, icmp_code: int) -> Optional[bytes]:
    """Answer a frame with an ICMP echo reply or destination-unreachable.

    Returns None for any other ICMP type.
    """
    frame = bytes(frame)
    ip = _ip_header(frame)
    hlen = ip.header_length

    if icmp_type == ICMP_ECHOREPLY:
        start, end = _ETH + hlen, _ETH + ip.length
        message = bytearray(frame[start:end])
        message[0] = ICMP_ECHOREPLY
        message[2:4] = b"\x00\x00"
        message[2:4] = checksum(bytes(message)).to_bytes(2, "big")
        reply_ip = replace(ip, src=ip.dst, dst=ip.src, ttl=TTL)
        rebuilt = (
            frame[:_ETH]
            + _seal(reply_ip)
            + frame[_ETH + IPv4Header.SIZE:start]
            + bytes(message)
            + frame[end:]
        )
        return swap_ether_header(rebuilt)

    if icmp_type == ICMP_UNREACH:
        quote_len = min(ip.length, _MAX_UNREACH_QUOTE)
        quote = frame[_ETH:_ETH + quote_len].ljust(quote_len, b"\x00")
        icmp = IcmpHeader(type=icmp_type, code=icmp_code, ident=_now16(), seq=1)
        icmp.checksum = checksum(icmp.to_bytes() + quote)
        reply_ip = replace(
            ip,
            ihl=5,
            length=IPv4Header.SIZE + IcmpHeader.SIZE + quote_len,
            ident=_now16(),
            frag=IP_DF,
            ttl=TTL,
            proto=IPPROTO_ICMP,
            src=ip.dst,
            dst=ip.src,
        )
        return swap_ether_header(frame[:_ETH] + _seal(reply_ip) + icmp.to_bytes() + quote)

    return None


def _parse_mss(options: bytes) -> Optional[int]:
    i = 0
    while i < len(options):
        kind = options[i]
        if kind == 0:
            break
        if kind == 1:
            i += 1
            continue
        if i + 1 >= len(options):
            break
        length = options[i + 1]
        if kind == TCPOPT_MAXSEG and length == TCPOLEN_MAXSEG and i + 4 <= len(options):
            return (options[i + 2] << 8) + options[i + 3]
        if length < 2:
            break
        i += length
    return None


def parse_response(frame: bytes, session: Session) -> int:
    """Match a received frame against a session and record what it says.

    Returns the protocol number the frame answers (ICMP, UDP or TCP), or 0
    if it does not belong to the session.
    """
    frame = bytes(frame)
    ip = _ip_header(frame)
    l4 = frame[_ETH + ip.header_length:]

    if ip.proto == IPPROTO_ICMP:
        icmp = IcmpHeader.from_bytes(l4)
        if icmp.type == ICMP_REDIRECT and icmp.code == ICMP_REDIRECT_NET:
            session.icmptype, session.icmpcode = icmp.type, icmp.code
            session.rdip = int.from_bytes(l4[4:8], "big")
            return IPPROTO_ICMP
        if icmp.type in (ICMP_UNREACH, ICMP_TIMXCEED):
            session.icmptype, session.icmpcode = icmp.type, icmp.code
            session.rttl = ip.ttl
            session.rdip = ip.src
            return IPPROTO_ICMP

    if ip.src != session.dip:
        return 0
    session.rdsize = ip.length

    if ip.proto == IPPROTO_ICMP and session.proto == IPPROTO_ICMP:
        icmp = IcmpHeader.from_bytes(l4)
        session.icmptype, session.icmpcode = icmp.type, icmp.code
        session.rttl = ip.ttl
        session.rdip = ip.src
        return IPPROTO_ICMP if icmp.seq == session.sn else 0

    if ip.proto == IPPROTO_UDP and session.proto == IPPROTO_UDP:
        data = l4[UdpHeader.SIZE:UdpHeader.SIZE + 6]
        if data == frame[0:6]:
            session.rttl = ip.ttl
            return IPPROTO_UDP
        return 0

    if ip.proto == IPPROTO_TCP and session.proto == IPPROTO_TCP:
        tcp = TcpHeader.from_bytes(l4)
        session.rseq, session.rack = tcp.seq, tcp.ack
        session.rflags = tcp.flags
        session.rttl = ip.ttl
        session.data = None
        if session.flags == TH_SYN and session.rflags == (TH_SYN | TH_ACK):
            mss = _parse_mss(l4[TcpHeader.SIZE:tcp.header_length])
            if mss is not None:
                session.rmss = mss
        else:
            end = ip.length - ip.header_length
            session.data = l4[tcp.header_length:end]
        return IPPROTO_TCP

    return 0


class Ipv4Stack:
    """IPv4 and ARP processing for one virtual host.

    Frames to put on the wire collect in :attr:`outgoing`; replies generated
    in the background (echo and UDP answers) collect in :attr:`background`.
    ``clock`` returns seconds and ages ARP entries and fragment chains.
    :attr:`ipv6_handler` takes IPv6 frames and returns ``(Verdict, frame)``;
    :attr:`tcp_handler` takes TCP frames for this host and returns a Verdict.
    Without them IPv6 frames are dropped and TCP frames are passed up.
    """

    def __init__(self, host: HostConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self.host = host
        self.clock = clock
        self.outgoing: Deque[bytes] = deque()
        self.background: Deque[bytes] = deque()
        self.arp_wait = 1.0
        self.ipv6_handler: Optional[Callable[[bytes], Tuple[Verdict, bytes]]] = None
        self.ipv6_sender: Optional[Callable[[bytes], bool]] = None
        self.tcp_handler: Optional[Callable[[bytes], Verdict]] = None
        self._reassembler = Ipv4Reassembler(clock)
        self._arp: Dict[int, Tuple[bytes, float]] = {}
        self._cond = threading.Condition()

    def _fresh(self, ip: int) -> Optional[bytes]:
        entry = self._arp.get(ip)
        if entry is None:
            return None
        mac, stamp = entry
        if self.clock() - stamp > ARP_TIMEOUT or ether_is_zero(mac):
            return None
        return mac

    def lookup(self, ip: int) -> Optional[bytes]:
        """The MAC address cached for ip, if it is still fresh."""
        with self._cond:
            return self._fresh(ip)

    def _save(self, ip: int, mac: bytes) -> None:
        if not same_net(ip, self.host.ip, self.host.cidr):
            return
        with self._cond:
            now = self.clock()
            entry = self._arp.get(ip)
            if entry is not None and now - entry[1] <= ARP_TIMEOUT:
                self._arp[ip] = (entry[0], now)
            else:
                self._arp[ip] = (bytes(mac), now)
            self._cond.notify_all()

    def resolve(self, ip: int) -> Optional[bytes]:
        """Find the MAC address of ip, sending ARP requests if needed."""
        mac = self.lookup(ip)
        if mac is not None:
            return mac
        for _ in range(ARP_RETRIES):
            self.outgoing.append(arp_request(self.host, ip))
            deadline = time.monotonic() + self.arp_wait
            with self._cond:
                while True:
                    mac = self._fresh(ip)
                    if mac is not None:
                        return mac
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
        return None

    def _fix_dmac(self, frame: bytes) -> Optional[bytes]:
        ip = _ip_header(frame)
        if same_net(ip.dst, self.host.ip, self.host.cidr):
            return frame
        if self.host.gw == 0:
            return None
        mac = self.resolve(self.host.gw)
        if mac is None:
            return None
        return mac + frame[6:]

    def _enqueue_out(self, frame: bytes) -> None:
        frames = fragment_ipv4(frame, self.host.mtu) if self.host.fragment else [frame]
        self.outgoing.extend(frames)

    def send(self, frame: bytes) -> bool:
        """Queue an outgoing frame; return False if it was dropped."""
        frame = bytes(frame)
        etype = EthernetHeader.from_bytes(frame).type
        if etype == ETHERTYPE_IPV6:
            return self.ipv6_sender(frame) if self.ipv6_sender else False
        if etype != ETHERTYPE_IP:
            return False
        fixed = self._fix_dmac(frame)
        if fixed is None:
            return False
        self._enqueue_out(fixed)
        return True

    def receive(self, frame: bytes) -> Tuple[Verdict, bytes]:
        """Process a received frame.

        Returns the verdict and the frame to pass up, which is the
        reassembled packet when the input completed a fragmented one.
        """
        frame = bytes(frame)
        eth = EthernetHeader.from_bytes(frame)

        if eth.type == ETHERTYPE_IPV6:
            if self.ipv6_handler is None:
                return Verdict.DROP, frame
            return self.ipv6_handler(frame)
        if eth.type not in (ETHERTYPE_IP, ETHERTYPE_ARP):
            return Verdict.DROP, frame
        if ether_is_broadcast(eth.src):
            return Verdict.DROP, frame

        to_me = eth.dst == self.host.mac or eth.dst == BROADCAST_MAC
        if to_me and eth.type == ETHERTYPE_IP:
            return self._receive_ip(frame)
        if eth.type == ETHERTYPE_ARP:
            return self._receive_arp(frame, eth)
        if eth.dst != self.host.mac:
            return Verdict.DROP, frame
        return Verdict.UP, frame

    def _receive_arp(self, frame: bytes, eth: EthernetHeader) -> Tuple[Verdict, bytes]:
        arp = ArpHeader.from_bytes(frame[_ETH:])
        sip = int.from_bytes(arp.sip, "big")
        dip = int.from_bytes(arp.dip, "big")
        if arp.op == ARPOP_REQUEST and dip == self.host.ip:
            self._save(sip, arp.sea)
            reply = replace(
                arp,
                op=ARPOP_REPLY,
                dea=arp.sea,
                sea=self.host.mac,
                dip=arp.sip,
                sip=self.host.ip.to_bytes(4, "big"),
            )
            head = EthernetHeader(dst=eth.src, src=self.host.mac, type=ETHERTYPE_ARP)
            out = head.to_bytes() + reply.to_bytes() + frame[_ETH + ArpHeader.SIZE:]
            self.outgoing.append(out)
            return Verdict.ENQ, out
        if arp.op == ARPOP_REPLY and same_net(dip, self.host.ip, self.host.cidr):
            self._save(sip, arp.sea)
        return Verdict.DROP, frame

    def _receive_ip(self, frame: bytes) -> Tuple[Verdict, bytes]:
        ip = _ip_header(frame)
        if ip.length > self.host.mtu:
            reply = icmp_reply(frame, ICMP_UNREACH, ICMP_UNREACH_NEEDFRAG)
            if reply is not None:
                fixed = self._fix_dmac(reply)
                self._enqueue_out(fixed if fixed is not None else reply)
            return Verdict.ENQ, frame

        if ip.frag & (IP_MF | IP_OFFMASK):
            whole = self._reassembler.add(frame)
            if whole is None:
                return Verdict.ENQ, frame
            frame = whole
            ip = _ip_header(frame)

        l4 = frame[_ETH + ip.header_length:]
        if ip.proto == IPPROTO_ICMP:
            if ip.dst != self.host.ip:
                return Verdict.DROP, frame
            if IcmpHeader.from_bytes(l4).type != ICMP_ECHO:
                return Verdict.UP, frame
            reply = icmp_reply(frame, ICMP_ECHOREPLY, 0)
            if reply is not None:
                self.background.append(reply)
            return Verdict.ENQ, frame

        if ip.proto == IPPROTO_UDP:
            if (ip.dst >> 28) == 0xE:
                return Verdict.DROP, frame
            udp = UdpHeader.from_bytes(l4)
            if udp.sport == 67 and udp.dport == 68:
                return Verdict.UP, frame
            if ip.dst != self.host.ip:
                return Verdict.DROP, frame
            if udp.sport == 53:
                return Verdict.UP, frame
            if l4[UdpHeader.SIZE:UdpHeader.SIZE + 6] == frame[0:6]:
                return Verdict.UP, frame
            if ip.ttl == 1:
                reply = icmp_reply(frame, ICMP_UNREACH, ICMP_UNREACH_PORT)
            else:
                reply = udp_reply(frame)
            if reply is not None:
                self.background.append(reply)
            return Verdict.DROP, frame

        if ip.proto == IPPROTO_TCP:
            if ip.dst != self.host.ip:
                return Verdict.DROP, frame
            if self.tcp_handler is None:
                return Verdict.UP, frame
            return self.tcp_handler(frame), frame

        return Verdict.UP, frame