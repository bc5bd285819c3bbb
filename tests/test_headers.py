import pytest

from vpcsim.headers import (
    ARPOP_REPLY,
    ETHERTYPE_ARP,
    ETHERTYPE_IP,
    ETHERTYPE_IPV6,
    IP_DF,
    IP_MF,
    IPPROTO_ICMPV6,
    IPPROTO_UDP,
    IPV6_VERSION,
    TH_ACK,
    TH_SYN,
    ArpHeader,
    EthernetHeader,
    IcmpHeader,
    IPv4Header,
    IPv6FragmentHeader,
    IPv6Header,
    TcpHeader,
    UdpHeader,
    ether_map_ipv6_multicast,
    format_mac,
)

MAC_A = bytes([0x00, 0x50, 0x79, 0x66, 0x68, 0x00])
MAC_B = bytes([0x00, 0x50, 0x79, 0x66, 0x68, 0x01])


def test_ethernet_round_trip_and_type_bytes():
    eh = EthernetHeader(MAC_B, MAC_A, ETHERTYPE_ARP)
    raw = eh.to_bytes()
    assert len(raw) == EthernetHeader.SIZE
    assert raw[:6] == MAC_B
    assert raw[6:12] == MAC_A
    assert int.from_bytes(raw[12:14], "big") == ETHERTYPE_ARP
    assert EthernetHeader.from_bytes(raw + b"extra") == eh


def test_ethernet_rejects_bad_mac_and_short_data():
    with pytest.raises(ValueError):
        EthernetHeader(b"\x00" * 5, MAC_A, ETHERTYPE_IP)
    with pytest.raises(ValueError):
        EthernetHeader.from_bytes(b"\x00" * 13)


def test_arp_round_trip():
    ah = ArpHeader(ARPOP_REPLY, MAC_A, bytes([10, 0, 0, 1]), MAC_B, bytes([10, 0, 0, 2]))
    raw = ah.to_bytes()
    assert len(raw) == ArpHeader.SIZE
    back = ArpHeader.from_bytes(raw)
    assert back == ah
    assert back.hln == 6 and back.pln == 4
    assert back.pro == ETHERTYPE_IP


def test_ipv4_version_byte_and_round_trip():
    ip = IPv4Header(length=84, ident=7, frag=IP_DF, proto=IPPROTO_UDP,
                    src=0x0A000001, dst=0x0A000002)
    raw = ip.to_bytes()
    assert raw[0] == 0x45
    assert len(raw) == IPv4Header.SIZE
    back = IPv4Header.from_bytes(raw)
    assert back == ip
    assert back.header_length == 20
    assert back.dont_fragment and not back.more_fragments


def test_ipv4_fragment_offset_is_in_bytes():
    ip = IPv4Header(frag=IP_MF | 3)
    assert ip.fragment_offset == 24
    assert ip.more_fragments
    with pytest.raises(ValueError):
        IPv4Header.from_bytes(b"\x45" * 19)


def test_udp_round_trip():
    uh = UdpHeader(520, 520, 32, 0xBEEF)
    raw = uh.to_bytes()
    assert raw[:2] == (520).to_bytes(2, "big")
    assert UdpHeader.from_bytes(raw) == uh


def test_tcp_round_trip_and_offset_nibble():
    th = TcpHeader(1024, 23, 0x01020304, 0x0A0B0C0D, offset=8,
                   flags=TH_SYN | TH_ACK, window=4096)
    raw = th.to_bytes()
    assert len(raw) == TcpHeader.SIZE
    assert raw[12] >> 4 == 8
    assert raw[13] == TH_SYN | TH_ACK
    back = TcpHeader.from_bytes(raw)
    assert back == th
    assert back.header_length == 32


def test_icmp_round_trip():
    ic = IcmpHeader(type=0, code=0, checksum=0x1234, ident=5, seq=9)
    back = IcmpHeader.from_bytes(ic.to_bytes())
    assert back == ic
    assert back.data32 == (5 << 16) | 9


def test_ipv6_round_trip_and_version_byte():
    src = bytes([0xFE, 0x80] + [0] * 13 + [1])
    dst = bytes([0xFF, 0x02] + [0] * 13 + [1])
    h = IPv6Header(traffic_class=0, flow_label=0x12345, payload_length=8,
                   next_header=IPPROTO_ICMPV6, hop_limit=255, src=src, dst=dst)
    raw = h.to_bytes()
    assert len(raw) == IPv6Header.SIZE
    assert raw[0] & 0xF0 == IPV6_VERSION
    back = IPv6Header.from_bytes(raw)
    assert back == h


def test_ipv6_rejects_bad_address_length():
    with pytest.raises(ValueError):
        IPv6Header(src=b"\x00" * 4)


def test_ipv6_fragment_header_round_trip():
    fh = IPv6FragmentHeader(next_header=IPPROTO_UDP, offset=1448, more=True, ident=0xCAFE)
    raw = fh.to_bytes()
    assert len(raw) == IPv6FragmentHeader.SIZE
    back = IPv6FragmentHeader.from_bytes(raw)
    assert back == fh
    assert int.from_bytes(raw[2:4], "big") & 1 == 1


def test_ipv6_fragment_offset_masked_to_eight():
    fh = IPv6FragmentHeader(offset=13)
    assert IPv6FragmentHeader.from_bytes(fh.to_bytes()).offset == 8


def test_ether_map_ipv6_multicast():
    addr = bytes([0xFF, 0x02] + [0] * 9 + [0x01, 0xFF, 0xAA, 0xBB, 0xCC])
    mac = ether_map_ipv6_multicast(addr)
    assert mac[:2] == b"\x33\x33"
    assert mac[2:] == addr[12:]


def test_format_mac():
    assert format_mac(MAC_A) == "00:50:79:66:68:00"
    assert format_mac(b"\xff" * 6) == "ff:ff:ff:ff:ff:ff"
    with pytest.raises(ValueError):
        format_mac(b"\x00")


def test_ethertype_constants_match_wire_values():
    eh = EthernetHeader(type=ETHERTYPE_IPV6)
    assert eh.to_bytes()[12:] == b"\x86\xdd"