import ipaddress
import struct

import pytest

from vpcsim.headers import ETHERTYPE_ARP, EthernetHeader, IPv6Header
from vpcsim.inet6 import ntop6
from vpcsim.ipnet import (
    checksum,
    checksum6,
    checksum_fixup,
    cidr_from_mask,
    encap_ether_header,
    ether_is_broadcast,
    ether_is_zero,
    icmp_description,
    ip6_to_str,
    mask_from_cidr,
    same_net,
    same_net6,
    swap_ether_header,
    swap_ip6_addresses,
)

HEADER = bytes.fromhex("450000730000400040110000c0a80001c0a800c7")
MAC_A = bytes.fromhex("020000000001")
MAC_B = bytes.fromhex("020000000002")


def _ip(text):
    return int(ipaddress.IPv4Address(text))


def _ip6(text):
    return ipaddress.IPv6Address(text).packed


def test_checksum_worked_example():
    assert checksum(HEADER) == 0xB861


def test_checksum_verifies_to_zero():
    csum = checksum(HEADER)
    filled = HEADER[:10] + struct.pack("!H", csum) + HEADER[12:]
    assert checksum(filled) == 0


def test_checksum_odd_length_pads_with_zero():
    assert checksum(b"\x12\x34\x56") == checksum(b"\x12\x34\x56\x00")


def test_checksum_fixup_matches_recomputation():
    csum = checksum(HEADER)
    changed = HEADER[:8] + b"\x3f\x11" + HEADER[10:]
    assert checksum_fixup(csum, 0x4011, 0x3F11) == checksum(changed)


def test_checksum_fixup_negative_intermediate():
    data = b"\x00\x10" + b"\x00\x00"
    csum = checksum(data)
    changed = b"\xff\x00" + b"\x00\x00"
    assert checksum_fixup(csum, 0x0010, 0xFF00) == checksum(changed)


def test_checksum_fixup_udp_zero_means_none():
    assert checksum_fixup(0, 1, 2, udp=True) == 0


def test_checksum_fixup_udp_zero_result_is_all_ones():
    assert checksum_fixup(5, 0, 5, udp=True) == 0xFFFF
    assert checksum_fixup(5, 0, 5, udp=False) == 0


def test_checksum6_verifies_to_zero():
    src, dst = _ip6("fe80::1"), _ip6("fe80::2")
    payload = bytes([128, 0, 0, 0, 0, 1, 0, 7]) + b"abcdefg"
    csum = checksum6(src, dst, 58, payload)
    filled = payload[:2] + struct.pack("!H", csum) + payload[4:]
    assert checksum6(src, dst, 58, filled) == 0


def test_checksum6_rejects_bad_address():
    with pytest.raises(ValueError):
        checksum6(b"\x00" * 4, bytes(16), 58, b"")


def test_mask_from_cidr_value():
    assert mask_from_cidr(24) == 0xFFFFFF00


@pytest.mark.parametrize("cidr", range(33))
def test_cidr_mask_round_trip(cidr):
    assert cidr_from_mask(mask_from_cidr(cidr)) == cidr
    assert mask_from_cidr(cidr) == int(ipaddress.IPv4Network(f"0.0.0.0/{cidr}").netmask)


def test_cidr_from_invalid_mask_is_zero():
    assert cidr_from_mask(0x12345678) == 0


@pytest.mark.parametrize("cidr", [-1, 33])
def test_mask_from_cidr_out_of_range(cidr):
    with pytest.raises(ValueError):
        mask_from_cidr(cidr)


def test_same_net():
    a, b = _ip("10.1.1.1"), _ip("10.1.1.200")
    assert same_net(a, b, 24) is True
    assert same_net(a, b, 25) is False
    assert same_net(a, _ip("192.168.0.1"), 0) is True


def test_same_net6():
    a = _ip6("2001:db8::1")
    b = _ip6("2001:db8::0")
    assert same_net6(a, b, 127) is True
    assert same_net6(a, b, 128) is False
    assert same_net6(a, _ip6("2001:db8:1::1"), 32) is True
    assert same_net6(a, _ip6("2001:db8:8000::1"), 33) is False
    assert same_net6(a, _ip6("ff02::1"), 0) is True


def test_swap_ether_header():
    frame = EthernetHeader(MAC_A, MAC_B, 0x0800).to_bytes() + b"payload"
    swapped = swap_ether_header(frame)
    header = EthernetHeader.from_bytes(swapped)
    assert (header.dst, header.src) == (MAC_B, MAC_A)
    assert swapped[14:] == b"payload"
    assert swap_ether_header(swapped) == frame


def test_swap_ether_header_short_frame():
    with pytest.raises(ValueError):
        swap_ether_header(b"\x00" * 10)


def test_encap_ether_header():
    frame = bytes(14) + b"data"
    out = encap_ether_header(frame, MAC_A, MAC_B, ETHERTYPE_ARP)
    header = EthernetHeader.from_bytes(out)
    assert (header.src, header.dst, header.type) == (MAC_A, MAC_B, ETHERTYPE_ARP)
    assert out[14:] == b"data"


def test_swap_ip6_addresses():
    src, dst = _ip6("2001:db8::1"), _ip6("2001:db8::2")
    ip6 = IPv6Header(payload_length=3, next_header=17, src=src, dst=dst).to_bytes()
    frame = bytes(14) + ip6 + b"xyz"
    swapped = swap_ip6_addresses(frame)
    parsed = IPv6Header.from_bytes(swapped[14:])
    assert (parsed.src, parsed.dst) == (dst, src)
    assert parsed.payload_length == 3
    assert swapped[-3:] == b"xyz"


def test_ether_predicates():
    assert ether_is_zero(bytes(6)) is True
    assert ether_is_zero(MAC_A) is False
    assert ether_is_broadcast(b"\xff" * 6) is True
    assert ether_is_broadcast(MAC_A) is False


@pytest.mark.parametrize(
    "args, expected",
    [
        ((4, 0, 0), "Echo reply"),
        ((4, 8, 0), "Echo"),
        ((4, 3, 3), "Destination port unreachable"),
        ((4, 3, 13), "Communication administratively prohibited"),
        ((4, 3, 14), ""),
        ((4, 5, 1), "Redirect Datagram for the Host"),
        ((4, 11, 0), "TTL expired in transit"),
        ((4, 11, 2), ""),
        ((6, 1, 4), "Port unreachable"),
        ((6, 2, 0), "ICMPv6 packet too big"),
        ((6, 3, 1), "Fragment reassembly time exceeded"),
        ((6, 128, 0), "ICMPv6 echo request"),
        ((6, 129, 0), "ICMPv6 echo reply"),
        ((6, 135, 0), "ICMPv6 neighbor solicitation"),
        ((6, 137, 0), "ICMPv6 redirect"),
        ((5, 0, 0), ""),
    ],
)
def test_icmp_description(args, expected):
    assert icmp_description(*args) == expected


def test_ip6_to_str_matches_ntop():
    addr = _ip6("fe80::1234:5678")
    assert ip6_to_str(addr) == ntop6(addr)
    assert ipaddress.IPv6Address(ip6_to_str(addr)).packed == addr