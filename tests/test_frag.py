import itertools

import pytest

from vpcsim.frag import FRAG_TIMEOUT, MAX_FRAGMENTS, Ipv4Reassembler, fragment_ipv4
from vpcsim.headers import ETHERTYPE_IP, IP_DF, IP_MF, EthernetHeader, IPv4Header
from vpcsim.ipnet import checksum

SRC_MAC = bytes.fromhex("020000000001")
DST_MAC = bytes.fromhex("020000000002")


class FakeClock:
    def __init__(self):
        self.now = 0

    def __call__(self):
        return self.now


def make_frame(payload_len, ident=7, frag=0, proto=17):
    payload = bytes(i & 0xFF for i in range(payload_len))
    hdr = IPv4Header(
        length=20 + payload_len,
        ident=ident,
        frag=frag,
        proto=proto,
        src=0x0A000001,
        dst=0x0A000002,
    )
    hdr.checksum = checksum(hdr.to_bytes())
    eth = EthernetHeader(dst=DST_MAC, src=SRC_MAC, type=ETHERTYPE_IP).to_bytes()
    return eth + hdr.to_bytes() + payload


def ip_of(frame):
    return IPv4Header.from_bytes(frame[14:])


def payload_of(frame):
    h = ip_of(frame)
    return frame[14 + h.header_length:14 + h.length]


def test_small_packet_unchanged():
    f = make_frame(100)
    assert fragment_ipv4(f, 1500) == [f]


def test_mtu_too_small_leaves_packet_alone():
    f = make_frame(100)
    assert fragment_ipv4(f, 27) == [f]


def test_fragment_sizes():
    frags = fragment_ipv4(make_frame(1000), 500)
    assert [len(payload_of(x)) for x in frags] == [480, 480, 40]


def test_fragments_cover_payload():
    original = make_frame(1000)
    frags = fragment_ipv4(original, 500)
    assert b"".join(payload_of(f) for f in frags) == payload_of(original)
    offset = 0
    for f in frags:
        h = ip_of(f)
        assert h.fragment_offset == offset
        assert h.length <= 500
        assert checksum(f[14:34]) == 0
        offset += len(payload_of(f))
    assert [ip_of(f).more_fragments for f in frags] == [True] * (len(frags) - 1) + [False]


def test_fragments_keep_ident_and_clear_df():
    frags = fragment_ipv4(make_frame(1000, ident=99, frag=IP_DF), 500)
    assert all(ip_of(f).ident == 99 for f in frags)
    assert not any(ip_of(f).dont_fragment for f in frags)


def test_short_frame_rejected():
    with pytest.raises(ValueError):
        fragment_ipv4(b"\x00" * 20, 500)


def test_truncated_frame_rejected():
    with pytest.raises(ValueError):
        fragment_ipv4(make_frame(1000)[:500], 500)


def test_reassemble_in_order():
    original = make_frame(1000)
    r = Ipv4Reassembler(FakeClock())
    results = [r.add(f) for f in fragment_ipv4(original, 500)]
    assert results[:-1] == [None, None]
    assert results[-1] == original
    assert len(r) == 0


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_reassemble_any_order(order):
    original = make_frame(1000)
    frags = fragment_ipv4(original, 500)
    r = Ipv4Reassembler(FakeClock())
    results = [r.add(frags[i]) for i in order]
    done = [x for x in results if x is not None]
    assert done == [original]


def test_pending_chain_counted():
    r = Ipv4Reassembler(FakeClock())
    frags = fragment_ipv4(make_frame(1000), 500)
    assert r.add(frags[0]) is None
    assert len(r) == 1


def test_gap_waits_for_middle():
    original = make_frame(2000)
    frags = fragment_ipv4(original, 500)
    r = Ipv4Reassembler(FakeClock())
    assert r.add(frags[0]) is None
    assert r.add(frags[-1]) is None
    results = [r.add(f) for f in frags[1:-1]]
    assert results[:-1] == [None] * (len(results) - 1)
    assert results[-1] == original


def test_two_packets_interleaved():
    a = make_frame(1000, ident=1)
    b = make_frame(1000, ident=2)
    r = Ipv4Reassembler(FakeClock())
    out = []
    for fa, fb in zip(fragment_ipv4(a, 500), fragment_ipv4(b, 500)):
        out.append(r.add(fa))
        out.append(r.add(fb))
    assert [x for x in out if x is not None] == [a, b]


def test_expired_chain_dropped():
    clock = FakeClock()
    r = Ipv4Reassembler(clock)
    frags = fragment_ipv4(make_frame(1000), 500)
    r.add(frags[0])
    clock.now = FRAG_TIMEOUT + 1
    assert r.add(frags[1]) is None
    assert r.add(frags[2]) is None
    assert len(r) == 1


def test_not_expired_at_timeout():
    clock = FakeClock()
    original = make_frame(1000)
    r = Ipv4Reassembler(clock)
    frags = fragment_ipv4(original, 500)
    r.add(frags[0])
    clock.now = FRAG_TIMEOUT
    r.add(frags[1])
    assert r.add(frags[2]) == original


def test_invalid_head_drops_chain():
    frags = fragment_ipv4(make_frame(1000), 500)
    r = Ipv4Reassembler(FakeClock())
    r.add(frags[-1])
    assert r.add(make_frame(13, frag=IP_MF)) is None
    assert len(r) == 0


def test_too_many_fragments_drops_chain():
    frags = fragment_ipv4(make_frame(8 * 20), 28)
    assert len(frags) == 20
    r = Ipv4Reassembler(FakeClock())
    assert all(r.add(f) is None for f in frags[:MAX_FRAGMENTS])
    assert len(r) == 1
    assert r.add(frags[MAX_FRAGMENTS]) is None
    assert len(r) == 0


def test_add_short_frame_rejected():
    with pytest.raises(ValueError):
        Ipv4Reassembler(FakeClock()).add(b"\x00" * 10)