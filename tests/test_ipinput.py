import struct

import pytest

from usernet.checksum import internet_checksum
from usernet.ipinput import (
    IP_DF,
    IP_MF,
    InvalidPacket,
    Ipv4Header,
    PacketTooBig,
    Reassembler,
    TimeExceeded,
    validate_ipv4,
    validate_ipv6,
)
from usernet.ipoutput import build_ipv4_packets

SRC = bytes((10, 0, 2, 15))
DST = bytes((10, 0, 2, 2))


def make_packet(payload, *, ident=0x1234, flags_off=0, ttl=64, proto=17,
                options=b"", total=None, version=4, ihl=None):
    hlen = 20 + len(options)
    if ihl is None:
        ihl = hlen >> 2
    if total is None:
        total = hlen + len(payload)
    hdr = bytearray(struct.pack(
        "!BBHHHBBH4s4s", (version << 4) | ihl, 0, total, ident, flags_off,
        ttl, proto, 0, SRC, DST,
    )) + options
    struct.pack_into("!H", hdr, 10, internet_checksum(bytes(hdr)))
    return bytes(hdr) + bytes(payload)


def make_ipv6(payload_len, next_header=58, hop=64, version=6):
    return struct.pack("!IHBB16s16s", version << 28, payload_len, next_header,
                       hop, bytes(16), bytes(16)) + bytes(payload_len)


def test_parse_header_fields():
    pkt = make_packet(b"abcd", ident=7, flags_off=IP_MF | 3, ttl=9, proto=6,
                      options=b"\x01\x01\x01\x00")
    header = Ipv4Header.parse(pkt)
    assert header.version == 4
    assert header.header_len == 24
    assert header.total_length == len(pkt)
    assert header.ident == 7
    assert header.ttl == 9
    assert header.protocol == 6
    assert header.options == b"\x01\x01\x01\x00"
    assert header.more_fragments
    assert header.fragment_offset == 24
    assert header.src.packed == SRC
    assert header.dst.packed == DST


def test_parse_short_raises():
    with pytest.raises(InvalidPacket):
        Ipv4Header.parse(b"\x45" * 10)


def test_validate_accepts_and_trims():
    pkt = make_packet(b"hello world")
    assert validate_ipv4(pkt) == pkt
    assert validate_ipv4(pkt + b"junk") == pkt


@pytest.mark.parametrize("kwargs", [
    {"version": 6},
    {"ihl": 4},
    {"total": 10},
    {"total": 200},
])
def test_validate_rejects_bad_headers(kwargs):
    with pytest.raises(InvalidPacket):
        validate_ipv4(make_packet(b"payload!", **kwargs))


def test_validate_rejects_bad_checksum():
    pkt = bytearray(make_packet(b"payload!"))
    pkt[12] ^= 0xFF
    with pytest.raises(InvalidPacket):
        validate_ipv4(bytes(pkt))


def test_validate_rejects_short():
    with pytest.raises(InvalidPacket):
        validate_ipv4(b"\x45\x00")


def test_validate_zero_ttl():
    with pytest.raises(TimeExceeded):
        validate_ipv4(make_packet(b"x", ttl=0))
    assert issubclass(TimeExceeded, InvalidPacket)


def test_validate_ipv6_returns_next_header():
    assert validate_ipv6(make_ipv6(8, next_header=17), 1500) == 17


def test_validate_ipv6_errors():
    with pytest.raises(PacketTooBig):
        validate_ipv6(make_ipv6(200, hop=0), 100)
    with pytest.raises(TimeExceeded):
        validate_ipv6(make_ipv6(8, hop=0), 1500)
    with pytest.raises(InvalidPacket):
        validate_ipv6(make_ipv6(8, version=4), 1500)
    with pytest.raises(InvalidPacket):
        validate_ipv6(b"\x60" * 20, 1500)


def test_unfragmented_passes_through():
    reasm = Reassembler()
    pkt = make_packet(b"data", flags_off=IP_DF)
    assert reasm.input(pkt) == pkt
    assert len(reasm) == 0


def fragments_of(payload, ident=0x4321, mtu=68):
    return build_ipv4_packets(make_packet(payload), mtu, ident)


def test_reassemble_out_of_order():
    payload = bytes(range(100))
    frags = fragments_of(payload)
    assert len(frags) > 2
    reasm = Reassembler()
    results = [reasm.input(frag) for frag in reversed(frags)]
    assert all(r is None for r in results[:-1])
    whole = results[-1]
    assert whole[20:] == payload
    assert validate_ipv4(whole) == whole
    header = Ipv4Header.parse(whole)
    assert not header.is_fragment
    assert header.total_length == 20 + len(payload)
    assert len(reasm) == 0


def test_duplicate_fragment_is_harmless():
    payload = bytes(range(100, 200))
    frags = fragments_of(payload)
    reasm = Reassembler()
    assert reasm.input(frags[0]) is None
    assert reasm.input(frags[0]) is None
    result = None
    for frag in frags[1:]:
        result = reasm.input(frag)
    assert result[20:] == payload


def test_interleaved_datagrams():
    a = fragments_of(b"A" * 100, ident=1)
    b = fragments_of(b"B" * 100, ident=2)
    reasm = Reassembler()
    reasm.input(a[0])
    reasm.input(b[0])
    assert len(reasm) == 2
    done = [reasm.input(f) for f in a[1:]][-1]
    assert done[20:] == b"A" * 100
    assert len(reasm) == 1


def test_missing_fragment_keeps_waiting():
    frags = fragments_of(bytes(100))
    reasm = Reassembler()
    assert reasm.input(frags[0]) is None
    assert reasm.input(frags[-1]) is None
    assert len(reasm) == 1


def test_last_fragment_with_more_flag_is_incomplete():
    reasm = Reassembler()
    assert reasm.input(make_packet(bytes(8), flags_off=IP_MF)) is None
    assert len(reasm) == 1


def test_overlap_is_trimmed():
    first = bytes(range(16))
    second = bytes(range(50, 66))
    reasm = Reassembler()
    assert reasm.input(make_packet(first, flags_off=IP_MF)) is None
    whole = reasm.input(make_packet(second, flags_off=1))
    assert whole[20:] == first + second[8:]


def test_covered_fragment_is_dropped():
    first = bytes(range(24))
    reasm = Reassembler()
    reasm.input(make_packet(first, flags_off=IP_MF))
    assert reasm.input(make_packet(b"\xff" * 8, flags_off=IP_MF | 1)) is None
    whole = reasm.input(make_packet(b"tail", flags_off=3))
    assert whole[20:] == first + b"tail"


def test_later_fragment_trimmed_by_new_one():
    reasm = Reassembler()
    reasm.input(make_packet(b"Z" * 16, flags_off=1))
    whole = reasm.input(make_packet(b"Y" * 16, flags_off=IP_MF))
    assert whole[20:] == b"Y" * 16 + b"Z" * 8


def test_slowtimo_expires_queue():
    reasm = Reassembler(ttl=2)
    reasm.input(fragments_of(bytes(100))[0])
    reasm.slowtimo()
    assert len(reasm) == 1
    reasm.slowtimo()
    assert len(reasm) == 0


def test_bad_ttl_rejected():
    with pytest.raises(ValueError):
        Reassembler(ttl=0)