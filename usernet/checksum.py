"""Internet (ones-complement) checksums for IPv4 and IPv6 packets."""

from __future__ import annotations

import struct

IP6_HEADER_LEN = 40


def _fold(total: int) -> int:
    while total > 0xFFFF:
        total = (total & 0xFFFF) + (total >> 16)
    return total


def internet_checksum(data: bytes) -> int:
    """Return the 16-bit ones-complement checksum of ``data``.

    The result is in network order: write it big-endian into the packet.
    An odd trailing byte is padded with a zero byte.
    """
    raw = bytes(data)
    if len(raw) % 2:
        raw += b"\x00"
    words = struct.unpack(f"!{len(raw) // 2}H", raw)
    return ~_fold(sum(words)) & 0xFFFF


def ip6_checksum(packet: bytes) -> int:
    """Return the upper-layer checksum of an IPv6 packet.

    The sum covers the IPv6 pseudo-header (source, destination, payload
    length and next header) followed by the payload.  A packet whose
    checksum field is already correct yields zero.
    """
    raw = bytes(packet)
    if len(raw) < IP6_HEADER_LEN:
        raise ValueError("packet is shorter than an IPv6 header")
    payload_len = struct.unpack_from("!H", raw, 4)[0]
    next_header = raw[6]
    src = raw[8:24]
    dst = raw[24:40]
    pseudo = src + dst + struct.pack("!I3xB", payload_len, next_header)
    payload = raw[IP6_HEADER_LEN:IP6_HEADER_LEN + payload_len]
    return internet_checksum(pseudo + payload)