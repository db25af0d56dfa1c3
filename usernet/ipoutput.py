"""Final header preparation and fragmentation of outgoing IP packets."""

from __future__ import annotations

import struct
from typing import List

from .checksum import internet_checksum

IPVERSION = 4
IPV4_HEADER_LEN = 20
IP_DF = 0x4000
IP_MF = 0x2000
IP_OFFMASK = 0x1FFF

IP6VERSION = 6
IP6_HEADER_LEN = 40
IP6_HOP_LIMIT = 255


class FragmentationError(Exception):
    """A packet is too large for the link and cannot be fragmented."""


def _finish(header_and_data: bytearray, frag_off: int) -> bytes:
    struct.pack_into("!H", header_and_data, 6, frag_off)
    struct.pack_into("!H", header_and_data, 10, 0)
    cksum = internet_checksum(bytes(header_and_data[:IPV4_HEADER_LEN]))
    struct.pack_into("!H", header_and_data, 10, cksum)
    return bytes(header_and_data)


def build_ipv4_packets(packet: bytes, mtu: int, ip_id: int) -> List[bytes]:
    """Complete the IPv4 header of ``packet`` and fragment it for ``mtu``.

    ``packet`` holds a 20-byte header followed by the data; its total
    length field gives the packet size.  Every returned packet carries
    ``ip_id`` and a valid header checksum.  Raises FragmentationError when
    the packet is too large and has the don't-fragment bit set, or when
    the MTU leaves room for fewer than 8 data bytes per fragment.
    """
    raw = bytearray(packet)
    if len(raw) < IPV4_HEADER_LEN:
        raise ValueError("packet is shorter than an IPv4 header")
    total = struct.unpack_from("!H", raw, 2)[0]
    if total < IPV4_HEADER_LEN or total > len(raw):
        raise ValueError("total length field does not match the packet")
    del raw[total:]

    raw[0] = (IPVERSION << 4) | (IPV4_HEADER_LEN >> 2)
    flags = struct.unpack_from("!H", raw, 6)[0] & IP_DF
    struct.pack_into("!H", raw, 4, ip_id & 0xFFFF)

    if total <= mtu:
        return [_finish(raw, flags)]

    if flags & IP_DF:
        raise FragmentationError("packet exceeds the MTU and may not be fragmented")
    chunk = (mtu - IPV4_HEADER_LEN) & ~7
    if chunk < 8:
        raise FragmentationError("MTU too small to carry a fragment")

    header = raw[:IPV4_HEADER_LEN]
    payload = raw[IPV4_HEADER_LEN:]
    packets = []
    for start in range(0, len(payload), chunk):
        piece = payload[start:start + chunk]
        more = start + chunk < len(payload)
        frag = bytearray(header) + piece
        struct.pack_into("!H", frag, 2, len(frag))
        packets.append(_finish(frag, (start >> 3) | (IP_MF if more else 0)))
    return packets


def fill_ipv6_header(packet: bytes) -> bytes:
    """Set version, traffic class, flow label and hop limit of an IPv6 packet."""
    raw = bytearray(packet)
    if len(raw) < IP6_HEADER_LEN:
        raise ValueError("packet is shorter than an IPv6 header")
    struct.pack_into("!I", raw, 0, IP6VERSION << 28)
    raw[7] = IP6_HOP_LIMIT
    return bytes(raw)