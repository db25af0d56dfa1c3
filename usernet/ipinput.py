"""Validation of incoming IP packets and reassembly of IPv4 fragments."""

from __future__ import annotations

import ipaddress
import logging
import struct
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .checksum import internet_checksum

logger = logging.getLogger(__name__)

IPVERSION = 4
IPV4_HEADER_LEN = 20
IP_DF = 0x4000
IP_MF = 0x2000
IP_OFFMASK = 0x1FFF
IP_MAXPACKET = 0xFFFF
IPFRAGTTL = 60

IP6VERSION = 6
IP6_HEADER_LEN = 40

_IPV4 = struct.Struct("!BBHHHBBH4s4s")


class InvalidPacket(ValueError):
    """A packet that must be dropped."""


class TimeExceeded(InvalidPacket):
    """A packet that arrived with its TTL or hop limit already at zero."""


class PacketTooBig(InvalidPacket):
    """An IPv6 packet whose payload exceeds the link MTU."""


@dataclass(frozen=True)
class Ipv4Header:
    """The fields of an IPv4 header, in host representation."""

    version: int
    header_len: int
    tos: int
    total_length: int
    ident: int
    flags_offset: int
    ttl: int
    protocol: int
    checksum: int
    src: ipaddress.IPv4Address
    dst: ipaddress.IPv4Address
    options: bytes = b""

    @property
    def more_fragments(self) -> bool:
        return bool(self.flags_offset & IP_MF)

    @property
    def dont_fragment(self) -> bool:
        return bool(self.flags_offset & IP_DF)

    @property
    def fragment_offset(self) -> int:
        """Offset of this fragment's data in bytes."""
        return (self.flags_offset & IP_OFFMASK) << 3

    @property
    def is_fragment(self) -> bool:
        return bool(self.flags_offset & ~IP_DF & 0xFFFF)

    @classmethod
    def parse(cls, data: bytes) -> "Ipv4Header":
        """Decode the header at the start of ``data`` without validating it."""
        raw = bytes(data)
        if len(raw) < IPV4_HEADER_LEN:
            raise InvalidPacket("packet is shorter than an IPv4 header")
        (vhl, tos, total, ident, flags_offset, ttl, protocol, cksum,
         src, dst) = _IPV4.unpack_from(raw)
        header_len = (vhl & 0x0F) << 2
        options = raw[IPV4_HEADER_LEN:header_len] if header_len > IPV4_HEADER_LEN else b""
        return cls(
            version=vhl >> 4,
            header_len=header_len,
            tos=tos,
            total_length=total,
            ident=ident,
            flags_offset=flags_offset,
            ttl=ttl,
            protocol=protocol,
            checksum=cksum,
            src=ipaddress.IPv4Address(src),
            dst=ipaddress.IPv4Address(dst),
            options=options,
        )


def validate_ipv4(packet: bytes) -> bytes:
    """Check an incoming IPv4 packet and return it trimmed to its total length.

    Raises InvalidPacket for a bad version, header length, checksum or
    total length, and TimeExceeded when the TTL is zero.
    """
    raw = bytes(packet)
    if len(raw) < IPV4_HEADER_LEN:
        raise InvalidPacket("packet is shorter than an IPv4 header")
    header = Ipv4Header.parse(raw)
    if header.version != IPVERSION:
        raise InvalidPacket(f"unexpected IP version {header.version}")
    hlen = header.header_len
    if hlen < IPV4_HEADER_LEN or hlen > len(raw):
        raise InvalidPacket("bad header length")
    if internet_checksum(raw[:hlen]):
        raise InvalidPacket("bad header checksum")
    if header.total_length < hlen:
        raise InvalidPacket("total length is smaller than the header")
    if len(raw) < header.total_length:
        raise InvalidPacket("packet is shorter than its total length")
    raw = raw[:header.total_length]
    if header.ttl == 0:
        raise TimeExceeded("ttl")
    return raw


def validate_ipv6(packet: bytes, mtu: int) -> int:
    """Check an incoming IPv6 packet and return its next-header value.

    Raises InvalidPacket for a short packet or bad version, PacketTooBig
    when the payload exceeds ``mtu`` and TimeExceeded for a zero hop limit.
    """
    raw = bytes(packet)
    if len(raw) < IP6_HEADER_LEN:
        raise InvalidPacket("packet is shorter than an IPv6 header")
    if raw[0] >> 4 != IP6VERSION:
        raise InvalidPacket(f"unexpected IP version {raw[0] >> 4}")
    payload_len = struct.unpack_from("!H", raw, 4)[0]
    if payload_len > mtu:
        raise PacketTooBig(f"payload of {payload_len} bytes exceeds MTU {mtu}")
    if raw[7] == 0:
        raise TimeExceeded("hop limit reached zero")
    return raw[6]


@dataclass
class _Fragment:
    offset: int
    data: bytes
    more: bool
    header: bytes


@dataclass
class _FragmentQueue:
    ttl: int
    fragments: List[_Fragment] = field(default_factory=list)


_Key = Tuple[int, ipaddress.IPv4Address, ipaddress.IPv4Address, int]


class Reassembler:
    """Collects IPv4 fragments and rebuilds whole datagrams.

    Incomplete datagrams are discarded after ``ttl`` calls to
    :meth:`slowtimo`.
    """

    def __init__(self, ttl: int = IPFRAGTTL) -> None:
        if ttl < 1:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._queues: Dict[_Key, _FragmentQueue] = {}

    def __len__(self) -> int:
        return len(self._queues)

    def input(self, packet: bytes) -> Optional[bytes]:
        """Take a validated IPv4 packet; return a complete datagram or None.

        Packets that are not fragments are returned unchanged.
        """
        raw = bytes(packet)
        header = Ipv4Header.parse(raw)
        if not header.is_fragment:
            return raw

        hlen = header.header_len
        data = raw[hlen:header.total_length]
        offset = header.fragment_offset
        key = (header.ident, header.src, header.dst, header.protocol)

        queue = self._queues.get(key)
        if queue is None:
            queue = _FragmentQueue(ttl=self.ttl)
            self._queues[key] = queue
        frags = queue.fragments

        index = next(
            (k for k, frag in enumerate(frags) if frag.offset > offset), len(frags)
        )
        if index > 0:
            prev = frags[index - 1]
            overlap = prev.offset + len(prev.data) - offset
            if overlap > 0:
                if overlap >= len(data):
                    return None
                data = data[overlap:]
                offset += overlap

        while index < len(frags) and offset + len(data) > frags[index].offset:
            nxt = frags[index]
            overlap = offset + len(data) - nxt.offset
            if overlap < len(nxt.data):
                nxt.data = nxt.data[overlap:]
                nxt.offset += overlap
                break
            del frags[index]

        frags.insert(
            index, _Fragment(offset, data, header.more_fragments, raw[:hlen])
        )
        return self._complete(key, queue)

    def _complete(self, key: _Key, queue: _FragmentQueue) -> Optional[bytes]:
        frags = queue.fragments
        expected = 0
        for frag in frags:
            if frag.offset != expected:
                return None
            expected += len(frag.data)
        if frags[-1].more:
            return None

        del self._queues[key]
        header = bytearray(frags[0].header)
        total = len(header) + expected
        if total > IP_MAXPACKET:
            raise InvalidPacket("reassembled datagram is too large")
        flags = struct.unpack_from("!H", header, 6)[0] & IP_DF
        struct.pack_into("!HHH", header, 2, total, key[0], flags)
        struct.pack_into("!H", header, 10, 0)
        struct.pack_into("!H", header, 10, internet_checksum(bytes(header)))
        return bytes(header) + b"".join(frag.data for frag in frags)

    def slowtimo(self) -> None:
        """Age pending datagrams and drop those whose time has run out."""
        for key, queue in list(self._queues.items()):
            queue.ttl -= 1
            if queue.ttl <= 0:
                logger.debug("dropping incomplete datagram %r", key)
                del self._queues[key]