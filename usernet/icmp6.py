"""ICMPv6 messages and Neighbor Discovery for the virtual IPv6 network."""

from __future__ import annotations

import ipaddress
import logging
import struct
from typing import List, Optional, Union

from .checksum import IP6_HEADER_LEN, ip6_checksum
from .ipoutput import fill_ipv6_header
from .tables import ETH_ALEN, NdpTable

logger = logging.getLogger(__name__)

IPPROTO_ICMPV6 = 58

LINKLOCAL_ADDR = ipaddress.IPv6Address("fe80::2")
ALLNODES_MULTICAST = ipaddress.IPv6Address("ff02::1")
SOLICITED_NODE_PREFIX = ipaddress.IPv6Address("ff02::1:ff00:0")

ICMP6_MINLEN = 4
ICMP6_ERROR_MINLEN = 8
ICMP6_ECHO_MINLEN = 8
ICMP6_NDP_RS_MINLEN = 8
ICMP6_NDP_RA_MINLEN = 16
ICMP6_NDP_NS_MINLEN = 24
ICMP6_NDP_NA_MINLEN = 24
ICMP6_NDP_REDIRECT_MINLEN = 40

NDPOPT_LINKLAYER_SOURCE = 1
NDPOPT_LINKLAYER_TARGET = 2
NDPOPT_PREFIX_INFO = 3
NDPOPT_RDNSS = 25

NDPOPT_LINKLAYER_LEN = 8
NDPOPT_PREFIXINFO_LEN = 32
NDPOPT_RDNSS_LEN = 24

ICMP6_UNREACH = 1
ICMP6_UNREACH_NO_ROUTE = 0
ICMP6_UNREACH_DEST_PROHIB = 1
ICMP6_UNREACH_SCOPE = 2
ICMP6_UNREACH_ADDRESS = 3
ICMP6_UNREACH_PORT = 4
ICMP6_UNREACH_SRC_FAIL = 5
ICMP6_UNREACH_REJECT_ROUTE = 6
ICMP6_UNREACH_SRC_HDR_ERROR = 7
ICMP6_TOOBIG = 2
ICMP6_TIMXCEED = 3
ICMP6_TIMXCEED_INTRANS = 0
ICMP6_TIMXCEED_REASS = 1
ICMP6_PARAMPROB = 4
ICMP6_PARAMPROB_HDR_FIELD = 0
ICMP6_PARAMPROB_NXTHDR_TYPE = 1
ICMP6_PARAMPROB_IPV6_OPT = 2

ICMP6_ECHO_REQUEST = 128
ICMP6_ECHO_REPLY = 129
ICMP6_NDP_RS = 133
ICMP6_NDP_RA = 134
ICMP6_NDP_NS = 135
ICMP6_NDP_NA = 136
ICMP6_NDP_REDIRECT = 137

NDP_IS_ROUTER = 1
NDP_MAX_RTR_ADV_INTERVAL = 600000
NDP_MIN_RTR_ADV_INTERVAL = (
    NDP_MAX_RTR_ADV_INTERVAL // 3
    if NDP_MAX_RTR_ADV_INTERVAL >= 9
    else NDP_MAX_RTR_ADV_INTERVAL
)
NDP_ADV_MANAGED_FLAG = 0
NDP_ADV_OTHER_CONFIG_FLAG = 0
NDP_ADV_REACHABLE_TIME = 0
NDP_ADV_RETRANS_TIME = 0
NDP_ADV_CUR_HOP_LIMIT = 64
NDP_ADV_DEFAULT_LIFETIME = (3 * NDP_MAX_RTR_ADV_INTERVAL) // 1000
NDP_ADV_VALID_LIFETIME = 86400
NDP_ADV_PREF_LIFETIME = 14400
NDP_RDNSS_LIFETIME = 2 * NDP_MAX_RTR_ADV_INTERVAL

_NDP_HOP_LIMIT = 255
_CKSUM_OFFSET = IP6_HEADER_LEN + 2

IPv6Like = Union[str, int, bytes, ipaddress.IPv6Address]


def _mac(value: bytes) -> bytes:
    mac = bytes(value)
    if len(mac) != ETH_ALEN:
        raise ValueError(f"hardware address must be {ETH_ALEN} bytes, got {len(mac)}")
    return mac


def _with_checksum(packet: bytes) -> bytes:
    raw = bytearray(packet)
    struct.pack_into("!H", raw, _CKSUM_OFFSET, 0)
    struct.pack_into("!H", raw, _CKSUM_OFFSET, ip6_checksum(bytes(raw)))
    return bytes(raw)


def _assemble(
    src: ipaddress.IPv6Address, dst: ipaddress.IPv6Address, icmp: bytes
) -> bytes:
    header = struct.pack(
        "!IHBB16s16s", 0, len(icmp), IPPROTO_ICMPV6, 0, src.packed, dst.packed
    )
    return _with_checksum(fill_ipv6_header(header + icmp))


def _linklayer_option(kind: int, mac: bytes) -> bytes:
    return struct.pack("!BB6s", kind, NDPOPT_LINKLAYER_LEN // 8, _mac(mac))


def _is_solicited_node(addr: ipaddress.IPv6Address) -> bool:
    return addr.packed[:13] == SOLICITED_NODE_PREFIX.packed[:13]


def _payload_len(raw: bytes) -> int:
    if len(raw) < IP6_HEADER_LEN:
        raise ValueError("packet is shorter than an IPv6 header")
    payload_len = struct.unpack_from("!H", raw, 4)[0]
    if len(raw) < IP6_HEADER_LEN + payload_len:
        raise ValueError("packet is shorter than its payload length")
    return payload_len


def build_echo_reply(packet: bytes) -> bytes:
    """Turn an ICMPv6 echo request into the matching echo reply."""
    raw = bytes(packet)
    payload_len = _payload_len(raw)
    if payload_len < ICMP6_MINLEN:
        raise ValueError("payload is too short for an ICMPv6 message")
    reply = bytearray(raw[:IP6_HEADER_LEN + payload_len])
    reply[8:24] = raw[24:40]
    reply[24:40] = raw[8:24]
    reply[IP6_HEADER_LEN] = ICMP6_ECHO_REPLY
    return _with_checksum(fill_ipv6_header(bytes(reply)))


def build_error(packet: bytes, icmp_type: int, code: int, mtu: int) -> bytes | None:
    """Build an ICMPv6 error about ``packet``, sent back to its source.

    As much of the offending packet is quoted as fits in ``mtu``.
    Returns None when the source is multicast or unspecified; raises
    ValueError for a type that is not an error type.
    """
    raw = bytes(packet)
    if len(raw) < IP6_HEADER_LEN:
        raise ValueError("packet is shorter than an IPv6 header")
    if icmp_type in (ICMP6_UNREACH, ICMP6_TIMXCEED, ICMP6_PARAMPROB):
        body = struct.pack("!I", 0)
    elif icmp_type == ICMP6_TOOBIG:
        body = struct.pack("!I", mtu & 0xFFFFFFFF)
    else:
        raise ValueError(f"ICMPv6 type {icmp_type} is not an error type")

    source = ipaddress.IPv6Address(raw[8:24])
    if source.is_multicast or source.is_unspecified:
        return None

    data_len = max(0, min(len(raw), mtu - (IP6_HEADER_LEN + ICMP6_ERROR_MINLEN)))
    icmp = struct.pack("!BBH", icmp_type, code, 0) + body + raw[:data_len]
    return _assemble(LINKLOCAL_ADDR, source, icmp)


def build_router_advertisement(
    source_mac: bytes,
    prefix: IPv6Like,
    prefix_len: int,
    nameserver6: Optional[IPv6Like] = None,
) -> bytes:
    """Build a Router Advertisement to all nodes announcing ``prefix``.

    A recursive DNS server option is included when ``nameserver6`` is given.
    """
    if not 0 <= prefix_len <= 128:
        raise ValueError("prefix length must be between 0 and 128")
    flags = (NDP_ADV_MANAGED_FLAG << 7) | (NDP_ADV_OTHER_CONFIG_FLAG << 6)
    icmp = struct.pack(
        "!BBHBBHII",
        ICMP6_NDP_RA, 0, 0,
        NDP_ADV_CUR_HOP_LIMIT, flags, NDP_ADV_DEFAULT_LIFETIME,
        NDP_ADV_REACHABLE_TIME, NDP_ADV_RETRANS_TIME,
    )
    icmp += _linklayer_option(NDPOPT_LINKLAYER_SOURCE, source_mac)
    icmp += struct.pack(
        "!BBBBIII16s",
        NDPOPT_PREFIX_INFO, NDPOPT_PREFIXINFO_LEN // 8,
        prefix_len, 0xC0,  # on-link and autonomous flags
        NDP_ADV_VALID_LIFETIME, NDP_ADV_PREF_LIFETIME, 0,
        ipaddress.IPv6Address(prefix).packed,
    )
    if nameserver6 is not None:
        icmp += struct.pack(
            "!BBHI16s",
            NDPOPT_RDNSS, NDPOPT_RDNSS_LEN // 8, 0, NDP_RDNSS_LIFETIME,
            ipaddress.IPv6Address(nameserver6).packed,
        )
    return _assemble(LINKLOCAL_ADDR, ALLNODES_MULTICAST, icmp)


def build_neighbor_solicitation(
    host6: IPv6Like, host_mac: bytes, target: IPv6Like
) -> bytes:
    """Build a Neighbor Solicitation for ``target`` to its solicited-node group."""
    src = ipaddress.IPv6Address(host6)
    tgt = ipaddress.IPv6Address(target)
    dst = ipaddress.IPv6Address(SOLICITED_NODE_PREFIX.packed[:13] + tgt.packed[13:])
    icmp = struct.pack("!BBHI16s", ICMP6_NDP_NS, 0, 0, 0, tgt.packed)
    icmp += _linklayer_option(NDPOPT_LINKLAYER_SOURCE, host_mac)
    return _assemble(src, dst, icmp)


def build_neighbor_advertisement(
    request_source: IPv6Like, target: IPv6Like, target_mac: bytes
) -> bytes:
    """Build a Neighbor Advertisement for ``target`` answering ``request_source``.

    An unspecified requester is answered on the all-nodes group, and the
    solicited flag is set only for a unicast reply.
    """
    requester = ipaddress.IPv6Address(request_source)
    tgt = ipaddress.IPv6Address(target)
    dst = ALLNODES_MULTICAST if requester.is_unspecified else requester
    flags = (NDP_IS_ROUTER << 7) | 0x20
    if not dst.is_multicast:
        flags |= 0x40
    icmp = struct.pack("!BBHI16s", ICMP6_NDP_NA, 0, 0, flags << 24, tgt.packed)
    icmp += _linklayer_option(NDPOPT_LINKLAYER_TARGET, target_mac)
    return _assemble(tgt, dst, icmp)


class NdpResponder:
    """Answers ICMPv6 echo and Neighbor Discovery messages from the guest."""

    def __init__(
        self,
        host6: IPv6Like,
        host_mac: bytes,
        prefix: IPv6Like,
        prefix_len: int,
        nameserver6: Optional[IPv6Like] = None,
        table: Optional[NdpTable] = None,
    ) -> None:
        self.host6 = ipaddress.IPv6Address(host6)
        self.host_mac = _mac(host_mac)
        self.prefix = ipaddress.IPv6Address(prefix)
        if not 0 <= prefix_len <= 128:
            raise ValueError("prefix length must be between 0 and 128")
        self.prefix_len = prefix_len
        self.nameserver6 = (
            ipaddress.IPv6Address(nameserver6) if nameserver6 is not None else None
        )
        self.table = table if table is not None else NdpTable()

    def _is_host(self, addr: ipaddress.IPv6Address) -> bool:
        return addr in (self.host6, LINKLOCAL_ADDR)

    def router_advertisement(self) -> bytes:
        """Build the Router Advertisement this responder announces."""
        return build_router_advertisement(
            self.host_mac, self.prefix, self.prefix_len, self.nameserver6
        )

    def handle(self, packet: bytes, source_mac: bytes) -> List[bytes]:
        """Process an ICMPv6 packet received from ``source_mac``.

        Returns the packets to send in answer, possibly none.  Packets
        that are truncated or fail the checksum are dropped.
        """
        raw = bytes(packet)
        mac = _mac(source_mac)
        try:
            payload_len = _payload_len(raw)
        except ValueError as exc:
            logger.debug("icmp6: dropping packet: %s", exc)
            return []
        if payload_len < ICMP6_MINLEN or ip6_checksum(raw):
            return []

        icmp = raw[IP6_HEADER_LEN:IP6_HEADER_LEN + payload_len]
        icmp_type, code = icmp[0], icmp[1]
        hop_limit = raw[7]
        src = ipaddress.IPv6Address(raw[8:24])
        dst = ipaddress.IPv6Address(raw[24:40])
        logger.debug("icmp6_type = %d", icmp_type)

        if icmp_type == ICMP6_ECHO_REQUEST:
            if self._is_host(dst):
                return [build_echo_reply(raw)]
            logger.error("external icmpv6 not supported yet")
            return []

        if icmp_type == ICMP6_NDP_RS:
            if (hop_limit == _NDP_HOP_LIMIT and code == 0
                    and payload_len >= ICMP6_NDP_RS_MINLEN):
                self.table.add(src, mac)
                return [self.router_advertisement()]
            return []

        if icmp_type == ICMP6_NDP_RA:
            logger.warning("Warning: guest sent NDP RA, but shouldn't")
            return []

        if icmp_type == ICMP6_NDP_NS:
            if (hop_limit != _NDP_HOP_LIMIT or code != 0
                    or payload_len < ICMP6_NDP_NS_MINLEN):
                return []
            target = ipaddress.IPv6Address(icmp[8:24])
            if target.is_multicast:
                return []
            if src.is_unspecified and not _is_solicited_node(dst):
                return []
            if not self._is_host(target):
                return []
            self.table.add(src, mac)
            return [build_neighbor_advertisement(src, target, self.host_mac)]

        if icmp_type == ICMP6_NDP_NA:
            if (hop_limit != _NDP_HOP_LIMIT or code != 0
                    or payload_len < ICMP6_NDP_NA_MINLEN):
                return []
            target = ipaddress.IPv6Address(icmp[8:24])
            solicited = bool(icmp[4] & 0x40)
            if not target.is_multicast and (not dst.is_multicast or not solicited):
                self.table.add(src, mac)
            return []

        if icmp_type == ICMP6_NDP_REDIRECT:
            logger.warning("Warning: guest sent NDP REDIRECT, but shouldn't")
        return []