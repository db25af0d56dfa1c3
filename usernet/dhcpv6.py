"""Stateless DHCPv6 server answering Information-Request messages."""

from __future__ import annotations

import ipaddress
import logging
import struct
from dataclasses import dataclass
from typing import Optional, Union

logger = logging.getLogger(__name__)

DHCPV6_SERVER_PORT = 547
ALL_DHCP_MULTICAST = ipaddress.IPv6Address("ff02::1:2")

MSGTYPE_REPLY = 7
MSGTYPE_INFO_REQUEST = 11

OPTION_CLIENTID = 1
OPTION_IAADDR = 5
OPTION_ORO = 6
OPTION_DNS_SERVERS = 23
OPTION_BOOTFILE_URL = 59

MAX_CLIENT_ID_LEN = 256
IP6_HEADER_LEN = 40
UDP_HEADER_LEN = 8

IPv6Like = Union[str, int, bytes, ipaddress.IPv6Address]


class DHCPv6Error(ValueError):
    """A DHCPv6 request that must be discarded."""


@dataclass
class RequestedInfo:
    """What a client supplied and asked for in an Information-Request."""

    client_id: Optional[bytes] = None
    want_dns: bool = False
    want_boot_url: bool = False


def parse_info_request(options: bytes) -> RequestedInfo:
    """Parse the options of an Information-Request message.

    Raises DHCPv6Error for malformed options, an IA address option, an
    over-long client identifier or an odd-sized option request list.
    """
    raw = bytes(options)
    info = RequestedInfo()
    pos = 0
    while len(raw) - pos > 4:
        code, length = struct.unpack_from("!HH", raw, pos)
        if length + 4 > len(raw) - pos:
            logger.warning("guest sent bad DHCPv6 packet")
            raise DHCPv6Error("option overruns the message")
        body = raw[pos + 4:pos + 4 + length]

        if code == OPTION_IAADDR:
            raise DHCPv6Error("requests carrying an IA address are discarded")
        if code == OPTION_CLIENTID:
            if length > MAX_CLIENT_ID_LEN:
                raise DHCPv6Error("client identifier is too long")
            info.client_id = body
        elif code == OPTION_ORO:
            if length & 1:
                raise DHCPv6Error("option request list has odd length")
            for (requested,) in struct.iter_unpack("!H", body):
                if requested == OPTION_DNS_SERVERS:
                    info.want_dns = True
                elif requested == OPTION_BOOTFILE_URL:
                    info.want_boot_url = True
                else:
                    logger.debug("dhcpv6: unsupported option request %d", requested)
        else:
            logger.debug("dhcpv6 info req: unsupported option %d, len=%d", code, length)

        pos += 4 + length
    return info


def _boot_url(host6: IPv6Like, bootfile: Optional[str]) -> bytes:
    packed = ipaddress.IPv6Address(host6).packed
    groups = ":".join(packed[k:k + 2].hex() for k in range(0, 16, 2))
    return f"tftp://[{groups}]/{bootfile or ''}".encode()


def build_info_reply(
    xid: int,
    info: RequestedInfo,
    nameserver6: IPv6Like,
    host6: IPv6Like,
    bootfile: Optional[str] = None,
    max_url_len: Optional[int] = None,
) -> bytes:
    """Build the Reply message answering ``info``.

    A boot URL longer than ``max_url_len`` is cut to ``max_url_len - 1``
    bytes followed by a NUL byte.
    """
    out = bytearray([MSGTYPE_REPLY]) + (xid & 0xFFFFFF).to_bytes(3, "big")

    if info.client_id is not None:
        out += struct.pack("!HH", OPTION_CLIENTID, len(info.client_id))
        out += info.client_id
    if info.want_dns:
        out += struct.pack("!HH", OPTION_DNS_SERVERS, 16)
        out += ipaddress.IPv6Address(nameserver6).packed
    if info.want_boot_url:
        url = _boot_url(host6, bootfile)
        if max_url_len is not None and len(url) >= max_url_len:
            url = url[:max_url_len - 1] + b"\x00" if max_url_len > 0 else b""
        out += struct.pack("!HH", OPTION_BOOTFILE_URL, len(url) & 0xFFFF)
        out += url
    return bytes(out)


def dhcpv6_reply(
    payload: bytes,
    nameserver6: IPv6Like,
    host6: IPv6Like,
    bootfile: Optional[str] = None,
    mtu: int = 1500,
) -> bytes | None:
    """Answer a DHCPv6 message given as UDP payload.

    Returns the Reply payload, or None when the message is ignored.
    """
    data = bytes(payload)
    if len(data) < 4:
        return None
    if data[0] != MSGTYPE_INFO_REQUEST:
        logger.debug("dhcpv6: unsupported message type 0x%x", data[0])
        return None
    xid = int.from_bytes(data[1:4], "big")
    try:
        info = parse_info_request(data[4:])
    except DHCPv6Error as exc:
        logger.debug("dhcpv6: request discarded: %s", exc)
        return None

    used = 4 + 4
    if info.client_id is not None:
        used += 4 + len(info.client_id)
    if info.want_dns:
        used += 4 + 16
    max_url_len = mtu - IP6_HEADER_LEN - UDP_HEADER_LEN - used
    return build_info_reply(xid, info, nameserver6, host6, bootfile, max_url_len)


def is_dhcp_multicast(address: IPv6Like) -> bool:
    """Return True if ``address`` is the All-DHCP-Relay-Agents-and-Servers group."""
    return ipaddress.IPv6Address(address) == ALL_DHCP_MULTICAST