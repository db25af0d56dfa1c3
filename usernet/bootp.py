"""BOOTP/DHCP server that hands out addresses on the virtual network."""

from __future__ import annotations

import ipaddress
import logging
import struct
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from .dnssearch import encode_domain_search
from .tables import ETH_ALEN, ArpTable

logger = logging.getLogger(__name__)

BOOTP_SERVER = 67
BOOTP_CLIENT = 68

BOOTP_REQUEST = 1
BOOTP_REPLY = 2

RFC1533_COOKIE = bytes((99, 130, 83, 99))
RFC1533_PAD = 0
RFC1533_NETMASK = 1
RFC1533_GATEWAY = 3
RFC1533_DNS = 6
RFC1533_HOSTNAME = 12
RFC1533_DOMAINNAME = 15
RFC1533_END = 255

RFC2132_REQ_ADDR = 50
RFC2132_LEASE_TIME = 51
RFC2132_MSG_TYPE = 53
RFC2132_SRV_ID = 54
RFC2132_PARAM_LIST = 55
RFC2132_MESSAGE = 56
RFC2132_MAX_SIZE = 57
RFC2132_RENEWAL_TIME = 58
RFC2132_REBIND_TIME = 59
RFC2132_TFTP_SERVER_NAME = 66

DHCPDISCOVER = 1
DHCPOFFER = 2
DHCPREQUEST = 3
DHCPACK = 5
DHCPNAK = 6

LEASE_TIME = 24 * 3600
NB_BOOTP_CLIENTS = 16
DHCP_OPT_LEN = 312
BOOTP_FILE_LEN = 128
NAK_MESSAGE = b"requested address not available"

_HEADER = struct.Struct("!BBBBIHH4s4s4s4s16s64s128s")
BOOTP_HEADER_LEN = _HEADER.size
BOOTP_PACKET_LEN = BOOTP_HEADER_LEN + DHCP_OPT_LEN

_ZERO = ipaddress.IPv4Address(0)
_BROADCAST = ipaddress.IPv4Address(0xFFFFFFFF)

IPv4Like = Union[str, int, ipaddress.IPv4Address]


@dataclass
class BootpRequest:
    """A BOOTP message as carried in a UDP payload."""

    op: int
    htype: int
    hlen: int
    hops: int
    xid: int
    secs: int
    ciaddr: ipaddress.IPv4Address
    yiaddr: ipaddress.IPv4Address
    siaddr: ipaddress.IPv4Address
    giaddr: ipaddress.IPv4Address
    chaddr: bytes
    sname: bytes
    file: bytes
    vend: bytes

    @property
    def hwaddr(self) -> bytes:
        """The client's Ethernet address."""
        return self.chaddr[:ETH_ALEN]

    @classmethod
    def parse(cls, data: bytes) -> "BootpRequest":
        """Decode a BOOTP message; a short vendor area is padded with zeros."""
        raw = bytes(data)
        if len(raw) < BOOTP_HEADER_LEN:
            raise ValueError("message is shorter than a BOOTP header")
        (op, htype, hlen, hops, xid, secs, _unused, ciaddr, yiaddr, siaddr,
         giaddr, chaddr, sname, file) = _HEADER.unpack_from(raw)
        vend = raw[BOOTP_HEADER_LEN:BOOTP_PACKET_LEN].ljust(DHCP_OPT_LEN, b"\x00")
        return cls(
            op=op,
            htype=htype,
            hlen=hlen,
            hops=hops,
            xid=xid,
            secs=secs,
            ciaddr=ipaddress.IPv4Address(ciaddr),
            yiaddr=ipaddress.IPv4Address(yiaddr),
            siaddr=ipaddress.IPv4Address(siaddr),
            giaddr=ipaddress.IPv4Address(giaddr),
            chaddr=chaddr,
            sname=sname,
            file=file,
            vend=vend,
        )


def decode_dhcp_options(
    vend: bytes, ciaddr: IPv4Like = 0
) -> Tuple[int, ipaddress.IPv4Address]:
    """Return the DHCP message type and requested address in ``vend``.

    The message type is 0 for plain BOOTP.  A DHCPREQUEST without a
    requested-address option falls back to ``ciaddr``.
    """
    raw = bytes(vend)
    msg_type = 0
    req_addr = _ZERO
    if raw[:4] != RFC1533_COOKIE:
        return msg_type, req_addr

    end = len(raw)
    pos = 4
    while pos < end:
        tag = raw[pos]
        if tag == RFC1533_PAD:
            pos += 1
            continue
        if tag == RFC1533_END:
            break
        pos += 1
        if pos >= end:
            break
        length = raw[pos]
        pos += 1
        if pos + length > end:
            break
        logger.debug("dhcp: tag=%d len=%d", tag, length)
        if tag == RFC2132_MSG_TYPE and length >= 1:
            msg_type = raw[pos]
        elif tag == RFC2132_REQ_ADDR and length >= 4:
            req_addr = ipaddress.IPv4Address(raw[pos:pos + 4])
        pos += length

    client_addr = ipaddress.IPv4Address(ciaddr)
    if msg_type == DHCPREQUEST and req_addr == _ZERO and client_addr != _ZERO:
        req_addr = client_addr
    return msg_type, req_addr


@dataclass
class _Client:
    allocated: bool = False
    mac: bytes = bytes(ETH_ALEN)


class DhcpServer:
    """Leases a fixed pool of addresses to guests and answers DHCP requests."""

    def __init__(
        self,
        host_addr: IPv4Like,
        netmask: IPv4Like,
        dhcp_start: IPv4Like,
        nameserver: IPv4Like,
        arp_table: Optional[ArpTable] = None,
        restricted: bool = False,
        bootfile: Optional[str] = None,
        hostname: Optional[str] = None,
        domainname: Optional[str] = None,
        tftp_server_name: Optional[str] = None,
        dnssearch: Optional[Iterable[str]] = None,
    ) -> None:
        self.host_addr = ipaddress.IPv4Address(host_addr)
        self.netmask = ipaddress.IPv4Address(netmask)
        self.dhcp_start = ipaddress.IPv4Address(dhcp_start)
        self.nameserver = ipaddress.IPv4Address(nameserver)
        if arp_table is None:
            network = ipaddress.IPv4Address(int(self.host_addr) & int(self.netmask))
            arp_table = ArpTable(network, self.netmask)
        self.arp_table = arp_table
        self.restricted = restricted
        self.bootfile = bootfile
        self.hostname = hostname
        self.domainname = domainname
        self.tftp_server_name = tftp_server_name
        self.clients = [_Client() for _ in range(NB_BOOTP_CLIENTS)]
        self._dnssearch: Optional[bytes] = None
        names = list(dnssearch or [])
        if names:
            try:
                self._dnssearch = encode_domain_search(names)
            except ValueError as exc:
                logger.warning("domain search list ignored: %s", exc)

    def _get_new_addr(self, mac: bytes):
        for index, client in enumerate(self.clients):
            if not client.allocated or client.mac == mac:
                client.allocated = True
                return client, self.dhcp_start + index
        return None

    def _request_addr(self, addr: ipaddress.IPv4Address, mac: bytes):
        offset = int(addr) - int(self.dhcp_start)
        if 0 <= offset < NB_BOOTP_CLIENTS:
            client = self.clients[offset]
            if not client.allocated or client.mac == mac:
                client.allocated = True
                return client
        return None

    def _find_addr(self, mac: bytes):
        for index, client in enumerate(self.clients):
            if client.mac == mac:
                client.allocated = True
                return client, self.dhcp_start + index
        return None

    @staticmethod
    def _append_string(opts: bytearray, code: int, value: str, what: str) -> None:
        raw = value.encode()
        if len(raw) > 0xFF or len(opts) + len(raw) + 2 >= DHCP_OPT_LEN:
            logger.warning("DHCP packet size exceeded, omitting %s option.", what)
            return
        opts += bytes((code, len(raw))) + raw

    def reply(self, request: BootpRequest) -> bytes | None:
        """Answer a BOOTP request; return the reply payload or None.

        The reply is always sent from the server port to the limited
        broadcast address on the client port.
        """
        msg_type, req_addr = decode_dhcp_options(request.vend, request.ciaddr)
        logger.debug("bootp packet op=%d msgtype=%d", request.op, msg_type)
        if msg_type == 0:
            msg_type = DHCPREQUEST  # old BOOTP clients get a reply too
        if msg_type not in (DHCPDISCOVER, DHCPREQUEST):
            return None

        mac = request.hwaddr
        client: Optional[_Client] = None
        yiaddr = _ZERO
        if msg_type == DHCPDISCOVER:
            if req_addr != _ZERO:
                client = self._request_addr(req_addr, mac)
                if client is not None:
                    yiaddr = req_addr
            if client is None:
                found = self._get_new_addr(mac)
                if found is None:
                    logger.debug("no address left")
                    return None
                client, yiaddr = found
            client.mac = mac
        elif req_addr != _ZERO:
            client = self._request_addr(req_addr, mac)
            if client is not None:
                yiaddr = req_addr
                client.mac = mac
            else:
                yiaddr = _BROADCAST
        else:
            # A client that was never assigned is treated as if it had been.
            found = self._find_addr(mac) or self._get_new_addr(mac)
            if found is None:
                logger.debug("no address left")
                return None
            client, yiaddr = found
            client.mac = mac

        self.arp_table.add(yiaddr, mac)

        opts = bytearray(RFC1533_COOKIE)
        file_field = bytes(BOOTP_FILE_LEN)
        if client is not None:
            reply_type = DHCPOFFER if msg_type == DHCPDISCOVER else DHCPACK
            opts += bytes((RFC2132_MSG_TYPE, 1, reply_type))
            if self.bootfile:
                name = self.bootfile.encode()[:BOOTP_FILE_LEN - 1]
                file_field = name.ljust(BOOTP_FILE_LEN, b"\x00")
            opts += bytes((RFC2132_SRV_ID, 4)) + self.host_addr.packed
            opts += bytes((RFC1533_NETMASK, 4)) + self.netmask.packed
            if not self.restricted:
                opts += bytes((RFC1533_GATEWAY, 4)) + self.host_addr.packed
                opts += bytes((RFC1533_DNS, 4)) + self.nameserver.packed
            opts += bytes((RFC2132_LEASE_TIME, 4)) + struct.pack("!I", LEASE_TIME)
            if self.hostname:
                self._append_string(opts, RFC1533_HOSTNAME, self.hostname, "host name")
            if self.domainname is not None:
                self._append_string(
                    opts, RFC1533_DOMAINNAME, self.domainname, "domain name"
                )
            if self.tftp_server_name is not None:
                self._append_string(
                    opts, RFC2132_TFTP_SERVER_NAME, self.tftp_server_name,
                    "tftp-server-name",
                )
            if self._dnssearch is not None:
                if len(opts) + len(self._dnssearch) >= DHCP_OPT_LEN:
                    logger.warning(
                        "DHCP packet size exceeded, omitting domain-search option."
                    )
                else:
                    opts += self._dnssearch
        else:
            logger.debug("nak'ed addr=%s", req_addr)
            opts += bytes((RFC2132_MSG_TYPE, 1, DHCPNAK))
            opts += bytes((RFC2132_MESSAGE, len(NAK_MESSAGE))) + NAK_MESSAGE

        assert len(opts) < DHCP_OPT_LEN
        opts.append(RFC1533_END)

        header = _HEADER.pack(
            BOOTP_REPLY, 1, ETH_ALEN, 0, request.xid, 0, 0,
            bytes(4), yiaddr.packed, self.host_addr.packed, bytes(4),
            mac.ljust(16, b"\x00"), bytes(64), file_field,
        )
        return header + bytes(opts).ljust(DHCP_OPT_LEN, b"\x00")

    def handle(self, data: bytes) -> bytes | None:
        """Parse a BOOTP payload and answer it if it is a request."""
        request = BootpRequest.parse(data)
        if request.op != BOOTP_REQUEST:
            return None
        return self.reply(request)