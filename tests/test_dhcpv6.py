import ipaddress
import struct

import pytest

from usernet.dhcpv6 import (
    DHCPv6Error,
    RequestedInfo,
    build_info_reply,
    dhcpv6_reply,
    is_dhcp_multicast,
    parse_info_request,
)

NAMESERVER = "fec0::3"
HOST = "fec0::2"


def _opt(code, body):
    return struct.pack("!HH", code, len(body)) + body


def _oro(*codes):
    return _opt(6, b"".join(struct.pack("!H", code) for code in codes))


def _options(reply):
    found = {}
    rest = reply[4:]
    while rest:
        code, length = struct.unpack("!HH", rest[:4])
        found[code] = rest[4:4 + length]
        rest = rest[4 + length:]
    return found


def test_parse_option_request_flags():
    info = parse_info_request(_oro(23, 59))
    assert info == RequestedInfo(client_id=None, want_dns=True, want_boot_url=True)


def test_parse_client_id():
    client_id = b"\x00\x01client"
    info = parse_info_request(_opt(1, client_id) + _oro(23))
    assert info.client_id == client_id
    assert info.want_dns
    assert not info.want_boot_url


def test_parse_ignores_unknown_options():
    assert parse_info_request(_opt(99, b"xyz") + _oro(7)) == RequestedInfo()


def test_parse_ignores_trailing_header_only():
    assert parse_info_request(_oro(23) + b"\x00\x05\x00\x00").want_dns


@pytest.mark.parametrize(
    "options",
    [
        _opt(5, b"\x00" * 24),
        _opt(6, b"\x00\x17\x00"),
        b"\x00\x01\x00\x20abc",
        _opt(1, b"x" * 257),
    ],
)
def test_parse_rejects(options):
    with pytest.raises(DHCPv6Error):
        parse_info_request(options)


def test_reply_header_only():
    reply = build_info_reply(0x123456, RequestedInfo(), NAMESERVER, HOST)
    assert reply == bytes([7, 0x12, 0x34, 0x56])


def test_reply_xid_is_24_bits():
    full = build_info_reply(0xAB123456, RequestedInfo(), NAMESERVER, HOST)
    assert full == build_info_reply(0x123456, RequestedInfo(), NAMESERVER, HOST)


def test_reply_with_all_options():
    info = RequestedInfo(client_id=b"abc", want_dns=True, want_boot_url=True)
    reply = build_info_reply(1, info, NAMESERVER, HOST, "pxe.efi")
    found = _options(reply)
    assert found[1] == b"abc"
    assert found[23] == ipaddress.IPv6Address(NAMESERVER).packed
    assert found[59] == b"tftp://[fec0:0000:0000:0000:0000:0000:0000:0002]/pxe.efi"
    assert list(found) == [1, 23, 59]


def test_boot_url_truncated_with_nul():
    info = RequestedInfo(want_boot_url=True)
    full = _options(build_info_reply(1, info, NAMESERVER, HOST, "boot"))[59]
    cut = _options(build_info_reply(1, info, NAMESERVER, HOST, "boot", 10))[59]
    assert len(cut) == 10
    assert cut[:9] == full[:9]
    assert cut[-1:] == b"\x00"


def test_dhcpv6_reply_round_trip():
    message = bytes([11, 0xAA, 0xBB, 0xCC]) + _opt(1, b"id") + _oro(23)
    reply = dhcpv6_reply(message, NAMESERVER, HOST)
    assert reply[:4] == bytes([7, 0xAA, 0xBB, 0xCC])
    found = _options(reply)
    assert found[1] == b"id"
    assert found[23] == ipaddress.IPv6Address(NAMESERVER).packed


def test_dhcpv6_reply_fits_mtu():
    message = bytes([11, 0, 0, 1]) + _oro(59)
    reply = dhcpv6_reply(message, NAMESERVER, HOST, "f" * 200, mtu=100)
    assert len(reply) + 48 == 100
    assert reply[-1:] == b"\x00"


@pytest.mark.parametrize(
    "message",
    [
        b"\x0b\x00\x00",
        bytes([1, 0, 0, 1]) + _oro(23),
        bytes([11, 0, 0, 1]) + _opt(5, b"\x00" * 24),
    ],
)
def test_dhcpv6_reply_ignored(message):
    assert dhcpv6_reply(message, NAMESERVER, HOST) is None


def test_is_dhcp_multicast():
    assert is_dhcp_multicast("ff02::1:2")
    assert not is_dhcp_multicast("ff02::1")
    assert not is_dhcp_multicast(HOST)