# usernet

Pure-Python building blocks of a user-mode network stack, of the kind that
gives a virtual machine a private IPv4/IPv6 network. Every piece works on
plain `bytes` and `ipaddress` objects and has no dependencies outside the
standard library.

## Modules

- `usernet.checksum`
  - `internet_checksum(data)` returns the 16-bit ones-complement checksum.
    An odd trailing byte is padded with zero.
  - `ip6_checksum(packet)` returns the upper-layer checksum of an IPv6
    packet over its pseudo-header and payload. It is zero when the
    checksum field is already correct.
- `usernet.tables`
  - `ArpTable(network, netmask, size=16)` and `NdpTable(size=16)` are
    fixed-size caches that overwrite entries round-robin once full.
  - `add(ip, mac)` records or updates an entry. Broadcast, unspecified and
    multicast addresses are not stored.
  - `search(ip)` returns the 6-byte MAC address or `None`. Broadcast IPv4
    addresses give `ff:ff:ff:ff:ff:ff`. IPv6 multicast addresses give
    `33:33` followed by the last four address bytes.
- `usernet.sbuf`
  - `SocketBuffer(size)` is a ring buffer with `append`, `copy`, `drop`,
    `reserve`, `space()` and `len()`. `drop` returns `True` when the fill
    level has just fallen below half the capacity.
- `usernet.mbuf`
  - `Mbuf` is a packet buffer with head room, offering `adj`, `inc`,
    `cat`, `copy_from` and `append`.
  - `MbufPool(mtu)` hands out buffers through `get()` and recycles them
    through `free()`.
- `usernet.dnssearch`
  - `encode_domain_search(names)` builds the DHCP domain-search option
    (code 119) with suffix compression. The result is split into 255-byte
    blocks.
- `usernet.bootp`
  - `BootpRequest.parse(data)` decodes a BOOTP message.
  - `decode_dhcp_options(vend, ciaddr)` returns the message type and the
    requested address.
  - `DhcpServer` leases a pool of 16 addresses starting at `dhcp_start` and
    answers DISCOVER and REQUEST messages with OFFER, ACK or NAK.
- `usernet.dhcpv6`
  - `parse_info_request`, `build_info_reply` and `dhcpv6_reply` answer
    stateless Information-Request messages. The reply can carry the
    client id, a DNS server and a `tftp://` boot URL.
  - `DHCPv6Error` is raised for requests that must be discarded.
  - `is_dhcp_multicast(address)` checks for `ff02::1:2`.
- `usernet.ifqueue`
  - `OutputQueue(encap, clock=None)` schedules `QueuedPacket`s per
    `Session`. Interactive sessions (low-delay TOS) go first. Bulk sessions
    take turns, and a busy interactive session is moved to the batch lane.
- `usernet.ipinput`
  - `validate_ipv4(packet)` and `validate_ipv6(packet, mtu)` raise
    `InvalidPacket`, `TimeExceeded` or `PacketTooBig`.
  - `Ipv4Header.parse(data)` decodes a header.
  - `Reassembler` rebuilds fragmented IPv4 datagrams and ages them out via
    `slowtimo()`.
- `usernet.ipoutput`
  - `build_ipv4_packets(packet, mtu, ip_id)` fills in the header and
    fragments the packet when needed. It raises `FragmentationError` when
    that is not possible.
  - `fill_ipv6_header(packet)` sets the version, clears the traffic class
    and flow label, and sets the hop limit to 255.
- `usernet.icmp6`
  - `build_echo_reply`, `build_error`, `build_router_advertisement`,
    `build_neighbor_solicitation` and `build_neighbor_advertisement` build
    complete checksummed IPv6 packets.
  - `NdpResponder.handle(packet, source_mac)` answers echo requests, router
    solicitations and neighbor solicitations, and learns neighbours into an
    `NdpTable`.
- `usernet.config`
  - `SlirpConfig` is a dataclass of network settings: addresses, MTU/MRU,
    boot file, DNS search list and so on. It applies defaults and validates
    them.
  - `PollEvents` is an `IntFlag` of poll event bits.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Examples

Checksums:

```python
from usernet.checksum import internet_checksum

assert internet_checksum(b"\x00\x01\xf2\x03\xf4\xf5\xf6\xf7") == 0x220D
```

Answering a DHCP DISCOVER:

```python
import struct
from usernet.bootp import DhcpServer, RFC1533_COOKIE

server = DhcpServer(
    host_addr="10.0.2.2",
    netmask="255.255.255.0",
    dhcp_start="10.0.2.15",
    nameserver="10.0.2.3",
)

mac = bytes.fromhex("020000000001")  # made-up, locally administered
header = struct.pack(
    "!BBBBIHH4s4s4s4s16s64s128s",
    1, 1, 6, 0, 0x1234, 0, 0,
    bytes(4), bytes(4), bytes(4), bytes(4),
    mac.ljust(16, b"\x00"), bytes(64), bytes(128),
)
options = RFC1533_COOKIE + bytes((53, 1, 1, 255))  # DHCPDISCOVER
reply = server.handle(header + options)
# reply is the OFFER's UDP payload; its yiaddr (bytes 16..20) is 10.0.2.15
```

The reply is returned as bytes. Sending it, from port 67 to the
broadcast address on port 68, is left to the caller. The server also
records the lease in its `arp_table`.

## What this package does not do

`usernet` builds and checks packets and keeps the state around them. It
does not move packets anywhere. In particular:

- It opens no sockets and reads no Ethernet frames.
- It has no TCP or UDP implementation and no forwarding to the host.
- It has no TFTP server and no event loop or timers. Calling
  `Reassembler.slowtimo()` or sending router advertisements periodically
  is up to the caller.
- It provides no command-line program.

The caller wires these pieces to a real packet source and sink.