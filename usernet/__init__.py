"""Building blocks of a user-mode IPv4/IPv6 network stack: checksums,
address caches, buffers, DHCP and DHCPv6 servers, IP validation,
fragmentation and reassembly, an output queue, and ICMPv6/NDP."""

__version__ = "0.1.0"