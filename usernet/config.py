"""Configuration of a virtual user-mode network."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Optional, Tuple

from .ifqueue import (
    IF_MRU_DEFAULT,
    IF_MRU_MAX,
    IF_MRU_MIN,
    IF_MTU_DEFAULT,
    IF_MTU_MAX,
    IF_MTU_MIN,
)

CONFIG_VERSION_MIN = 1
CONFIG_VERSION_MAX = 1


class PollEvents(IntFlag):
    """Events a file descriptor may be polled for."""

    IN = 1 << 0
    OUT = 1 << 1
    PRI = 1 << 2
    ERR = 1 << 3
    HUP = 1 << 4


@dataclass
class SlirpConfig:
    """Addresses, services and limits of the virtual network.

    Addresses may be given as strings or integers; they are converted to
    ipaddress objects.  An MTU or MRU of 0 selects the default.
    """

    version: int = CONFIG_VERSION_MAX
    restricted: bool = False
    in_enabled: bool = True
    vnetwork: ipaddress.IPv4Address = ipaddress.IPv4Address("10.0.2.0")
    vnetmask: ipaddress.IPv4Address = ipaddress.IPv4Address("255.255.255.0")
    vhost: ipaddress.IPv4Address = ipaddress.IPv4Address("10.0.2.2")
    in6_enabled: bool = False
    vprefix_addr6: ipaddress.IPv6Address = ipaddress.IPv6Address("fec0::")
    vprefix_len: int = 64
    vhost6: ipaddress.IPv6Address = ipaddress.IPv6Address("fec0::2")
    vhostname: Optional[str] = None
    tftp_server_name: Optional[str] = None
    tftp_path: Optional[str] = None
    bootfile: Optional[str] = None
    vdhcp_start: ipaddress.IPv4Address = ipaddress.IPv4Address("10.0.2.15")
    vnameserver: ipaddress.IPv4Address = ipaddress.IPv4Address("10.0.2.3")
    vnameserver6: ipaddress.IPv6Address = ipaddress.IPv6Address("fec0::3")
    vdnssearch: Tuple[str, ...] = field(default_factory=tuple)
    vdomainname: Optional[str] = None
    if_mtu: int = IF_MTU_DEFAULT
    if_mru: int = IF_MRU_DEFAULT
    disable_host_loopback: bool = False
    enable_emu: bool = False

    def __post_init__(self) -> None:
        if not CONFIG_VERSION_MIN <= self.version <= CONFIG_VERSION_MAX:
            raise ValueError(f"unsupported configuration version {self.version}")

        for name in ("vnetwork", "vnetmask", "vhost", "vdhcp_start", "vnameserver"):
            setattr(self, name, ipaddress.IPv4Address(getattr(self, name)))
        for name in ("vprefix_addr6", "vhost6", "vnameserver6"):
            setattr(self, name, ipaddress.IPv6Address(getattr(self, name)))

        if not 0 <= self.vprefix_len <= 128:
            raise ValueError("IPv6 prefix length must be between 0 and 128")

        if self.if_mtu == 0:
            self.if_mtu = IF_MTU_DEFAULT
        if not IF_MTU_MIN <= self.if_mtu <= IF_MTU_MAX:
            raise ValueError(f"MTU must be between {IF_MTU_MIN} and {IF_MTU_MAX}")
        if self.if_mru == 0:
            self.if_mru = IF_MRU_DEFAULT
        if not IF_MRU_MIN <= self.if_mru <= IF_MRU_MAX:
            raise ValueError(f"MRU must be between {IF_MRU_MIN} and {IF_MRU_MAX}")

        self.vdnssearch = tuple(self.vdnssearch)