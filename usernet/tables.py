"""Address resolution caches: IPv4 ARP and IPv6 neighbour tables."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

ETH_ALEN = 6
BROADCAST_MAC = b"\xff" * ETH_ALEN
DEFAULT_TABLE_SIZE = 16

IPv4Like = Union[str, int, ipaddress.IPv4Address]
IPv6Like = Union[str, int, ipaddress.IPv6Address]

_A = TypeVar("_A")


def _mac(value: bytes) -> bytes:
    mac = bytes(value)
    if len(mac) != ETH_ALEN:
        raise ValueError(f"hardware address must be {ETH_ALEN} bytes, got {len(mac)}")
    return mac


@dataclass
class _Entry(Generic[_A]):
    ip: _A
    mac: bytes


class _Table(Generic[_A]):
    """Fixed-size table that replaces entries round-robin when full."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("table size must be positive")
        self._slots: list[_Entry[_A] | None] = [None] * size
        self._next_victim = 0

    def _find(self, ip: _A) -> _Entry[_A] | None:
        return next(
            (entry for entry in self._slots if entry is not None and entry.ip == ip),
            None,
        )

    def _store(self, ip: _A, mac: bytes) -> None:
        entry = self._find(ip)
        if entry is not None:
            entry.mac = mac
            return
        self._slots[self._next_victim] = _Entry(ip, mac)
        self._next_victim = (self._next_victim + 1) % len(self._slots)

    def __len__(self) -> int:
        return sum(entry is not None for entry in self._slots)


class ArpTable(_Table[ipaddress.IPv4Address]):
    """IPv4 to Ethernet address cache for one virtual network."""

    def __init__(
        self, network: IPv4Like, netmask: IPv4Like, size: int = DEFAULT_TABLE_SIZE
    ) -> None:
        super().__init__(size)
        net = int(ipaddress.IPv4Address(network))
        mask = int(ipaddress.IPv4Address(netmask))
        self.broadcast = ipaddress.IPv4Address((~mask & 0xFFFFFFFF) | net)

    def _is_broadcast(self, ip: ipaddress.IPv4Address) -> bool:
        return int(ip) == 0xFFFFFFFF or ip == self.broadcast

    def add(self, ip: IPv4Like, mac: bytes) -> None:
        """Record or update the hardware address of ``ip``.

        Unspecified and broadcast addresses are never recorded.
        """
        addr = ipaddress.IPv4Address(ip)
        hw = _mac(mac)
        if int(addr) == 0 or self._is_broadcast(addr):
            return
        self._store(addr, hw)

    def search(self, ip: IPv4Like) -> bytes | None:
        """Return the hardware address for ``ip``, or None if unknown."""
        addr = ipaddress.IPv4Address(ip)
        if self._is_broadcast(addr):
            return BROADCAST_MAC
        entry = self._find(addr)
        return entry.mac if entry is not None else None


class NdpTable(_Table[ipaddress.IPv6Address]):
    """IPv6 to Ethernet neighbour cache."""

    def __init__(self, size: int = DEFAULT_TABLE_SIZE) -> None:
        super().__init__(size)

    def add(self, ip: IPv6Like, mac: bytes) -> None:
        """Record or update ``ip``; multicast and unspecified are ignored."""
        addr = ipaddress.IPv6Address(ip)
        hw = _mac(mac)
        if addr.is_multicast or addr.is_unspecified:
            return
        self._store(addr, hw)

    def search(self, ip: IPv6Like) -> bytes | None:
        """Return the hardware address for ``ip``, or None if unknown.

        Multicast addresses map to 33:33 followed by their last four bytes.
        """
        addr = ipaddress.IPv6Address(ip)
        if addr.is_unspecified:
            raise ValueError("cannot resolve the unspecified address")
        if addr.is_multicast:
            return b"\x33\x33" + addr.packed[12:16]
        entry = self._find(addr)
        return entry.mac if entry is not None else None