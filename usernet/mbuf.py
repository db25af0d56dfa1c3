"""Packet buffers with head room, and a pool that recycles them."""

from __future__ import annotations

from typing import List

from .ifqueue import IF_MAXLINKHDR, IF_MTU_DEFAULT

MBUF_THRESH = 30


class Mbuf:
    """A packet buffer whose data may start some way into the storage.

    ``offset`` is the gap before the data and ``length`` the amount of
    data.  The buffer grows into external storage when it must hold more
    than it was created with.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("buffer size must not be negative")
        self._buf = bytearray(size)
        self.offset = 0
        self.length = 0
        self.external = False
        self.discard_on_free = False

    def _reset(self, size: int) -> None:
        self._buf = bytearray(size)
        self.offset = 0
        self.length = 0
        self.external = False

    @property
    def size(self) -> int:
        """Total storage size, counted from the start of the buffer."""
        return len(self._buf)

    def data(self) -> bytes:
        """Return a copy of the data currently held."""
        return bytes(self._buf[self.offset:self.offset + self.length])

    def room(self) -> int:
        """Bytes available from the start of the data to the end of storage."""
        return len(self._buf) - self.offset

    def free_room(self) -> int:
        """Bytes available after the end of the data."""
        return self.room() - self.length

    def inc(self, size: int) -> None:
        """Make the buffer at least ``size`` bytes large from the data start."""
        if self.room() > size:
            return
        self._buf.extend(bytes(self.offset + size - len(self._buf)))
        self.external = True

    def adj(self, length: int) -> None:
        """Trim ``length`` bytes from the head, or ``-length`` from the tail."""
        if abs(length) > self.length:
            raise ValueError("cannot trim more than the buffer holds")
        if length >= 0:
            self.offset += length
            self.length -= length
        else:
            self.length += length

    def _write(self, data: bytes) -> None:
        start = self.offset + self.length
        self._buf[start:start + len(data)] = data
        self.length += len(data)

    def cat(self, other: "Mbuf") -> None:
        """Append the data of ``other``, growing this buffer if needed."""
        if self.free_room() < other.length:
            self.inc(self.length + other.length)
        self._write(other.data())

    def copy_from(self, other: "Mbuf", offset: int, length: int) -> None:
        """Append ``length`` bytes of ``other`` starting ``offset`` bytes in.

        Raises ValueError when they do not fit or are not all in ``other``.
        """
        if length > self.free_room():
            raise ValueError("not enough room in the destination buffer")
        if offset < 0 or length < 0 or offset + length > other.length:
            raise ValueError("range lies outside the source data")
        self._write(other.data()[offset:offset + length])

    def append(self, data: bytes) -> None:
        """Append ``data``, growing the buffer if needed."""
        raw = bytes(data)
        if self.free_room() < len(raw):
            self.inc(self.length + len(raw))
        self._write(raw)


class MbufPool:
    """Hands out buffers sized for one packet and recycles freed ones.

    Buffers allocated beyond a threshold are discarded instead of being
    kept for reuse when they are freed.
    """

    def __init__(self, mtu: int = IF_MTU_DEFAULT) -> None:
        if mtu <= 0:
            raise ValueError("mtu must be positive")
        self.mtu = mtu
        self.allocated = 0
        self._free: List[Mbuf] = []
        self._used: List[Mbuf] = []

    @property
    def buffer_size(self) -> int:
        return IF_MAXLINKHDR + self.mtu

    @property
    def free_count(self) -> int:
        return len(self._free)

    def get(self) -> Mbuf:
        """Return an empty buffer, reusing a freed one when possible."""
        if self._free:
            mbuf = self._free.pop()
            mbuf._reset(self.buffer_size)
        else:
            mbuf = Mbuf(self.buffer_size)
            self.allocated += 1
            mbuf.discard_on_free = self.allocated > MBUF_THRESH
        self._used.append(mbuf)
        return mbuf

    def free(self, mbuf: Mbuf) -> None:
        """Return ``mbuf`` to the pool; freeing it twice has no effect."""
        if any(item is mbuf for item in self._used):
            self._used = [item for item in self._used if item is not mbuf]
        elif any(item is mbuf for item in self._free):
            return
        if mbuf.discard_on_free:
            self.allocated -= 1
            mbuf.discard_on_free = False
            return
        mbuf._reset(self.buffer_size)
        self._free.append(mbuf)

    def __len__(self) -> int:
        return len(self._used)