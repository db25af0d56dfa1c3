"""Circular byte buffer used to hold socket data."""

from __future__ import annotations


class SocketBuffer:
    """Fixed-capacity ring buffer with separate read and write positions."""

    def __init__(self, size: int = 0) -> None:
        self._data = bytearray()
        self._rptr = 0
        self._wptr = 0
        self._cc = 0
        self._allocate(size)

    def _allocate(self, size: int) -> None:
        if size < 0:
            raise ValueError("buffer size must not be negative")
        self._data = bytearray(size)
        self._rptr = self._wptr = 0
        self._cc = 0

    @property
    def capacity(self) -> int:
        return len(self._data)

    def __len__(self) -> int:
        return self._cc

    def space(self) -> int:
        """Return how many more bytes fit in the buffer."""
        return len(self._data) - self._cc

    def reserve(self, size: int) -> None:
        """Resize the buffer to ``size`` bytes, discarding its contents.

        Nothing changes when the size is already ``size``.
        """
        if size != len(self._data):
            self._allocate(size)

    def drop(self, num: int) -> bool:
        """Discard up to ``num`` bytes from the front.

        Returns True when the fill level has just fallen below half the
        capacity.
        """
        if num < 0:
            raise ValueError("cannot drop a negative amount")
        limit = len(self._data) // 2
        num = min(num, self._cc)
        self._cc -= num
        self._rptr += num
        if self._rptr >= len(self._data):
            self._rptr -= len(self._data)
        return self._cc < limit <= self._cc + num

    def append(self, data: bytes) -> int:
        """Copy as much of ``data`` as fits; return the number of bytes stored."""
        count = min(len(data), self.space())
        if count == 0:
            return 0
        size = len(self._data)
        first = min(count, size - self._wptr)
        view = memoryview(bytes(data))
        self._data[self._wptr:self._wptr + first] = view[:first]
        self._data[:count - first] = view[first:count]
        self._cc += count
        self._wptr += count
        if self._wptr >= size:
            self._wptr -= size
        return count

    def copy(self, offset: int, length: int) -> bytes:
        """Return up to ``length`` stored bytes starting ``offset`` bytes in.

        The data stays in the buffer; use :meth:`drop` to consume it.
        """
        if offset < 0 or length < 0:
            raise ValueError("offset and length must not be negative")
        count = min(length, self._cc - offset)
        if count <= 0:
            return b""
        size = len(self._data)
        start = (self._rptr + offset) % size
        first = min(count, size - start)
        return bytes(self._data[start:start + first] + self._data[:count - first])