"""Fair output queue for packets travelling towards the guest.

Packets are grouped per session.  Interactive sessions go on a fast
queue that is always served first; bulk sessions share a batch queue
that is served one packet per session in turn.  An interactive session
that keeps the link busy is moved to the batch queue.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Union

ETH_HLEN = 14

IF_MTU_DEFAULT = 1500
IF_MTU_MIN = 68
IF_MTU_MAX = 65521
IF_MRU_DEFAULT = 1500
IF_MRU_MIN = 68
IF_MRU_MAX = 65521
IF_MAXLINKHDR = 2 + ETH_HLEN

IPTOS_LOWDELAY = 0x10

DOWNGRADE_QUEUED = 6
DOWNGRADE_SENT = 3


@dataclass(eq=False)
class Session:
    """Per-connection bookkeeping for the output queue."""

    iptos: int = 0
    queued: int = 0
    nqueued: int = 0

    @property
    def interactive(self) -> bool:
        return bool(self.iptos & IPTOS_LOWDELAY)


@dataclass(eq=False)
class QueuedPacket:
    """A frame waiting to be sent; ``expiration_date`` is in clock units."""

    data: bytes
    session: Optional[Session] = None
    expiration_date: Optional[int] = None

    def expired(self, now: int) -> bool:
        return self.expiration_date is not None and self.expiration_date < now


_Chain = Deque[QueuedPacket]


class OutputQueue:
    """Schedules packets onto the link through the ``encap`` callable.

    ``encap(packet)`` returns True when the packet went out and False when
    it must wait (for example on address resolution).  Expired packets are
    dropped without being offered to ``encap``.
    """

    def __init__(
        self,
        encap: Callable[[QueuedPacket], bool],
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._encap = encap
        self._clock = clock if clock is not None else time.monotonic_ns
        self._fastq: List[_Chain] = []
        self._batchq: List[_Chain] = []
        self._busy = False

    def __len__(self) -> int:
        return sum(len(chain) for chain in self._fastq + self._batchq)

    def _move_to_batch_front(self, packet: QueuedPacket) -> None:
        for queue in (self._fastq, self._batchq):
            for chain in queue:
                if any(item is packet for item in chain):
                    queue[:] = [c for c in queue if c is not chain]
                    self._batchq.insert(0, chain)
                    return

    def output(
        self, session: Optional[Session], packet: Union[QueuedPacket, bytes]
    ) -> QueuedPacket:
        """Queue ``packet`` for ``session`` and try to send what is pending."""
        if not isinstance(packet, QueuedPacket):
            packet = QueuedPacket(bytes(packet))
        packet.session = session

        placed = False
        if session is not None:
            # A session already on the batch queue must stay there to keep order.
            for chain in reversed(self._batchq):
                if chain[0].session is session:
                    chain.append(packet)
                    placed = True
                    break

        if not placed:
            if session is not None and session.interactive:
                if self._fastq and self._fastq[-1][0].session is session:
                    self._fastq[-1].append(packet)
                else:
                    self._fastq.append(deque([packet]))
            else:
                self._batchq.append(deque([packet]))

        if session is not None:
            session.queued += 1
            session.nqueued += 1
            if (session.nqueued >= DOWNGRADE_QUEUED
                    and session.nqueued - session.queued >= DOWNGRADE_SENT):
                self._move_to_batch_front(packet)

        self.start()
        return packet

    def _dispatch(self, chain: _Chain, now: int) -> bool:
        packet = chain[0]
        if not packet.expired(now) and not self._encap(packet):
            return False
        chain.popleft()
        session = packet.session
        if session is not None:
            session.queued -= 1
            if session.queued == 0:
                session.nqueued = 0
        return True

    def start(self) -> None:
        """Send the fast queue in order, then one packet per batch session."""
        if self._busy:
            return
        self._busy = True
        try:
            now = self._clock()
            fast = list(self._fastq)
            batch = list(self._batchq)
            for position, chain in enumerate(fast):
                last = position == len(fast) - 1
                while chain and self._dispatch(chain, now):
                    if last:
                        break
            for chain in batch:
                if chain:
                    self._dispatch(chain, now)
            self._fastq = [chain for chain in self._fastq if chain]
            self._batchq = [chain for chain in self._batchq if chain]
        finally:
            self._busy = False