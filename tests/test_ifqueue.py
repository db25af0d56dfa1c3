from usernet.ifqueue import IPTOS_LOWDELAY, OutputQueue, QueuedPacket, Session


class Link:
    def __init__(self, budget=None):
        self.budget = budget
        self.sent = []

    def encap(self, packet):
        if self.budget == 0:
            return False
        if self.budget is not None:
            self.budget -= 1
        self.sent.append(packet.data)
        return True


def test_packet_sent_immediately():
    link = Link()
    queue = OutputQueue(link.encap, clock=lambda: 0)
    queue.output(None, b"a")
    assert link.sent == [b"a"]
    assert len(queue) == 0


def test_delayed_packet_stays_queued():
    link = Link(budget=0)
    queue = OutputQueue(link.encap, clock=lambda: 0)
    queue.output(None, b"a")
    assert len(queue) == 1
    link.budget = None
    queue.start()
    assert link.sent == [b"a"]
    assert len(queue) == 0


def test_expired_packet_dropped():
    link = Link()
    queue = OutputQueue(link.encap, clock=lambda: 100)
    queue.output(None, QueuedPacket(b"old", expiration_date=50))
    assert link.sent == []
    assert len(queue) == 0


def test_fast_queue_served_first():
    link = Link(budget=0)
    queue = OutputQueue(link.encap, clock=lambda: 0)
    queue.output(Session(), b"bulk")
    queue.output(Session(iptos=IPTOS_LOWDELAY), b"fast")
    link.budget = None
    queue.start()
    assert link.sent == [b"fast", b"bulk"]


def test_batch_round_robin():
    link = Link(budget=0)
    queue = OutputQueue(link.encap, clock=lambda: 0)
    a, b = Session(), Session()
    for data in (b"a1", b"a2"):
        queue.output(a, data)
    for data in (b"b1", b"b2"):
        queue.output(b, data)
    link.budget = None
    queue.start()
    assert link.sent == [b"a1", b"b1"]
    queue.start()
    assert link.sent == [b"a1", b"b1", b"a2", b"b2"]


def test_fast_session_drained_unless_last():
    link = Link(budget=0)
    queue = OutputQueue(link.encap, clock=lambda: 0)
    first = Session(iptos=IPTOS_LOWDELAY)
    second = Session(iptos=IPTOS_LOWDELAY)
    for data in (b"f1", b"f2", b"f3"):
        queue.output(first, data)
    queue.output(second, b"s1")
    queue.output(second, b"s2")
    link.budget = None
    queue.start()
    assert link.sent == [b"f1", b"f2", b"f3", b"s1"]
    assert len(queue) == 1


def test_session_counters_reset():
    link = Link(budget=0)
    queue = OutputQueue(link.encap, clock=lambda: 0)
    session = Session()
    queue.output(session, b"x")
    queue.output(session, b"y")
    assert (session.queued, session.nqueued) == (2, 2)
    link.budget = None
    queue.start()
    queue.start()
    assert (session.queued, session.nqueued) == (0, 0)


def test_greedy_interactive_session_downgraded():
    link = Link(budget=0)
    queue = OutputQueue(link.encap, clock=lambda: 0)
    greedy = Session(iptos=IPTOS_LOWDELAY)
    for data in (b"p1", b"p2", b"p3", b"p4"):
        queue.output(greedy, data)
    link.budget = 3
    queue.start()
    queue.start()
    queue.start()
    assert link.sent == [b"p1", b"p2", b"p3"]
    queue.output(greedy, b"p5")
    queue.output(greedy, b"p6")
    other = Session(iptos=IPTOS_LOWDELAY)
    queue.output(other, b"x")
    link.budget = None
    queue.start()
    assert link.sent[3:] == [b"x", b"p4"]
    assert len(queue) == 2


def test_output_returns_tagged_packet():
    link = Link(budget=0)
    queue = OutputQueue(link.encap, clock=lambda: 0)
    session = Session()
    packet = queue.output(session, b"data")
    assert packet.session is session
    assert packet.data == b"data"