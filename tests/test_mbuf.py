import pytest

from usernet.ifqueue import IF_MAXLINKHDR
from usernet.mbuf import MBUF_THRESH, Mbuf, MbufPool


def test_room_invariants():
    m = Mbuf(64)
    m.append(b"abcdef")
    assert m.room() == m.size - m.offset
    assert m.free_room() == m.room() - m.length
    assert m.data() == b"abcdef"


def test_adj_head_and_tail():
    m = Mbuf(32)
    m.append(b"0123456789")
    m.adj(3)
    assert m.data() == b"3456789"
    m.adj(-2)
    assert m.data() == b"34567"


def test_adj_too_much_raises():
    m = Mbuf(8)
    m.append(b"ab")
    with pytest.raises(ValueError):
        m.adj(3)
    with pytest.raises(ValueError):
        m.adj(-3)


def test_inc_grows_to_external_storage():
    m = Mbuf(8)
    m.append(b"xy")
    m.adj(1)
    m.inc(100)
    assert m.external
    assert m.room() >= 100
    assert m.data() == b"y"


def test_inc_no_change_when_room_suffices():
    m = Mbuf(50)
    m.inc(10)
    assert m.size == 50
    assert not m.external


def test_cat_grows_and_concatenates():
    a = Mbuf(4)
    a.append(b"abc")
    b = Mbuf(16)
    b.append(b"defghijk")
    a.cat(b)
    assert a.data() == b"abcdefghijk"
    assert a.free_room() >= 0


def test_copy_from():
    src = Mbuf(32)
    src.append(b"hello world")
    dst = Mbuf(32)
    dst.append(b">")
    dst.copy_from(src, 6, 5)
    assert dst.data() == b">world"


def test_copy_from_without_room_raises():
    src = Mbuf(32)
    src.append(b"hello world")
    dst = Mbuf(4)
    with pytest.raises(ValueError):
        dst.copy_from(src, 0, 8)


def test_copy_from_out_of_range_raises():
    src = Mbuf(32)
    src.append(b"abc")
    dst = Mbuf(32)
    with pytest.raises(ValueError):
        dst.copy_from(src, 2, 5)


def test_pool_buffer_size_and_reuse():
    pool = MbufPool(1500)
    m = pool.get()
    assert m.size == IF_MAXLINKHDR + 1500
    m.append(b"data")
    pool.free(m)
    again = pool.get()
    assert again is m
    assert again.length == 0
    assert len(pool) == 1


def test_pool_resets_grown_buffer():
    pool = MbufPool(100)
    m = pool.get()
    m.inc(5000)
    pool.free(m)
    assert pool.get().size == pool.buffer_size


def test_pool_double_free_is_harmless():
    pool = MbufPool(100)
    m = pool.get()
    pool.free(m)
    pool.free(m)
    assert pool.free_count == 1
    assert len(pool) == 0


def test_pool_discards_beyond_threshold():
    pool = MbufPool(100)
    bufs = [pool.get() for _ in range(MBUF_THRESH + 5)]
    assert pool.allocated == MBUF_THRESH + 5
    for m in bufs:
        pool.free(m)
    assert pool.free_count == MBUF_THRESH
    assert pool.allocated == MBUF_THRESH
    assert len(pool) == 0


def test_pool_rejects_bad_mtu():
    with pytest.raises(ValueError):
        MbufPool(0)