import pytest

from rtsproxy.buffer_pool import BufferPool, Packet


def test_pool_starts_full():
    pool = BufferPool(1500, 4)
    assert len(pool) == 4


def test_acquire_takes_from_pool():
    pool = BufferPool(64, 2)
    buf = pool.acquire()
    assert len(buf) == 64
    assert len(pool) == 1


def test_acquire_from_empty_pool_allocates():
    pool = BufferPool(32, 0)
    buf = pool.acquire()
    assert len(buf) == 32
    assert len(pool) == 0


def test_release_returns_buffer_lifo():
    pool = BufferPool(16, 1)
    first = pool.acquire()
    extra = pool.acquire()
    pool.release(first)
    pool.release(extra)
    assert len(pool) == 2
    assert pool.acquire() is extra
    assert pool.acquire() is first


def test_packet_remaining_and_done():
    data = bytearray(b"abcdefgh")
    packet = Packet(data, 6)
    assert bytes(packet.remaining()) == b"abcdef"
    packet.advance(4)
    assert bytes(packet.remaining()) == b"ef"
    assert not packet.done()
    packet.advance(2)
    assert packet.done()
    assert bytes(packet.remaining()) == b""


def test_packet_with_initial_offset():
    packet = Packet(b"0123456789", 10, 3)
    assert bytes(packet.remaining()) == b"3456789"


def test_packet_advance_past_end_raises():
    packet = Packet(b"abc", 3)
    with pytest.raises(ValueError):
        packet.advance(4)


def test_packet_advance_negative_raises():
    packet = Packet(b"abc", 3, 1)
    with pytest.raises(ValueError):
        packet.advance(-1)
    assert packet.offset == 1