"""Reusable byte buffers and queued outgoing packets."""

from __future__ import annotations

from dataclasses import dataclass


class BufferPool:
    """A stack of equally sized buffers, growing on demand."""

    def __init__(self, buf_size: int, pool_size: int) -> None:
        self.buf_size = buf_size
        self._pool: list[bytearray] = [bytearray(buf_size) for _ in range(pool_size)]

    def acquire(self) -> bytearray:
        """Take a buffer from the pool, or make a new one if the pool is empty."""
        if not self._pool:
            return bytearray(self.buf_size)
        return self._pool.pop()

    def release(self, buf: bytearray) -> None:
        """Return a buffer to the pool."""
        self._pool.append(buf)

    def __len__(self) -> int:
        return len(self._pool)


@dataclass
class Packet:
    """Bytes ``data[:length]`` to send, of which ``offset`` have been sent."""

    data: bytearray | bytes
    length: int
    offset: int = 0

    def remaining(self) -> memoryview:
        """Return the part not yet sent."""
        return memoryview(self.data)[self.offset:self.length]

    def advance(self, count: int) -> None:
        """Record that ``count`` more bytes were sent."""
        if count < 0 or self.offset + count > self.length:
            raise ValueError(f"cannot advance by {count} bytes")
        self.offset += count

    def done(self) -> bool:
        """Return True once every byte has been sent."""
        return self.offset == self.length