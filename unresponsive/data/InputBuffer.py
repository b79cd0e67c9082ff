"""Fixed capacity input buffer. See `InputBuffer` class for more info."""


class InputBuffer(object):
    """Keeps first `capacity` bytes received from peer.

    Once full, `free_space()` hands out a scratch region of `capacity` bytes
    instead, so the socket is still drained but extra bytes are dropped."""

    DEFAULT_CAPACITY = 4096

    def __init__(self, capacity=None):
        if capacity is None:
            capacity = self.DEFAULT_CAPACITY
        if capacity <= 0:
            raise ValueError("capacity must be positive, got %r" % (capacity,))
        self.capacity = capacity
        self.used = 0
        self._data = bytearray(capacity)
        self._scratch = None

    def full(self):
        return self.used >= self.capacity

    def free_space(self):
        """Returns (writable memoryview, is_real_space) pair."""

        if self.full():
            if self._scratch is None:
                self._scratch = bytearray(self.capacity)
            return memoryview(self._scratch), False
        return memoryview(self._data)[self.used:], True

    def commit(self, n):
        """Accounts `n` bytes just written into real free space."""

        if n < 0 or self.used + n > self.capacity:
            raise ValueError("can't commit %d bytes, %d free" % (n, self.capacity - self.used))
        self.used += n

    def held(self):
        return bytes(self._data[:self.used])

    def __len__(self):
        return self.used

    def __str__(self):
        return "<InputBuffer %d/%d>" % (self.used, self.capacity)

    def __repr__(self): return str(self)
