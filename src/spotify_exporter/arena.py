from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .errors import ArenaExhaustedError


MEGABYTE = 1 << 20
RESERVED_BYTE_COUNT = 1 << 36


@dataclass
class Reservation:
    """Address range handed out by a platform; committed memory lives in `chunks`."""

    byte_count: int
    chunks: List[bytearray] = field(default_factory=list)
    committed: int = 0
    released: bool = False


class HeapPlatform:
    """
    Memory provider with the three primitives an arena needs.

    Committing appends a new zeroed chunk instead of resizing an existing one,
    so memory that was handed out is never moved.
    """

    def reserve(self, byte_count: int) -> Reservation:
        return Reservation(byte_count=byte_count)

    def commit(self, reservation: Reservation, byte_count: int) -> None:
        if reservation.released:
            raise ArenaExhaustedError("cannot commit memory of a released reservation")
        if byte_count > reservation.byte_count:
            raise ArenaExhaustedError(
                f"cannot commit {byte_count} bytes, only {reservation.byte_count} are reserved"
            )
        if byte_count > reservation.committed:
            reservation.chunks.append(bytearray(byte_count - reservation.committed))
            reservation.committed = byte_count

    def release(self, reservation: Reservation) -> None:
        reservation.chunks.clear()
        reservation.committed = 0
        reservation.released = True


class Arena:
    """
    Bump allocator over a lazily committed reservation.

    Every view returned by `allocate` keeps pointing at the same bytes until the
    arena is cleared or released. There is no interior free: callers that need
    to reuse memory keep one arena per lifetime and `clear()` it.
    """

    def __init__(
        self,
        byte_count: int,
        reserve_limit: int = RESERVED_BYTE_COUNT,
        platform: Optional[HeapPlatform] = None,
    ) -> None:
        if byte_count > reserve_limit:
            raise ArenaExhaustedError(
                f"arena of {byte_count} bytes does not fit a reservation of {reserve_limit} bytes"
            )
        self._platform = platform or HeapPlatform()
        self._reservation = self._platform.reserve(reserve_limit)
        self._views: List[memoryview] = []
        self._starts: List[int] = []
        self._used: List[int] = []
        self._current = 0
        self.count = 0
        self._commit(byte_count)

    @property
    def max_count(self) -> int:
        return self._reservation.committed

    @property
    def reserve_limit(self) -> int:
        return self._reservation.byte_count

    def _commit(self, byte_count: int) -> None:
        previous = self._reservation.committed
        self._platform.commit(self._reservation, byte_count)
        for chunk in self._reservation.chunks[len(self._views):]:
            self._views.append(memoryview(chunk))
            self._starts.append(previous)
            self._used.append(0)
            previous += len(chunk)

    def _grow(self, byte_count: int) -> None:
        # the new allocation starts at the fresh chunk, so the chunk must hold all of it
        required = self.max_count + byte_count
        new_max = max(2 * self.max_count, required)
        if new_max > self.reserve_limit and required <= self.reserve_limit:
            new_max = required
        if new_max > self.reserve_limit:
            raise ArenaExhaustedError(
                f"not enough memory: arena needs {required} bytes, "
                f"{self.reserve_limit} are reserved"
            )
        self._commit(new_max)

    def allocate(self, byte_count: int) -> memoryview:
        """Return `byte_count` bytes at a stable address, growing the commitment if needed."""
        if self._reservation.released:
            raise ArenaExhaustedError("allocation from a released arena")
        if byte_count < 0:
            raise ValueError("byte_count must not be negative")

        index = self._current
        while index < len(self._views) and len(self._views[index]) - self._used[index] < byte_count:
            index += 1
        if index == len(self._views):
            self._grow(byte_count)
            index = len(self._views) - 1

        start = self._used[index]
        self._used[index] = start + byte_count
        self._current = index
        self.count = self._starts[index] + start + byte_count
        return self._views[index][start:start + byte_count]

    def push_bytes(self, data: bytes) -> memoryview:
        view = self.allocate(len(data))
        view[:] = data
        return view

    def getvalue(self) -> bytes:
        """Concatenation of every allocation since the last clear, in allocation order."""
        return b"".join(view[:used].tobytes() for view, used in zip(self._views, self._used) if used)

    def clear(self) -> None:
        """Reset the logical length and zero the used bytes, keeping committed memory."""
        for index, used in enumerate(self._used):
            if used:
                self._views[index][:used] = bytes(used)
                self._used[index] = 0
        self._current = 0
        self.count = 0

    def release(self) -> None:
        self._views = []
        self._starts = []
        self._used = []
        self._current = 0
        self.count = 0
        self._platform.release(self._reservation)
