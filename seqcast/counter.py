# seqcast/counter.py
from __future__ import annotations
import itertools

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


def wrap_int32(n: int) -> int:
    return ((n - INT32_MIN) & 0xFFFFFFFF) + INT32_MIN


class AtomicInt32:
    """
    Signed 32-bit fetch-and-increment counter.

    next(itertools.count) runs entirely in C, so concurrent callers can never
    observe the same raw value. Past INT32_MAX the value wraps to INT32_MIN,
    mirroring native int32 overflow; nothing raises.
    """

    def __init__(self, initial: int = 1):
        if not INT32_MIN <= initial <= INT32_MAX:
            raise ValueError(f"initial value {initial} is outside the int32 range")
        self._initial = initial
        self._count = itertools.count(initial)

    @property
    def initial(self) -> int:
        return self._initial

    def fetch_add(self) -> int:
        return wrap_int32(next(self._count))
