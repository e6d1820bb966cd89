# seqcast/state.py
from __future__ import annotations

from seqcast.channel import BroadcastChannel, Receiver
from seqcast.counter import AtomicInt32
from seqcast.metrics import LAST_VALUE, PUSH_COUNT

DEFAULT_CAPACITY = 32
DEFAULT_INITIAL_VALUE = 1


class SequenceState:
    """The shared counter plus the channel every advance is published on."""

    def __init__(self, initial_value: int = DEFAULT_INITIAL_VALUE, capacity: int = DEFAULT_CAPACITY):
        self._counter = AtomicInt32(initial_value)
        self._channel = BroadcastChannel(capacity)

    @property
    def initial_value(self) -> int:
        return self._counter.initial

    @property
    def capacity(self) -> int:
        return self._channel.capacity

    @property
    def receiver_count(self) -> int:
        return self._channel.receiver_count

    def advance(self) -> int:
        value = self._counter.fetch_add()
        self._channel.send(value)
        # a closed channel drops the value, so it is not counted as pushed
        if not self._channel.closed:
            PUSH_COUNT.inc()
            LAST_VALUE.set(value)
        return value

    def push(self) -> bool:
        # zero receivers is fine; the value is simply not observed
        self.advance()
        return True

    def subscribe(self) -> Receiver:
        return self._channel.subscribe()

    def close(self) -> None:
        self._channel.close()
