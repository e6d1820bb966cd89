# seqcast/channel.py
from __future__ import annotations
import asyncio
import logging
import weakref
from collections import deque
from threading import Lock
from typing import Deque, Dict

logger = logging.getLogger(__name__)


class ChannelError(Exception):
    pass


class Lagged(ChannelError):
    """The receiver fell more than `capacity` values behind; `missed` values are gone."""

    def __init__(self, missed: int):
        super().__init__(f"receiver lagged behind by {missed} value(s)")
        self.missed = missed


class Closed(ChannelError):
    pass


class Empty(ChannelError):
    pass


def _wake(fut: asyncio.Future) -> None:
    if not fut.done():
        fut.set_result(None)


class BroadcastChannel:
    """
    Bounded multi-consumer ring buffer.

    Every receiver sees every value sent after it subscribed, in send order,
    as long as it stays within `capacity` values of the newest one. A receiver
    that falls further behind gets one Lagged(n) and resumes at the oldest
    retained value. send() never waits on receivers.
    """

    def __init__(self, capacity: int = 32):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._buf: Deque[int] = deque(maxlen=capacity)
        self._tail = 0  # absolute position of the next value to be sent
        self._lock = Lock()
        self._receivers: "weakref.WeakSet[Receiver]" = weakref.WeakSet()
        self._waiters: Dict[asyncio.Future, asyncio.AbstractEventLoop] = {}
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def receiver_count(self) -> int:
        with self._lock:
            return len(self._receivers)

    def subscribe(self) -> "Receiver":
        with self._lock:
            rx = Receiver(self, self._tail)
            self._receivers.add(rx)
        return rx

    def send(self, value: int) -> int:
        """Publish `value`; returns how many receivers were live at send time."""
        with self._lock:
            if self._closed:
                logger.debug("send on closed channel dropped value %s", value)
                return 0
            self._buf.append(value)
            self._tail += 1
            live = len(self._receivers)
            waiters, self._waiters = self._waiters, {}
        self._notify(waiters)
        return live

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            waiters, self._waiters = self._waiters, {}
        self._notify(waiters)

    def _notify(self, waiters: Dict[asyncio.Future, asyncio.AbstractEventLoop]) -> None:
        for fut, loop in waiters.items():
            try:
                loop.call_soon_threadsafe(_wake, fut)
            except RuntimeError:
                # loop already closed; its waiter is gone with it
                pass

    def _detach(self, rx: "Receiver") -> None:
        with self._lock:
            self._receivers.discard(rx)
            waiters, self._waiters = self._waiters, {}
        self._notify(waiters)

    def _poll(self, rx: "Receiver") -> int:
        # caller holds self._lock
        if rx._closed:
            raise Closed("receiver is closed")
        oldest = self._tail - len(self._buf)
        if rx._pos < oldest:
            missed = oldest - rx._pos
            rx._pos = oldest
            raise Lagged(missed)
        if rx._pos < self._tail:
            value = self._buf[rx._pos - oldest]
            rx._pos += 1
            return value
        if self._closed:
            raise Closed("channel is closed")
        raise Empty()

    def _pending(self, rx: "Receiver") -> int:
        with self._lock:
            oldest = self._tail - len(self._buf)
            return self._tail - max(rx._pos, oldest)

    def _try_recv(self, rx: "Receiver") -> int:
        with self._lock:
            return self._poll(rx)

    async def _recv(self, rx: "Receiver") -> int:
        loop = asyncio.get_running_loop()
        while True:
            with self._lock:
                try:
                    return self._poll(rx)
                except Empty:
                    fut = loop.create_future()
                    self._waiters[fut] = loop
            try:
                await fut
            finally:
                with self._lock:
                    self._waiters.pop(fut, None)


class Receiver:
    """One consumer's cursor into a BroadcastChannel."""

    def __init__(self, channel: BroadcastChannel, pos: int):
        self._channel = channel
        self._pos = pos
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return 0 if self._closed else self._channel._pending(self)

    async def recv(self) -> int:
        """
        Wait for the next value.

        Raises Lagged when values were overwritten before this receiver read
        them (the next call continues from the oldest retained value), and
        Closed once the channel is closed and drained or the receiver itself
        was closed.
        """
        return await self._channel._recv(self)

    def try_recv(self) -> int:
        return self._channel._try_recv(self)

    def resubscribe(self) -> "Receiver":
        return self._channel.subscribe()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._detach(self)

    def __enter__(self) -> "Receiver":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
