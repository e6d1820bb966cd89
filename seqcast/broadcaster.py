# seqcast/broadcaster.py
from __future__ import annotations
import logging
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional, Union

from seqcast.channel import Closed, Lagged, Receiver
from seqcast.metrics import ACTIVE_SUBSCRIPTIONS, LAGGED_VALUES
from seqcast.settings import Settings
from seqcast.state import DEFAULT_CAPACITY, DEFAULT_INITIAL_VALUE, SequenceState

logger = logging.getLogger(__name__)


class LagPolicy(str, Enum):
    SKIP = "skip"
    RAISE = "raise"


@dataclass(frozen=True)
class Delivery:
    """One raw receive result: either a value or a count of values missed."""
    value: Optional[int] = None
    missed: int = 0

    @classmethod
    def of(cls, value: int) -> "Delivery":
        return cls(value=value)

    @classmethod
    def lag(cls, missed: int) -> "Delivery":
        return cls(missed=missed)

    @property
    def is_lag(self) -> bool:
        return self.missed > 0


def _release(receiver: Receiver) -> None:
    receiver.close()
    ACTIVE_SUBSCRIPTIONS.dec()


class Subscription:
    """
    Live view of every value pushed after the subscription was opened.

    Iterating yields plain ints. Lag is recorded on `missed` and then either
    skipped (LagPolicy.SKIP) or raised as Lagged (LagPolicy.RAISE); the
    iteration ends when the broadcaster is closed. Use events() to see the
    raw Delivery records instead. Closing, leaving `async with`, or dropping
    the last reference releases the channel slot.
    """

    def __init__(self, receiver: Receiver, policy: LagPolicy = LagPolicy.SKIP):
        self._receiver = receiver
        self.policy = policy
        self.missed = 0
        ACTIVE_SUBSCRIPTIONS.inc()
        self._finalizer = weakref.finalize(self, _release, receiver)
        logger.debug("subscription opened (policy=%s)", policy.value)

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    @property
    def pending(self) -> int:
        return self._receiver.pending

    async def next_delivery(self) -> Delivery:
        """Raises StopAsyncIteration once the channel is closed and drained."""
        try:
            value = await self._receiver.recv()
        except Lagged as exc:
            self.missed += exc.missed
            LAGGED_VALUES.inc(exc.missed)
            logger.warning("subscription lagged, %d value(s) skipped", exc.missed)
            return Delivery.lag(exc.missed)
        except Closed:
            self.close()
            raise StopAsyncIteration
        return Delivery.of(value)

    async def events(self) -> AsyncIterator[Delivery]:
        while True:
            try:
                delivery = await self.next_delivery()
            except StopAsyncIteration:
                return
            yield delivery

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> int:
        while True:
            delivery = await self.next_delivery()
            if not delivery.is_lag:
                return delivery.value
            if self.policy is LagPolicy.RAISE:
                raise Lagged(delivery.missed)

    def close(self) -> None:
        if self._finalizer.alive:
            self._finalizer()
            logger.debug("subscription closed (missed=%d)", self.missed)

    async def aclose(self) -> None:
        self.close()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class Broadcaster:
    """push() advances the shared sequence; subscribe() opens a live stream of it."""

    def __init__(self, state: SequenceState, lag_policy: Union[LagPolicy, str] = LagPolicy.SKIP):
        self._state = state
        self._lag_policy = LagPolicy(lag_policy)

    @classmethod
    def create(cls,
               initial_value: int = DEFAULT_INITIAL_VALUE,
               capacity: int = DEFAULT_CAPACITY,
               lag_policy: Union[LagPolicy, str] = LagPolicy.SKIP) -> "Broadcaster":
        return cls(SequenceState(initial_value=initial_value, capacity=capacity), lag_policy)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Broadcaster":
        return cls.create(settings.INITIAL_VALUE, settings.CAPACITY, settings.LAG_POLICY)

    @property
    def state(self) -> SequenceState:
        return self._state

    @property
    def lag_policy(self) -> LagPolicy:
        return self._lag_policy

    @property
    def subscriber_count(self) -> int:
        return self._state.receiver_count

    def push(self) -> bool:
        return self._state.push()

    def subscribe(self, lag_policy: Union[LagPolicy, str, None] = None) -> Subscription:
        policy = self._lag_policy if lag_policy is None else LagPolicy(lag_policy)
        return Subscription(self._state.subscribe(), policy)

    def close(self) -> None:
        """Ends every open subscription once it has drained what it already has."""
        self._state.close()
