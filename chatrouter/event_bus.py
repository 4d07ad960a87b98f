"""Broadcast event bus.

Single multicast point for all inbound chat events. The bot service
publishes; the router and every stream handler consume through their
own Subscription, so a slow or failing consumer never affects another.

Publishing is synchronous and never blocks: each subscription owns an
unbounded asyncio.Queue and publish() only enqueues. There is no
replay; a subscription sees the events published after it was created.
"""

import asyncio
from typing import Callable, List, Optional

import structlog

from .events import ChatEvent

logger = structlog.get_logger("chatrouter.bus")

EventPredicate = Callable[[ChatEvent], bool]

_CLOSED = object()


class Subscription:
    """A live view of the bus from the moment of subscription.

    Iterate with ``async for``. close() ends the iteration once the
    events already queued have been consumed.
    """

    def __init__(
        self,
        bus: "EventBus",
        predicate: Optional[EventPredicate] = None,
        name: str = "",
    ):
        self._bus = bus
        self._predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._finished = False
        self.name = name

    def _offer(self, event: ChatEvent) -> bool:
        if self._closed:
            return False
        if self._predicate is not None and not self._predicate(event):
            return False
        self._queue.put_nowait(event)
        return True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of events queued but not yet consumed."""
        size = self._queue.qsize()
        if self._closed and not self._finished:
            size -= 1  # close sentinel
        return max(size, 0)

    def close(self) -> None:
        """Stop receiving new events. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChatEvent:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class EventBus:
    """Multicast channel of ChatEvents.

    Owned by the bot service and passed by reference to the router.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._closed = False

    def subscribe(
        self, predicate: Optional[EventPredicate] = None, name: str = ""
    ) -> Subscription:
        """Create a subscription to all future events.

        Args:
            predicate: Optional filter evaluated at publish time; events
                it rejects are never queued for this subscription.
            name: Label used in log output.
        """
        sub = Subscription(self, predicate=predicate, name=name)
        if self._closed:
            sub.close()
            return sub
        self._subscriptions.append(sub)
        logger.debug("bus_subscribed", subscription=name, subscribers=len(self._subscriptions))
        return sub

    def publish(self, event: ChatEvent) -> int:
        """Deliver an event to every current subscriber.

        Returns:
            Number of subscriptions the event was queued on.
        """
        if self._closed:
            logger.warning("bus_publish_after_close", chat_id=event.chat_id)
            return 0
        delivered = 0
        for sub in list(self._subscriptions):
            try:
                if sub._offer(event):
                    delivered += 1
            except Exception as e:
                logger.error(
                    "bus_predicate_error",
                    subscription=sub.name,
                    error=str(e),
                    exc_type=type(e).__name__,
                )
        return delivered

    def _unsubscribe(self, sub: Subscription) -> None:
        try:
            self._subscriptions.remove(sub)
        except ValueError:
            pass

    def close(self) -> None:
        """Close every subscription; further publishes are dropped."""
        self._closed = True
        for sub in list(self._subscriptions):
            sub.close()
        logger.debug("bus_closed")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def closed(self) -> bool:
        return self._closed
