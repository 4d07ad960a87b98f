"""Bot service: transport adapter and owner of the event bus.

Registers with the transport for the configured update kinds and
shortcut commands, turns every raw update into a canonical ChatEvent,
and publishes it on the EventBus. The adapter functions in this module
are the only code that knows transport payload shapes.

Key classes:
    BotService: Owns the bus, publishes events, sends messages.

Key functions:
    event_from_update: Build a ChatEvent from a message update.
    event_from_command: Build a pre-tagged ChatEvent for a shortcut command.
"""

from typing import Optional

import structlog

from .config import Config, get_config
from .event_bus import EventBus, Subscription
from .events import ChatEvent
from .exceptions import TransportError
from .transport import TelegramTransport, TelegramUpdate

logger = structlog.get_logger("chatrouter.bot")


def event_from_update(
    update: TelegramUpdate, kind: str, transport: Optional[TelegramTransport] = None
) -> ChatEvent:
    """Adapt a message update of any kind into a ChatEvent."""
    message = update.message
    sender = message.from_user if message else None
    return ChatEvent(
        chat_id=message.chat.id if message else 0,
        user_id=sender.id if sender else 0,
        message_text=message.text if message and kind == "text" else None,
        update_type=kind,
        sender=sender,
        transport=transport,
        raw=update,
    )


def event_from_command(
    update: TelegramUpdate, name: str, transport: Optional[TelegramTransport] = None
) -> ChatEvent:
    """Adapt a shortcut command update into a pre-tagged ChatEvent.

    The event carries the command tag and no message text, so the
    router dispatches it without free-text parsing.
    """
    message = update.message
    sender = message.from_user if message else None
    return ChatEvent(
        chat_id=message.chat.id if message else 0,
        user_id=sender.id if sender else 0,
        command=name,
        update_type="command",
        sender=sender,
        transport=transport,
        raw=update,
    )


class BotService:
    """Bridges the chat transport and the event bus.

    Args:
        transport: TelegramTransport (or any object with on_update,
            on_command, send_text, start, stop, poll_updates).
        bus: EventBus to publish on; a new one is created if omitted.
        config: Config instance; defaults to get_config().
    """

    def __init__(
        self,
        transport: TelegramTransport,
        bus: Optional[EventBus] = None,
        config: Optional[Config] = None,
    ):
        self.transport = transport
        self.bus = bus if bus is not None else EventBus()
        self.config = config if config is not None else get_config()
        self._setup_listeners()

    def _setup_listeners(self) -> None:
        self.transport.on_update(self.config.update_kinds, self._on_update)
        for name in self.config.shortcut_commands:
            self.transport.on_command(name, self._on_command)

    async def _on_update(self, update: TelegramUpdate, kind: str) -> None:
        event = event_from_update(update, kind, self.transport)
        logger.info(
            "update_received",
            update_type=kind,
            chat_id=event.chat_id,
            user_id=event.user_id,
        )
        self.publish(event)

    async def _on_command(self, update: TelegramUpdate, name: str) -> None:
        event = event_from_command(update, name, self.transport)
        logger.info(
            "command_received",
            command=name,
            chat_id=event.chat_id,
            user_id=event.user_id,
        )
        self.publish(event)

    def publish(self, event: ChatEvent) -> int:
        """Publish an event on the bus. Returns the subscriber count reached."""
        return self.bus.publish(event)

    def all_events(self) -> Subscription:
        """Subscription to every event."""
        return self.bus.subscribe(name="all_events")

    def messages(self) -> Subscription:
        """Subscription to text events only."""
        return self.bus.subscribe(lambda e: e.message_text is not None, name="messages")

    async def send_message(self, chat_id: int, text: str) -> bool:
        """Send text to a chat.

        Transport failures are logged and reported through the return
        value; they are never retried or raised.

        Returns:
            True if the transport accepted the message.
        """
        try:
            await self.transport.send_text(chat_id, text)
            return True
        except TransportError as e:
            logger.error(
                "send_failed",
                chat_id=chat_id,
                error=e.message,
                status=e.status,
                kind=e.kind.value,
                retryable=e.is_retryable,
            )
            return False

    async def start_polling(self) -> None:
        """Start the transport and poll until stopped."""
        await self.transport.start()
        logger.info("polling_started")
        await self.transport.poll_updates()

    async def stop(self) -> None:
        await self.transport.stop()
        self.bus.close()
        logger.info("bot_service_stopped")
