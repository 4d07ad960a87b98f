"""chatrouter: event-driven command router for chat bots."""

__version__ = "0.1.0"

from .bot_service import BotService
from .commands import BaseCommandHandler, CommandRegistry, HandlerContext
from .event_bus import EventBus, Subscription
from .events import ChatEvent, HandlerResult, ParsedCommand
from .exceptions import (
    ChatRouterError,
    CommandHandlerError,
    CommandParseError,
    ConfigurationError,
    ErrorCategory,
    ErrorKind,
    RoutingError,
    TransportError,
    UnknownCommandError,
)
from .parser import parse_command
from .router import Router

__all__ = [
    "BaseCommandHandler",
    "BotService",
    "ChatEvent",
    "ChatRouterError",
    "CommandHandlerError",
    "CommandParseError",
    "CommandRegistry",
    "ConfigurationError",
    "ErrorCategory",
    "ErrorKind",
    "EventBus",
    "HandlerContext",
    "HandlerResult",
    "ParsedCommand",
    "RoutingError",
    "Router",
    "Subscription",
    "TransportError",
    "UnknownCommandError",
    "parse_command",
]
