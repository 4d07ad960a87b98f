"""Base classes for the command handler framework.

Defines the abstractions for registering and resolving bot commands.
Handlers are either plain callables registered one by one, or grouped
into classes that extend BaseCommandHandler and are registered as a
group.

Key classes:
    HandlerContext: Dependency container shared by handler groups.
    BaseCommandHandler: ABC that handler groups must implement.
    CommandRegistry: Maps command names to handler callables.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Union,
)

import structlog

from ..events import ChatEvent, HandlerResult
from ..exceptions import RoutingError

if TYPE_CHECKING:
    from ..buffers import BufferProcessor
    from ..config import Config

logger = structlog.get_logger("chatrouter.commands")

HandlerReturn = Union[None, str, HandlerResult]

# Handler signature: (event) -> reply | HandlerResult | None, sync or async
CommandHandler = Callable[[ChatEvent], Union[Awaitable[HandlerReturn], HandlerReturn]]


@dataclass
class HandlerContext:
    """Dependency container for command handler groups.

    Gives handlers access to shared services without coupling them to
    the bot service or router.
    """

    config: "Config"
    send_message: Callable[[int, str], Awaitable[bool]]
    buffers: "BufferProcessor"


class BaseCommandHandler(ABC):
    """Abstract base class for command handler groups.

    Subclasses implement get_commands() to return a dict mapping
    command names to handler functions. Each handler receives the
    ChatEvent with parsed_command attached.

    Args:
        ctx: Shared HandlerContext dependency container.
    """

    def __init__(self, ctx: HandlerContext):
        self.ctx = ctx

    @abstractmethod
    def get_commands(self) -> Dict[str, CommandHandler]:
        """Return {command_name: handler} mapping."""
        ...


class CommandRegistry:
    """Maps command names to handler callables.

    Names are case-sensitive and carry no marker. Registering a name
    twice replaces the earlier handler. The registry is frozen when
    routing starts; lookups afterwards are read-only.
    """

    def __init__(self, marker: str = "/"):
        self._handlers: Dict[str, CommandHandler] = {}
        self._marker = marker
        self._frozen = False

    def register(self, name: str, handler: CommandHandler) -> None:
        """Register a handler for a command name.

        Raises:
            ValueError: name is empty, contains whitespace, or starts
                with the command marker.
            RoutingError: the registry is frozen.
        """
        if self._frozen:
            raise RoutingError("cannot register commands after routing started", command=name)
        if not name or name.startswith(self._marker) or any(ch.isspace() for ch in name):
            raise ValueError(f"Invalid command name: {name!r}")
        if not callable(handler):
            raise TypeError(f"Handler for {name!r} is not callable")
        if name in self._handlers:
            logger.warning("command_handler_conflict", command=name)
        self._handlers[name] = handler

    def register_group(self, group: BaseCommandHandler) -> None:
        """Register all commands from a BaseCommandHandler subclass."""
        for name, handler in group.get_commands().items():
            self.register(name, handler)
        logger.debug(
            "command_group_registered",
            group=type(group).__name__,
            commands=sorted(group.get_commands()),
        )

    def resolve(self, name: str) -> Optional[CommandHandler]:
        """Look up a handler for a command name."""
        return self._handlers.get(name)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def command_names(self) -> frozenset:
        """All registered command names."""
        return frozenset(self._handlers.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
