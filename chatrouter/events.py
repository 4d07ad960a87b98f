"""Event types flowing through the chatrouter event bus.

Defines the canonical unit of inbound chat traffic and the structured
command attached to it during routing:
- ChatEvent: one inbound chat update, normalized by the bot service
- ParsedCommand: decomposition of command-shaped text
- HandlerResult: explicit outcome a command handler may return
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Tuple

if TYPE_CHECKING:
    from .transport import TelegramTransport, TelegramUser


@dataclass(frozen=True)
class ParsedCommand:
    """A command parsed out of message text.

    Attributes:
        command: Command name without the leading marker.
        args: Whitespace-delimited tokens following the command.
        raw_args: Text after the command token, trimmed.
    """

    command: str
    args: Tuple[str, ...] = ()
    raw_args: str = ""


class HandlerResult(Enum):
    """Outcome a command handler can report to the router.

    Handlers may also return None (same as COMPLETED) or a reply string.
    SUPPRESSED means the handler already dealt with the event (usually
    by sending its own usage or error message) and the router must do
    nothing further.
    """

    COMPLETED = "completed"
    SUPPRESSED = "suppressed"


@dataclass(frozen=True)
class ChatEvent:
    """Canonical inbound chat event.

    Exactly one of message_text / command (or neither, for media updates)
    describes the event. parsed_command is only ever attached by the
    router; the bot service never sets it.
    """

    chat_id: int
    user_id: int
    message_text: Optional[str] = None
    command: Optional[str] = None
    parsed_command: Optional[ParsedCommand] = None
    update_type: str = "text"
    sender: Optional["TelegramUser"] = field(default=None, compare=False, repr=False)
    transport: Optional["TelegramTransport"] = field(default=None, compare=False, repr=False)
    raw: Optional[Any] = field(default=None, compare=False, repr=False)

    @property
    def is_text(self) -> bool:
        return self.message_text is not None

    def is_command_shaped(self, marker: str = "/") -> bool:
        """Whether the router's dispatch pipeline should look at this event."""
        if self.command is not None:
            return True
        return self.message_text is not None and self.message_text.startswith(marker)

    def with_command(self, command: str) -> "ChatEvent":
        return replace(self, command=command)

    def with_parsed_command(self, parsed: ParsedCommand) -> "ChatEvent":
        return replace(self, parsed_command=parsed)

    @property
    def first_name(self) -> str:
        """Sender's first name, or empty string when no profile is attached."""
        if self.sender is None:
            return ""
        return self.sender.first_name or ""
