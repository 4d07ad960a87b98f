"""Command parsing.

Turns command-shaped message text into a ParsedCommand. Pure: no I/O,
no logging, no registry mutation.
"""

from typing import Callable, List, Optional, Tuple

from .events import ChatEvent, ParsedCommand
from .exceptions import CommandParseError


def split_command_text(text: str, marker: str = "/") -> Tuple[str, List[str], str]:
    """Decompose marker-prefixed text into (name, args, raw_args).

    Runs of whitespace act as a single separator. raw_args is the text
    after the first token, trimmed, with interior whitespace preserved.
    A trailing @botname on the command token is dropped from the name.

    Raises:
        CommandParseError: text does not start with the marker, or the
            name after the marker is empty.
    """
    if not text.startswith(marker):
        raise CommandParseError("text does not start with command marker", text=text[:50])
    parts = text.split()
    token = parts[0][len(marker):] if parts else ""
    # Group chats address commands as /name@botname
    name = token.split("@", 1)[0]
    if not name:
        raise CommandParseError("empty command name", text=text[:50])
    raw_args = text.strip()[len(parts[0]):].strip()
    return name, parts[1:], raw_args


def parse_command(
    event: ChatEvent,
    is_registered: Optional[Callable[[str], bool]] = None,
    marker: str = "/",
) -> Optional[ParsedCommand]:
    """Parse an event's text into a ParsedCommand.

    Args:
        event: The inbound event.
        is_registered: When given, a candidate is only accepted if this
            returns True for its name, or if the event was already tagged
            with the same command by the transport. Anything else is
            plain text.
        marker: Command marker character.

    Returns:
        ParsedCommand, or None when the text is not a command.
    """
    if event.message_text is None:
        return None
    try:
        name, args, raw_args = split_command_text(event.message_text, marker)
    except CommandParseError:
        return None

    if is_registered is not None and not (is_registered(name) or event.command == name):
        return None
    return ParsedCommand(command=name, args=tuple(args), raw_args=raw_args)
