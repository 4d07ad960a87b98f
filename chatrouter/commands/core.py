"""Core command handler for chatrouter.

Handles: start, echo, buffer_test, delay, check_users. Also provides
the default stream handler that logs plain-text messages.
"""

from __future__ import annotations

import asyncio
from typing import List

import structlog

from ..event_bus import Subscription
from ..events import ChatEvent, HandlerResult
from .base import BaseCommandHandler

logger = structlog.get_logger("chatrouter.commands")

DEFAULT_BUFFER_SIZE = 10
FILL_VALUE = 0xAA


def format_duration(ms: int) -> str:
    """Short human-readable duration: 250ms, 2s, 3m, 1h, 2d."""
    abs_ms = abs(ms)
    sign = "-" if ms < 0 else ""
    for unit_ms, suffix in ((86_400_000, "d"), (3_600_000, "h"), (60_000, "m"), (1000, "s")):
        if abs_ms >= unit_ms:
            # Halves round up: 2500ms is "3s"
            return f"{sign}{int(abs_ms / unit_ms + 0.5)}{suffix}"
    return f"{ms}ms"


def parse_id_list(text: str) -> List[int]:
    """Parse "123, 456,abc, 789" into [123, 456, 789], dropping junk and duplicates."""
    ids: List[int] = []
    for part in text.split(","):
        part = part.strip()
        try:
            value = int(part)
        except ValueError:
            continue
        if value not in ids:
            ids.append(value)
    return ids


class CoreCommandHandler(BaseCommandHandler):
    """Handles the built-in bot commands."""

    def get_commands(self):
        return {
            "start": self.handle_start,
            "echo": self.handle_echo,
            "buffer_test": self.handle_buffer_test,
            "delay": self.handle_delay,
            "check_users": self.handle_check_users,
        }

    async def handle_start(self, event: ChatEvent) -> str:
        """Greet the user.

        Chat usage::

            /start
        """
        return f"Welcome, {event.first_name}!"

    async def handle_echo(self, event: ChatEvent) -> str:
        """Repeat the command's arguments back.

        Chat usage::

            /echo hello world
        """
        parsed = event.parsed_command
        if parsed and parsed.raw_args:
            return f"You said: {parsed.raw_args}"
        return "Please provide text to echo."

    async def handle_buffer_test(self, event: ChatEvent):
        """Allocate a buffer, fill it with 0xAA, and report its first bytes.

        Chat usage::

            /buffer_test [size]

        Args:
            event: Event whose first argument, if any, is the size in bytes.

        Returns:
            Reply text, or SUPPRESSED after sending a usage/error message.
        """
        parsed = event.parsed_command
        size = DEFAULT_BUFFER_SIZE
        if parsed and parsed.args:
            try:
                size = int(parsed.args[0])
            except ValueError:
                size = 0
        if size <= 0:
            await self.ctx.send_message(event.chat_id, "Buffer size must be a positive number.")
            return HandlerResult.SUPPRESSED

        logger.debug("buffer_test_started", size=size, chat_id=event.chat_id)
        try:
            buffer = await self.ctx.buffers.allocate(size)
            filled = await self.ctx.buffers.fill(buffer, FILL_VALUE)
        except ValueError as e:
            logger.warning("buffer_test_failed", size=size, error=str(e))
            await self.ctx.send_message(event.chat_id, f"Buffer test failed: {e}")
            return HandlerResult.SUPPRESSED

        return (
            f"Buffer of {len(filled)} bytes allocated, filled with 0xAA. "
            f"First 10 bytes: {bytes(filled[:10]).hex()}"
        )

    async def handle_delay(self, event: ChatEvent):
        """Wait before replying.

        Chat usage::

            /delay [milliseconds]
        """
        parsed = event.parsed_command
        delay_ms = self.ctx.config.default_delay_ms
        if parsed and parsed.args:
            try:
                delay_ms = int(parsed.args[0])
            except ValueError:
                delay_ms = 0
        if delay_ms <= 0:
            await self.ctx.send_message(
                event.chat_id, "Delay must be a positive number of milliseconds."
            )
            return HandlerResult.SUPPRESSED

        human = format_duration(delay_ms)
        logger.debug("delay_started", duration=human, chat_id=event.chat_id)
        await asyncio.sleep(delay_ms / 1000)
        return f"Waited {human}."

    async def handle_check_users(self, event: ChatEvent) -> str:
        """Check which of the given user ids are on the known-user list.

        Chat usage::

            /check_users 123456, 789012
        """
        parsed = event.parsed_command
        ids = parse_id_list(parsed.raw_args if parsed else "")
        if not ids:
            return (
                "Please provide user IDs separated by commas. "
                "Example: /check_users 123456, 789012"
            )

        known = set(self.ctx.config.known_user_ids)
        found = [i for i in ids if i in known]
        if found:
            return f"Found {len(found)} known IDs: {', '.join(str(i) for i in found)}."
        return "None of the provided IDs belong to known users."


def plain_text_logger(marker: str = "/"):
    """Build a stream handler that logs every plain-text (non-command) message."""

    async def log_plain_text(stream: Subscription) -> None:
        async for event in stream:
            if event.message_text is None or event.message_text.startswith(marker):
                continue
            logger.info(
                "plain_text_received",
                chat_id=event.chat_id,
                user_id=event.user_id,
                length=len(event.message_text),
            )

    return log_plain_text
