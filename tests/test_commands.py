"""Tests for the command registry, built-in commands and buffer helpers."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from structlog.testing import capture_logs

from chatrouter.buffers import BufferProcessor
from chatrouter.commands.base import BaseCommandHandler, CommandRegistry, HandlerContext
from chatrouter.commands.core import CoreCommandHandler, format_duration, parse_id_list
from chatrouter.config import Config
from chatrouter.events import ChatEvent, HandlerResult
from chatrouter.exceptions import RoutingError
from chatrouter.parser import parse_command
from chatrouter.transport import TelegramUser


def _make_config(**settings):
    config = Config.__new__(Config)
    config.config_dir = Path("/nonexistent")
    config.settings = settings
    return config


def _make_handler(max_size=1024, **settings):
    ctx = HandlerContext(
        config=_make_config(**settings),
        send_message=AsyncMock(return_value=True),
        buffers=BufferProcessor(max_size=max_size),
    )
    return CoreCommandHandler(ctx)


def _command(text, chat_id=10, sender=None):
    event = ChatEvent(chat_id=chat_id, user_id=1, message_text=text, sender=sender)
    return event.with_parsed_command(parse_command(event))


# -------------------------------------------------------------------
# CommandRegistry
# -------------------------------------------------------------------

class TestCommandRegistry:

    def test_register_and_resolve(self):
        registry = CommandRegistry()
        handler = AsyncMock()
        registry.register("echo", handler)
        assert registry.resolve("echo") is handler
        assert "echo" in registry
        assert len(registry) == 1

    def test_resolve_missing(self):
        assert CommandRegistry().resolve("nope") is None

    def test_overwrite_logs_conflict(self):
        registry = CommandRegistry()
        first, second = AsyncMock(), AsyncMock()
        registry.register("echo", first)
        with capture_logs() as logs:
            registry.register("echo", second)
        assert registry.resolve("echo") is second
        assert logs[0]["event"] == "command_handler_conflict"

    @pytest.mark.parametrize("name", ["", "/echo", "two words"])
    def test_invalid_names_rejected(self, name):
        with pytest.raises(ValueError):
            CommandRegistry().register(name, AsyncMock())

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError):
            CommandRegistry().register("echo", "not a function")

    def test_frozen_registry_rejects_registration(self):
        registry = CommandRegistry()
        registry.freeze()
        with pytest.raises(RoutingError):
            registry.register("late", AsyncMock())

    def test_register_group(self):
        class Greetings(BaseCommandHandler):
            def get_commands(self):
                return {"hi": self.hi, "bye": self.bye}

            async def hi(self, event):
                return "hi"

            async def bye(self, event):
                return "bye"

        registry = CommandRegistry()
        registry.register_group(Greetings(ctx=None))
        assert registry.command_names == frozenset({"hi", "bye"})


# -------------------------------------------------------------------
# Built-in commands
# -------------------------------------------------------------------

class TestCoreCommands:

    @pytest.mark.asyncio
    async def test_start_greets_by_first_name(self):
        handler = _make_handler()
        sender = TelegramUser(id=1, first_name="Ann")
        event = ChatEvent(chat_id=1, user_id=1, command="start", sender=sender)
        assert await handler.handle_start(event) == "Welcome, Ann!"

    @pytest.mark.asyncio
    async def test_echo_returns_raw_args(self):
        handler = _make_handler()
        assert await handler.handle_echo(_command("/echo hello world")) == "You said: hello world"

    @pytest.mark.asyncio
    async def test_echo_without_text(self):
        handler = _make_handler()
        assert await handler.handle_echo(_command("/echo")) == "Please provide text to echo."

    @pytest.mark.asyncio
    async def test_buffer_test_default_size(self):
        handler = _make_handler()
        reply = await handler.handle_buffer_test(_command("/buffer_test"))
        assert reply.startswith("Buffer of 10 bytes allocated")
        assert reply.endswith("aa" * 10)

    @pytest.mark.asyncio
    async def test_buffer_test_small_size(self):
        handler = _make_handler()
        reply = await handler.handle_buffer_test(_command("/buffer_test 4"))
        assert "Buffer of 4 bytes" in reply
        assert reply.endswith("First 10 bytes: aaaaaaaa")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("arg", ["0", "-3", "abc"])
    async def test_buffer_test_invalid_size(self, arg):
        handler = _make_handler()
        result = await handler.handle_buffer_test(_command(f"/buffer_test {arg}", chat_id=5))
        assert result is HandlerResult.SUPPRESSED
        handler.ctx.send_message.assert_awaited_once_with(
            5, "Buffer size must be a positive number."
        )

    @pytest.mark.asyncio
    async def test_buffer_test_over_limit(self):
        handler = _make_handler(max_size=16)
        result = await handler.handle_buffer_test(_command("/buffer_test 17", chat_id=5))
        assert result is HandlerResult.SUPPRESSED
        message = handler.ctx.send_message.await_args.args[1]
        assert message.startswith("Buffer test failed:")

    @pytest.mark.asyncio
    async def test_delay_waits_and_replies(self):
        handler = _make_handler()
        with patch("chatrouter.commands.core.asyncio.sleep", new=AsyncMock()) as sleep:
            reply = await handler.handle_delay(_command("/delay 1500"))
        sleep.assert_awaited_once_with(1.5)
        assert reply == "Waited 2s."

    @pytest.mark.asyncio
    async def test_delay_default_from_config(self):
        handler = _make_handler(commands={"default_delay_ms": 250})
        with patch("chatrouter.commands.core.asyncio.sleep", new=AsyncMock()) as sleep:
            reply = await handler.handle_delay(_command("/delay"))
        sleep.assert_awaited_once_with(0.25)
        assert reply == "Waited 250ms."

    @pytest.mark.asyncio
    async def test_delay_invalid(self):
        handler = _make_handler()
        result = await handler.handle_delay(_command("/delay soon", chat_id=3))
        assert result is HandlerResult.SUPPRESSED
        handler.ctx.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_check_users_found(self):
        handler = _make_handler(known_user_ids=[111, 222, 333])
        reply = await handler.handle_check_users(_command("/check_users 222, 999,111"))
        assert reply == "Found 2 known IDs: 222, 111."

    @pytest.mark.asyncio
    async def test_check_users_none_known(self):
        handler = _make_handler(known_user_ids=[111])
        reply = await handler.handle_check_users(_command("/check_users 5, 6"))
        assert reply == "None of the provided IDs belong to known users."

    @pytest.mark.asyncio
    async def test_check_users_no_ids(self):
        handler = _make_handler()
        reply = await handler.handle_check_users(_command("/check_users abc"))
        assert reply.startswith("Please provide user IDs")


class TestHelpers:

    @pytest.mark.parametrize("ms,expected", [
        (250, "250ms"),
        (1000, "1s"),
        (1500, "2s"),
        (2500, "3s"),
        (150_000, "3m"),
        (90_000, "2m"),
        (3_600_000, "1h"),
        (172_800_000, "2d"),
    ])
    def test_format_duration(self, ms, expected):
        assert format_duration(ms) == expected

    def test_parse_id_list(self):
        assert parse_id_list("1, 2,x, 2 ,3") == [1, 2, 3]
        assert parse_id_list("") == []


# -------------------------------------------------------------------
# BufferProcessor
# -------------------------------------------------------------------

class TestBufferProcessor:

    @pytest.mark.asyncio
    async def test_allocate(self):
        buffer = await BufferProcessor().allocate(8)
        assert len(buffer) == 8

    @pytest.mark.asyncio
    async def test_allocate_negative(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            await BufferProcessor().allocate(-1)

    @pytest.mark.asyncio
    async def test_allocate_over_limit(self):
        with pytest.raises(ValueError, match="exceeds limit"):
            await BufferProcessor(max_size=4).allocate(5)

    @pytest.mark.asyncio
    async def test_fill_range(self):
        proc = BufferProcessor()
        buffer = await proc.allocate(6)
        await proc.fill(buffer, 0xFF, offset=2, length=3)
        assert bytes(buffer) == b"\x00\x00\xff\xff\xff\x00"

    @pytest.mark.asyncio
    async def test_fill_large_buffer(self):
        proc = BufferProcessor(max_size=200_000)
        buffer = await proc.allocate(100_000)
        await proc.fill(buffer, 0xAA)
        assert buffer.count(0xAA) == 100_000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs,message", [
        ({"value": 256}, "between 0 and 255"),
        ({"value": 1, "offset": 4}, "offset is out of bounds"),
        ({"value": 1, "offset": 1, "length": 4}, "length is out of bounds"),
    ])
    async def test_fill_validation(self, kwargs, message):
        proc = BufferProcessor()
        buffer = await proc.allocate(4)
        with pytest.raises(ValueError, match=message):
            await proc.fill(buffer, **kwargs)
