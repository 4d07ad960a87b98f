"""Tests for the bot service and its update adapters."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from chatrouter.bot_service import BotService, event_from_command, event_from_update
from chatrouter.config import Config
from chatrouter.event_bus import EventBus
from chatrouter.exceptions import TransportError
from chatrouter.transport import TelegramUpdate


def _make_config(**settings):
    config = Config.__new__(Config)
    config.config_dir = Path("/nonexistent")
    config.settings = settings
    return config


def _update(text="hello", chat_id=42, user_id=7, **message_fields):
    message = {
        "message_id": 1,
        "chat": {"id": chat_id},
        "from": {"id": user_id, "first_name": "Ann"},
    }
    if text is not None:
        message["text"] = text
    message.update(message_fields)
    return TelegramUpdate.model_validate({"update_id": 1, "message": message})


def _make_service(**settings):
    transport = MagicMock()
    transport.send_text = AsyncMock()
    transport.start = AsyncMock()
    transport.stop = AsyncMock()
    transport.poll_updates = AsyncMock()
    service = BotService(transport, bus=EventBus(), config=_make_config(**settings))
    return service, transport


class TestAdapters:

    def test_text_update(self):
        update = _update("/echo hi")
        event = event_from_update(update, "text")
        assert event.chat_id == 42
        assert event.user_id == 7
        assert event.message_text == "/echo hi"
        assert event.command is None
        assert event.parsed_command is None
        assert event.first_name == "Ann"
        assert event.raw is update

    def test_media_update_has_no_text(self):
        update = _update(text=None, document={"file_id": "f"})
        event = event_from_update(update, "document")
        assert event.message_text is None
        assert event.update_type == "document"

    def test_command_update_is_tagged_without_text(self):
        event = event_from_command(_update("/start"), "start")
        assert event.command == "start"
        assert event.message_text is None
        assert event.parsed_command is None
        assert event.update_type == "command"


class TestBotService:

    def test_registers_listeners_from_config(self):
        service, transport = _make_service(
            telegram={"update_kinds": ["text"], "shortcut_commands": ["start", "help"]}
        )
        transport.on_update.assert_called_once_with(["text"], service._on_update)
        registered = [c.args[0] for c in transport.on_command.call_args_list]
        assert registered == ["start", "help"]

    @pytest.mark.asyncio
    async def test_updates_are_published(self):
        service, _ = _make_service()
        sub = service.all_events()
        await service._on_update(_update("hello"), "text")
        await service._on_command(_update("/start"), "start")
        assert sub.pending == 2

    @pytest.mark.asyncio
    async def test_messages_filters_to_text(self):
        service, _ = _make_service()
        messages = service.messages()
        everything = service.all_events()
        await service._on_update(_update(text=None, photo=[{"file_id": "p"}]), "photo")
        await service._on_update(_update("words"), "text")
        await service._on_command(_update("/start"), "start")
        assert everything.pending == 3
        assert messages.pending == 1

    @pytest.mark.asyncio
    async def test_send_message_success(self):
        service, transport = _make_service()
        assert await service.send_message(42, "hi") is True
        transport.send_text.assert_awaited_once_with(42, "hi")

    @pytest.mark.asyncio
    async def test_send_message_failure_is_reported_not_raised(self):
        service, transport = _make_service()
        transport.send_text.side_effect = TransportError("Forbidden", status=403)
        with capture_logs() as logs:
            assert await service.send_message(42, "hi") is False
        failure = [log for log in logs if log["event"] == "send_failed"][0]
        assert failure["kind"] == "transport_failure"
        assert failure["status"] == 403

    @pytest.mark.asyncio
    async def test_start_polling(self):
        service, transport = _make_service()
        await service.start_polling()
        transport.start.assert_awaited_once()
        transport.poll_updates.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_closes_bus(self):
        service, transport = _make_service()
        sub = service.all_events()
        await service.stop()
        transport.stop.assert_awaited_once()
        assert service.bus.closed
        assert sub.closed
