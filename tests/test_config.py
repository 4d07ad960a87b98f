"""Tests for configuration loading and defaults."""

from pathlib import Path
from unittest.mock import patch

import pytest
from structlog.testing import capture_logs

from chatrouter.config import DEFAULT_UPDATE_KINDS, Config


def _make_config(**settings):
    config = Config.__new__(Config)
    config.config_dir = Path("/nonexistent")
    config.settings = settings
    return config


class TestDefaults:

    def test_router_defaults(self):
        config = _make_config()
        assert config.command_marker == "/"
        assert config.unknown_command_policy == "reply"

    def test_transport_defaults(self):
        config = _make_config()
        assert config.telegram_api_url == "https://api.telegram.org"
        assert config.poll_timeout == 30
        assert config.update_kinds == list(DEFAULT_UPDATE_KINDS)
        assert config.shortcut_commands == ["start"]

    def test_command_defaults(self):
        config = _make_config()
        assert config.known_user_ids == []
        assert config.max_buffer_size == 1024 * 1024
        assert config.default_delay_ms == 1000

    def test_logging_defaults(self):
        config = _make_config()
        assert config.logging_level == "INFO"
        assert config.logging_subsystem_levels == {}
        assert config.logging_max_file_size_mb == 10
        assert config.logging_backup_count == 5


class TestOverrides:

    def test_invalid_policy_falls_back(self):
        config = _make_config(router={"unknown_command_policy": "explode"})
        assert config.unknown_command_policy == "reply"

    def test_ignore_policy(self):
        config = _make_config(router={"unknown_command_policy": "ignore"})
        assert config.unknown_command_policy == "ignore"

    @pytest.mark.parametrize("marker", ["", "!!", 5])
    def test_invalid_marker_falls_back(self, marker):
        assert _make_config(router={"command_marker": marker}).command_marker == "/"

    def test_custom_marker(self):
        assert _make_config(router={"command_marker": "!"}).command_marker == "!"

    def test_known_user_ids_drops_non_ints(self):
        config = _make_config(known_user_ids=[1, "two", 3])
        assert config.known_user_ids == [1, 3]

    def test_known_user_ids_wrong_type(self):
        assert _make_config(known_user_ids="1,2").known_user_ids == []

    def test_api_url_trailing_slash(self):
        config = _make_config(telegram={"api_url": "http://localhost:8081/"})
        assert config.telegram_api_url == "http://localhost:8081"

    def test_env_token_takes_precedence(self, monkeypatch):
        config = _make_config(telegram={"bot_token": "from-yaml"})
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")
        assert config.telegram_bot_token == "from-env"

    def test_yaml_token_used_without_env(self, monkeypatch):
        config = _make_config(telegram={"bot_token": "from-yaml"})
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        assert config.telegram_bot_token == "from-yaml"


class TestLoading:

    def test_loads_settings_yaml(self, tmp_path):
        (tmp_path / "settings.yaml").write_text(
            "router:\n"
            "  command_marker: '!'\n"
            "known_user_ids:\n"
            "  - 123456\n"
            "commands:\n"
            "  default_delay_ms: 50\n"
        )
        config = Config(config_dir=tmp_path)
        assert config.command_marker == "!"
        assert config.known_user_ids == [123456]
        assert config.default_delay_ms == 50

    def test_missing_files_give_empty_settings(self, tmp_path):
        with patch("chatrouter.config.load_dotenv") as load_dotenv:
            config = Config(config_dir=tmp_path)
        assert config.settings == {}
        load_dotenv.assert_not_called()

    def test_env_file_is_loaded(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("TELEGRAM_BOT_TOKEN=abc\n")
        with patch("chatrouter.config.load_dotenv") as load_dotenv:
            Config(config_dir=tmp_path)
        load_dotenv.assert_called_once_with(env_file)

    def test_empty_yaml(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("")
        assert Config(config_dir=tmp_path).settings == {}


class TestValidate:

    def test_reports_missing_token_and_bad_values(self, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        config = _make_config(
            router={"unknown_command_policy": "maybe", "command_marker": "//"},
            known_user_ids=[1, "x"],
        )
        with capture_logs() as logs:
            config.validate()
        events = [log["event"] for log in logs]
        assert "telegram_token_missing" in events
        assert events.count("config_invalid_value") == 2
        assert "invalid_known_user_id" in events

    def test_valid_config_is_quiet(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        with capture_logs() as logs:
            _make_config(router={"command_marker": "/"}).validate()
        assert logs == []
