"""Configuration management for chatrouter.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a Config object. Property getters provide safe access with
sensible defaults for the transport, router, example commands, and
logging.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
"""

import os
from pathlib import Path
from typing import List, Optional

import structlog
import yaml
from dotenv import load_dotenv

logger = structlog.get_logger("chatrouter.bot")

DEFAULT_UPDATE_KINDS = ("text", "document", "photo", "sticker", "audio", "video")
UNKNOWN_COMMAND_POLICIES = ("reply", "ignore")


class Config:
    """Central configuration manager for chatrouter.

    Loads settings.yaml and .env from the config directory. Read-only
    after __init__.

    Args:
        config_dir: Path to the config directory. Defaults to
            ``<repo_root>/config/``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)

        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    def validate(self):
        """Validate critical settings at startup.

        Logs warnings/errors but does not raise; main() decides whether
        a missing token is fatal.
        """
        if not self.telegram_bot_token:
            logger.error("telegram_token_missing", setting="telegram.bot_token")

        policy = self.settings.get("router", {}).get("unknown_command_policy")
        if policy is not None and policy not in UNKNOWN_COMMAND_POLICIES:
            logger.error(
                "config_invalid_value",
                key="router.unknown_command_policy",
                value=policy,
                valid=", ".join(UNKNOWN_COMMAND_POLICIES),
            )

        marker = self.settings.get("router", {}).get("command_marker")
        if marker is not None and (not isinstance(marker, str) or len(marker) != 1):
            logger.error("config_invalid_value", key="router.command_marker", value=marker)

        for entry in self.settings.get("known_user_ids", []) or []:
            if not isinstance(entry, int):
                logger.error("invalid_known_user_id", entry=str(entry))

    # --- Transport ---

    @property
    def telegram_bot_token(self) -> str:
        """Bot API token. Env var TELEGRAM_BOT_TOKEN takes precedence."""
        return (
            os.environ.get("TELEGRAM_BOT_TOKEN")
            or self.settings.get("telegram", {}).get("bot_token", "")
        )

    @property
    def telegram_api_url(self) -> str:
        """Bot API base URL (default https://api.telegram.org)."""
        url = self.settings.get("telegram", {}).get("api_url", "https://api.telegram.org")
        return url.rstrip("/")

    @property
    def poll_timeout(self) -> int:
        """Long-poll timeout for getUpdates in seconds (default 30)."""
        return self.settings.get("telegram", {}).get("poll_timeout", 30)

    @property
    def update_kinds(self) -> List[str]:
        """Update kinds published to the event bus."""
        kinds = self.settings.get("telegram", {}).get("update_kinds")
        if not kinds:
            return list(DEFAULT_UPDATE_KINDS)
        return list(kinds)

    @property
    def shortcut_commands(self) -> List[str]:
        """Commands the transport tags before they reach the bus (default ["start"])."""
        return list(self.settings.get("telegram", {}).get("shortcut_commands", ["start"]))

    # --- Router ---

    @property
    def command_marker(self) -> str:
        """Leading character that marks a command (default "/")."""
        marker = self.settings.get("router", {}).get("command_marker", "/")
        if not isinstance(marker, str) or len(marker) != 1:
            return "/"
        return marker

    @property
    def unknown_command_policy(self) -> str:
        """How unregistered marker-prefixed text is treated.

        ``reply`` answers with "command /x not found"; ``ignore`` treats
        the text as plain content unless the transport tagged it.
        """
        policy = self.settings.get("router", {}).get("unknown_command_policy", "reply")
        if policy not in UNKNOWN_COMMAND_POLICIES:
            return "reply"
        return policy

    # --- Example commands ---

    @property
    def known_user_ids(self) -> List[int]:
        """Static allow-list consulted by /check_users."""
        ids = self.settings.get("known_user_ids", [])
        if not isinstance(ids, list):
            logger.error("known_user_ids_invalid_type", type=type(ids).__name__)
            return []
        return [i for i in ids if isinstance(i, int)]

    @property
    def max_buffer_size(self) -> int:
        """Upper bound for /buffer_test allocations in bytes (default 1 MiB)."""
        return self.settings.get("buffers", {}).get("max_size", 1024 * 1024)

    @property
    def default_delay_ms(self) -> int:
        """Delay used by /delay when no argument is given (default 1000)."""
        return self.settings.get("commands", {}).get("default_delay_ms", 1000)

    # --- Logging ---

    @property
    def log_dir(self) -> Path:
        """Get log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path(__file__).parent.parent / "logs"

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Controls console and combined file."""
        log_config = self.settings.get("logging", {})
        return log_config.get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> dict:
        """Per-subsystem log level overrides. E.g. {"router": "DEBUG"}."""
        log_config = self.settings.get("logging", {})
        return log_config.get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("backup_count", 5)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config
