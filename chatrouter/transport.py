"""Telegram Bot API transport for chatrouter.

Long-polls getUpdates over aiohttp, validates each update with
pydantic, and hands it to the callbacks registered with on_update()
(by update kind) or on_command() (pre-tagged shortcut commands).
Outbound text goes through send_text().

Key classes:
    TelegramTransport: HTTP client, poll loop, and update dispatch.
    TelegramUpdate / TelegramMessage / TelegramUser / TelegramChat:
        validated payload models.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ErrorCategory, TransportError

logger = structlog.get_logger("chatrouter.transport")

# Bot API hard limit for a single sendMessage text
MAX_MESSAGE_LENGTH = 4096

MEDIA_KINDS = ("document", "photo", "sticker", "audio", "video")


class TelegramUser(BaseModel):
    """Sender profile as delivered by the Bot API."""

    model_config = ConfigDict(extra="ignore")

    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str = "private"
    title: Optional[str] = None
    username: Optional[str] = None


class TelegramMessage(BaseModel):
    """A message update. Only the fields the router needs are typed."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    message_id: int
    date: int = 0
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    caption: Optional[str] = None
    document: Optional[Dict[str, Any]] = None
    photo: Optional[List[Dict[str, Any]]] = None
    sticker: Optional[Dict[str, Any]] = None
    audio: Optional[Dict[str, Any]] = None
    video: Optional[Dict[str, Any]] = None

    @property
    def kind(self) -> str:
        """Update kind: "text", one of MEDIA_KINDS, or "other"."""
        if self.text is not None:
            return "text"
        for kind in MEDIA_KINDS:
            if getattr(self, kind) is not None:
                return kind
        return "other"


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[TelegramMessage] = None


UpdateCallback = Callable[[TelegramUpdate, str], Awaitable[None]]
CommandCallback = Callable[[TelegramUpdate, str], Awaitable[None]]


def command_name(text: str, marker: str = "/") -> Optional[str]:
    """Extract the command name from ``/name``, ``/name args``, or ``/name@bot``."""
    if not text.startswith(marker):
        return None
    parts = text.split(maxsplit=1)
    token = parts[0][len(marker):] if parts else ""
    name = token.split("@", 1)[0]
    return name or None


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split text into chunks the Bot API accepts, preferring line breaks."""
    if len(text) <= limit:
        return [text]
    chunks = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut])
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        chunks.append(remaining)
    return chunks


class TelegramTransport:
    """Telegram Bot API client with long-poll update dispatch.

    Args:
        token: Bot API token.
        api_url: Bot API base URL.
        poll_timeout: getUpdates long-poll timeout in seconds.
        marker: Command marker used for on_command() matching.
        session: Optional pre-built aiohttp session (owned by caller).
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        poll_timeout: int = 30,
        marker: str = "/",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.poll_timeout = poll_timeout
        self.marker = marker
        self.session = session
        self._owns_session = session is None
        self.running = False
        self._offset: Optional[int] = None
        self._update_callbacks: List[Tuple[frozenset, UpdateCallback]] = []
        self._command_callbacks: Dict[str, List[CommandCallback]] = {}

    # --- Subscription API ---

    def on_update(self, kinds: Iterable[str], callback: UpdateCallback) -> None:
        """Deliver updates of the given kinds to ``callback(update, kind)``."""
        self._update_callbacks.append((frozenset(kinds), callback))

    def on_command(self, name: str, callback: CommandCallback) -> None:
        """Deliver ``/name`` messages to ``callback(update, name)``.

        Shortcut commands take precedence: a message matched here is not
        also delivered to on_update() callbacks.
        """
        self._command_callbacks.setdefault(name, []).append(callback)

    # --- Lifecycle ---

    async def start(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        self.running = True

    async def stop(self) -> None:
        self.running = False
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    # --- Bot API calls ---

    async def _call(
        self, method: str, request_timeout: float = 30, **payload: Any
    ) -> Any:
        """POST a Bot API method and return its ``result`` field.

        Raises:
            TransportError: network failure, non-200 status, or ok=false.
        """
        if self.session is None:
            raise TransportError("transport not started", method=method)
        url = f"{self.api_url}/bot{self.token}/{method}"
        try:
            async with self.session.post(
                url, json=payload, timeout=aiohttp.ClientTimeout(total=request_timeout)
            ) as resp:
                status = resp.status
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(str(e) or type(e).__name__, method=method) from e
        except ValueError as e:
            raise TransportError("invalid JSON response", method=method) from e

        if status != 200 or not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            category = (
                ErrorCategory.TRANSIENT
                if status >= 500 or status == 429
                else ErrorCategory.PERMANENT
            )
            raise TransportError(
                description or f"HTTP {status}",
                status=status,
                method=method,
                category=category,
            )
        return data.get("result")

    async def send_text(self, chat_id: int, text: str) -> None:
        """Send a text message, split into API-sized chunks if needed."""
        for chunk in split_message(text):
            await self._call("sendMessage", chat_id=chat_id, text=chunk)

    async def get_updates(self) -> List[dict]:
        payload: Dict[str, Any] = {
            "timeout": self.poll_timeout,
            "allowed_updates": ["message"],
        }
        if self._offset is not None:
            payload["offset"] = self._offset
        result = await self._call(
            "getUpdates", request_timeout=self.poll_timeout + 10, **payload
        )
        return result or []

    # --- Update dispatch ---

    async def handle_update(self, raw: dict) -> None:
        """Validate one raw update and dispatch it to callbacks.

        Callback errors are logged per callback and never stop dispatch.
        """
        update_id = raw.get("update_id") if isinstance(raw, dict) else None
        if isinstance(update_id, int):
            self._offset = max(self._offset or 0, update_id + 1)

        try:
            update = TelegramUpdate.model_validate(raw)
        except ValidationError as e:
            logger.warning("invalid_update", error=str(e)[:200], update_id=update_id)
            return

        message = update.message
        if message is None:
            logger.debug("update_skipped", update_id=update.update_id, reason="no_message")
            return

        kind = message.kind
        if kind == "text":
            name = command_name(message.text, self.marker)
            callbacks = self._command_callbacks.get(name) if name else None
            if callbacks:
                logger.debug("shortcut_command", command=name, chat_id=message.chat.id)
                for callback in callbacks:
                    await self._invoke(callback, update, name)
                return

        for kinds, callback in self._update_callbacks:
            if kind in kinds:
                await self._invoke(callback, update, kind)

    async def _invoke(self, callback, update: TelegramUpdate, tag: str) -> None:
        try:
            await callback(update, tag)
        except Exception as e:
            logger.error(
                "update_callback_error",
                update_id=update.update_id,
                tag=tag,
                error=str(e),
                exc_type=type(e).__name__,
            )

    async def poll_updates(self) -> None:
        """Long-poll getUpdates until stop() is called."""
        reconnect_delay = 1
        MAX_RECONNECT_DELAY = 60

        while self.running:
            try:
                updates = await self.get_updates()
                reconnect_delay = 1
                for raw in updates:
                    await self.handle_update(raw)
            except asyncio.CancelledError:
                break
            except TransportError as e:
                if not e.is_retryable and e.status in (401, 404):
                    logger.error("poll_auth_failed", status=e.status, error=e.message)
                    break
                logger.warning(
                    "poll_error", error=e.message, status=e.status, retry_delay=reconnect_delay
                )
                await asyncio.sleep(reconnect_delay)
                reconnect_delay = min(reconnect_delay * 2, MAX_RECONNECT_DELAY)
            except Exception as e:
                logger.error("poll_exception", error=str(e), exc_type=type(e).__name__)
                await asyncio.sleep(reconnect_delay)
                reconnect_delay = min(reconnect_delay * 2, MAX_RECONNECT_DELAY)
