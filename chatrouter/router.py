"""Command router for chatrouter.

Subscribes once to the bot service's event bus, fans the full event
stream out to every registered stream handler, and runs the
command-dispatch pipeline for command-shaped events:

    classify -> parse -> resolve -> execute (isolated per invocation)

Each command invocation runs in its own task. The dispatch loop never
awaits a handler, so a slow command only delays its own completion,
and completions across events may arrive in any order. Every handler
failure is caught at the invocation boundary, logged, and answered
with an error reply; nothing a handler does can end the subscription.

Key classes:
    Router: Registration API plus the dispatch loop.

Key functions:
    log_task_exception: done-callback for fire-and-forget tasks.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

import structlog

from .bot_service import BotService
from .buffers import BufferProcessor
from .commands.base import CommandHandler, CommandRegistry, HandlerContext
from .commands.core import CoreCommandHandler, plain_text_logger
from .config import Config, get_config
from .event_bus import Subscription
from .events import ChatEvent, HandlerResult, ParsedCommand
from .exceptions import CommandHandlerError, RoutingError, UnknownCommandError
from .parser import parse_command

logger = structlog.get_logger("chatrouter.router")

# Stream handler signature: (stream) -> awaitable, or an async iterator of
# side-effect completions that the router drains.
StreamHandler = Callable[[Subscription], Union[Awaitable[None], Any]]


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("background_task_failed", error=str(exc), exc_type=type(exc).__name__)


def _handler_name(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or getattr(handler, "__name__", None) or repr(handler)


class Router:
    """Routes bus events to stream handlers and command handlers.

    Registries are filled before start_routing() and read-only after.

    Args:
        bot_service: Owner of the event bus and of send_message().
        registry: Command registry to use; a fresh one if omitted.
        config: Config instance; defaults to get_config().
        register_defaults: Register the built-in commands and the
            plain-text logging stream handler.
    """

    def __init__(
        self,
        bot_service: BotService,
        registry: Optional[CommandRegistry] = None,
        config: Optional[Config] = None,
        register_defaults: bool = True,
    ):
        self.bot_service = bot_service
        self.config = config if config is not None else get_config()
        self.marker = self.config.command_marker
        self.unknown_command_policy = self.config.unknown_command_policy
        self.registry = registry if registry is not None else CommandRegistry(self.marker)

        self._stream_handlers: List[StreamHandler] = []
        self._stream_subscriptions: List[Subscription] = []
        self._stream_tasks: List[asyncio.Task] = []
        self._subscription: Optional[Subscription] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._started = False

        if register_defaults:
            self._register_default_handlers()

    # --- Registration ---

    def register_command(self, name: str, handler: CommandHandler) -> None:
        """Register a handler for ``/name``. Last registration wins."""
        self.registry.register(name, handler)

    def register_stream_handler(self, handler: StreamHandler) -> None:
        """Register an observer of the full event stream.

        Raises:
            RoutingError: routing has already started.
        """
        if self._started:
            raise RoutingError(
                "cannot register stream handlers after routing started",
                handler=_handler_name(handler),
            )
        self._stream_handlers.append(handler)

    def _register_default_handlers(self) -> None:
        logger.debug("registering_default_handlers")
        ctx = HandlerContext(
            config=self.config,
            send_message=self.bot_service.send_message,
            buffers=BufferProcessor(max_size=self.config.max_buffer_size),
        )
        self.registry.register_group(CoreCommandHandler(ctx))
        self.register_stream_handler(plain_text_logger(self.marker))

    # --- Lifecycle ---

    @property
    def running(self) -> bool:
        return self._started and self._dispatch_task is not None and not self._dispatch_task.done()

    def start_routing(self) -> None:
        """Subscribe to the bus and start dispatching.

        Must be called from a running event loop. Subscriptions are
        created before this returns, so every event published afterwards
        is seen. A second call is ignored.
        """
        if self._started:
            logger.warning("routing_already_started")
            return
        self._started = True
        self.registry.freeze()
        bus = self.bot_service.bus

        for handler in self._stream_handlers:
            name = _handler_name(handler)
            sub = bus.subscribe(name=f"stream:{name}")
            self._stream_subscriptions.append(sub)
            task = asyncio.create_task(self._run_stream_handler(handler, sub, name))
            task.add_done_callback(log_task_exception)
            self._stream_tasks.append(task)

        self._subscription = bus.subscribe(name="router")
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(self._subscription))
        self._dispatch_task.add_done_callback(log_task_exception)

        logger.info(
            "routing_started",
            commands=sorted(self.registry.command_names),
            stream_handlers=len(self._stream_handlers),
            unknown_command_policy=self.unknown_command_policy,
        )

    async def drain(self) -> None:
        """Wait until every queued event is dispatched and all commands finished."""
        while True:
            await asyncio.sleep(0)
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
                continue
            if self._dispatch_task is None or self._dispatch_task.done():
                return
            if self._subscription is None or self._subscription.pending == 0:
                return

    async def stop(self, timeout: float = 5.0) -> None:
        """Close subscriptions and wait for the loops and in-flight commands.

        Stream handlers and commands still running after ``timeout``
        seconds are cancelled.
        """
        if not self._started:
            return
        if self._subscription is not None:
            self._subscription.close()
        for sub in self._stream_subscriptions:
            sub.close()

        if self._dispatch_task is not None:
            await asyncio.gather(self._dispatch_task, return_exceptions=True)

        await self._wait_or_cancel(self._stream_tasks, timeout, "stream_handler")
        await self._wait_or_cancel(list(self._inflight), timeout, "command")
        logger.info("routing_stopped")

    async def _wait_or_cancel(self, tasks: List[asyncio.Task], timeout: float, kind: str) -> None:
        """Give tasks ``timeout`` seconds to finish, then cancel the rest."""
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if not pending:
            return
        logger.warning("cancelling_unfinished_tasks", kind=kind, count=len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # --- Stream handlers ---

    async def _run_stream_handler(
        self, handler: StreamHandler, subscription: Subscription, name: str
    ) -> None:
        try:
            result = handler(subscription)
            if hasattr(result, "__aiter__"):
                async for _ in result:
                    pass
            elif inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "stream_handler_failed",
                handler=name,
                error=str(e),
                exc_type=type(e).__name__,
            )
        finally:
            subscription.close()

    # --- Dispatch ---

    async def _dispatch_loop(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                self._route(event)
            except Exception as e:
                logger.error(
                    "routing_error",
                    chat_id=event.chat_id,
                    error=str(e),
                    exc_type=type(e).__name__,
                )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        task.add_done_callback(log_task_exception)
        return task

    def parse(self, event: ChatEvent) -> Optional[ParsedCommand]:
        """Parse step of the pipeline, including the tagged-command fallback."""
        gate = self.registry.__contains__ if self.unknown_command_policy == "ignore" else None
        parsed = parse_command(event, is_registered=gate, marker=self.marker)
        if parsed is None and event.command:
            parsed = ParsedCommand(command=event.command)
        return parsed

    def _route(self, event: ChatEvent) -> None:
        """Classify, parse, and resolve one event; spawn its execution.

        Synchronous on purpose: once an event is taken off the
        subscription its task exists before the loop yields again.
        """
        if not event.is_command_shaped(self.marker):
            return

        parsed = self.parse(event)
        if parsed is None:
            logger.debug("plain_text_with_marker", chat_id=event.chat_id)
            return

        event = event.with_parsed_command(parsed)
        handler = self.registry.resolve(parsed.command)
        if handler is None:
            self._spawn(self._reply_unknown(event, parsed.command))
            return
        self._spawn(self._execute(event, parsed.command, handler))

    async def _reply_unknown(self, event: ChatEvent, command: str) -> None:
        err = UnknownCommandError(command, marker=self.marker, chat_id=event.chat_id)
        logger.info("command_not_found", command=command, chat_id=event.chat_id)
        await self._send(event.chat_id, err.user_message)

    async def _execute(
        self, event: ChatEvent, command: str, handler: CommandHandler
    ) -> HandlerResult:
        """Run one handler invocation with failure isolation.

        Returns:
            COMPLETED, or SUPPRESSED when the handler asked for nothing
            further or failed.
        """
        logger.info("command_executing", command=command, chat_id=event.chat_id)
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            failure = CommandHandlerError.from_exception(command, exc, marker=self.marker)
            logger.error(
                "command_handler_failed",
                command=command,
                chat_id=event.chat_id,
                kind=failure.kind.value,
                error=failure.message,
                exc_type=type(exc).__name__,
            )
            await self._send(event.chat_id, failure.user_message)
            return HandlerResult.SUPPRESSED

        if isinstance(result, str):
            await self._send(event.chat_id, result)
        elif result is HandlerResult.SUPPRESSED:
            logger.debug("command_suppressed", command=command, chat_id=event.chat_id)
            return HandlerResult.SUPPRESSED
        logger.debug("command_completed", command=command, chat_id=event.chat_id)
        return HandlerResult.COMPLETED

    async def _send(self, chat_id: int, text: str) -> None:
        try:
            await self.bot_service.send_message(chat_id, text)
        except Exception as e:
            logger.error("reply_failed", chat_id=chat_id, error=str(e), exc_type=type(e).__name__)
