"""Exception hierarchy for chatrouter.

Every failure the router can observe falls into one of four kinds
(ErrorKind): a parse failure, an unknown command, a failing command
handler, or a failing transport call. Each kind has a dedicated
exception class so call sites can catch precisely, while the
ErrorCategory keeps the retry/escalation classification used for
logging.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (timeout, HTTP 5xx, network)
    PERMANENT = "permanent"          # Not worth retrying (bad input, handler bug)
    INFRASTRUCTURE = "infrastructure"  # Missing token, bad config


class ErrorKind(str, Enum):
    """Closed set of failure kinds handled at the router boundary."""
    PARSE_FAILURE = "parse_failure"
    UNKNOWN_COMMAND = "unknown_command"
    HANDLER_FAILURE = "handler_failure"
    TRANSPORT_FAILURE = "transport_failure"


class ChatRouterError(Exception):
    """Base exception for all chatrouter errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry/escalation decisions.
        module: Originating module name (e.g. "router").
        context: Arbitrary key-value pairs for structured logging.
    """

    kind: Optional[ErrorKind] = None

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Routing exceptions
# ---------------------------------------------------------------------------

class CommandParseError(ChatRouterError):
    """Text looked like a command but did not yield a valid command name.

    Never surfaced to users: the router treats such text as plain content.
    """

    kind = ErrorKind.PARSE_FAILURE

    def __init__(
        self,
        message: str = "",
        *,
        text: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.text = text
        super().__init__(
            message, category=category, module=module or "parser", **context
        )


class UnknownCommandError(ChatRouterError):
    """A parsed command has no registered handler.

    Attributes:
        command: The command name without the marker.
    """

    kind = ErrorKind.UNKNOWN_COMMAND

    def __init__(
        self,
        command: str,
        *,
        marker: str = "/",
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.command = command
        self.marker = marker
        super().__init__(
            f"command {marker}{command} not found",
            category=category,
            module=module or "router",
            **context,
        )

    @property
    def user_message(self) -> str:
        """Reply text sent to the originating chat."""
        return self.message


class CommandHandlerError(ChatRouterError):
    """A command handler raised, synchronously or from its awaited work.

    Attributes:
        command: The command whose handler failed.
        cause: The original exception raised by the handler.
    """

    kind = ErrorKind.HANDLER_FAILURE

    def __init__(
        self,
        message: str = "",
        *,
        command: str = "",
        cause: Optional[BaseException] = None,
        marker: str = "/",
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.command = command
        self.cause = cause
        self.marker = marker
        super().__init__(
            message, category=category, module=module or "router", **context
        )

    @classmethod
    def from_exception(
        cls, command: str, exc: BaseException, marker: str = "/"
    ) -> "CommandHandlerError":
        """Wrap an arbitrary handler exception."""
        if isinstance(exc, ChatRouterError):
            detail = exc.message or type(exc).__name__
        else:
            detail = str(exc) or type(exc).__name__
        err = cls(detail, command=command, cause=exc, marker=marker)
        err.__cause__ = exc
        return err

    @property
    def user_message(self) -> str:
        """Reply text sent to the originating chat."""
        return f"error executing {self.marker}{self.command}: {self.message}"


class RoutingError(ChatRouterError):
    """Misuse of the routing API (e.g. registering after routing started)."""

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message, category=category, module=module or "router", **context
        )


# ---------------------------------------------------------------------------
# Transport exceptions
# ---------------------------------------------------------------------------

class TransportError(ChatRouterError):
    """Error talking to the chat platform.

    Defaults to TRANSIENT: network failures and 5xx responses usually
    clear up. The router never retries; retry policy belongs to the
    transport's caller.

    Attributes:
        status: HTTP status code (if a response was received).
        method: The Bot API method that failed (e.g. "sendMessage").
    """

    kind = ErrorKind.TRANSPORT_FAILURE

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        method: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.status = status
        self.method = method
        super().__init__(
            message, category=category, module=module or "transport", **context
        )


# ---------------------------------------------------------------------------
# Configuration exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(ChatRouterError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental
    and won't resolve by retrying.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, category=category, module=module or "config", **context
        )
