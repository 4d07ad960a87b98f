"""Command handler framework for chatrouter.

Provides the BaseCommandHandler ABC, HandlerContext dependency
container, and CommandRegistry for mapping command names to handlers.
"""

from .base import (
    BaseCommandHandler,
    CommandHandler,
    CommandRegistry,
    HandlerContext,
    HandlerReturn,
)

__all__ = [
    "BaseCommandHandler",
    "CommandHandler",
    "CommandRegistry",
    "HandlerContext",
    "HandlerReturn",
]
