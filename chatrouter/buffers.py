"""Byte buffer helpers used by the /buffer_test command."""

import asyncio
from typing import Optional

import structlog

logger = structlog.get_logger("chatrouter.commands")

DEFAULT_MAX_BUFFER_SIZE = 1024 * 1024


class BufferProcessor:
    """Allocates and fills byte buffers.

    Both operations are coroutines so handlers can await them like any
    other I/O; the work itself happens off the event loop for large
    buffers.

    Args:
        max_size: Largest allocation accepted, in bytes.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_BUFFER_SIZE):
        self.max_size = max_size

    async def allocate(self, size: int) -> bytearray:
        """Create a zeroed buffer of ``size`` bytes.

        Raises:
            ValueError: size is negative or larger than max_size.
        """
        if size < 0:
            raise ValueError("Buffer size cannot be negative")
        if size > self.max_size:
            raise ValueError(f"Buffer size {size} exceeds limit of {self.max_size} bytes")
        buffer = bytearray(size)
        logger.debug("buffer_allocated", size=len(buffer))
        return buffer

    async def fill(
        self,
        buffer: bytearray,
        value: int,
        offset: int = 0,
        length: Optional[int] = None,
    ) -> bytearray:
        """Fill ``length`` bytes of ``buffer`` starting at ``offset``.

        Args:
            buffer: Buffer to fill in place.
            value: Byte value, 0-255.
            offset: Start index.
            length: Number of bytes; defaults to the rest of the buffer.

        Returns:
            The same buffer, filled.

        Raises:
            ValueError: value, offset, or length out of range.
        """
        if length is None:
            length = len(buffer) - offset
        if value < 0 or value > 255:
            raise ValueError("fillValue must be between 0 and 255")
        if offset < 0 or offset >= len(buffer):
            raise ValueError("offset is out of bounds")
        if length < 0 or offset + length > len(buffer):
            raise ValueError("length is out of bounds")

        if length > 64 * 1024:
            await asyncio.to_thread(_fill_range, buffer, value, offset, length)
        else:
            _fill_range(buffer, value, offset, length)
        logger.debug("buffer_filled", value=value, offset=offset, length=length)
        return buffer


def _fill_range(buffer: bytearray, value: int, offset: int, length: int) -> None:
    buffer[offset:offset + length] = bytes([value]) * length
