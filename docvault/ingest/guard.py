"""Size enforcement for inbound upload streams."""
from collections.abc import AsyncIterable, AsyncIterator

from docvault.core.exceptions import EmptyUploadError, InvalidUploadError, PayloadTooLargeError
from docvault.core.logging import get_logger

logger = get_logger(__name__)


class StreamingIngestGuard:
    """Buffers an upload stream while holding it under a byte ceiling.

    The declared size is checked before anything is read. While reading, a
    chunk that would take the running total past the ceiling is never
    appended: the buffer is dropped, the stream is closed and
    PayloadTooLargeError is raised, so a sender lying about its size cannot
    push more than ``max_bytes`` into memory.

    One guard per upload.

    Example:
        guard = StreamingIngestGuard(max_bytes=50 * 1024 * 1024, declared_size=10)
        guard.check_declared()
        data = await guard.consume(request.stream())
    """

    def __init__(self, max_bytes: int, declared_size: int | None = None) -> None:
        self.max_bytes = max_bytes
        self.declared_size = declared_size
        self.bytes_received = 0

    def check_declared(self) -> None:
        """Reject on the declared size alone.

        Raises:
            InvalidUploadError: If the declared size is negative
            PayloadTooLargeError: If the declared size exceeds the ceiling
        """
        if self.declared_size is None:
            return
        if self.declared_size < 0:
            raise InvalidUploadError(
                "Declared size must not be negative",
                details={"declared_size": self.declared_size},
            )
        if self.declared_size > self.max_bytes:
            raise PayloadTooLargeError(
                f"Upload exceeds {self.max_bytes} byte limit",
                details={"declared_size": self.declared_size, "max_bytes": self.max_bytes},
            )

    async def consume(self, stream: AsyncIterable[bytes]) -> bytes:
        """Read the whole stream into memory.

        Args:
            stream: Async iterable of byte chunks

        Returns:
            The complete upload

        Raises:
            PayloadTooLargeError: Declared or actual size over the ceiling
            EmptyUploadError: Stream ended without any bytes
        """
        self.check_declared()

        buffer = bytearray()
        chunks = aiter(stream)
        async for chunk in chunks:
            if not chunk:
                continue
            if self.bytes_received + len(chunk) > self.max_bytes:
                buffer.clear()
                self.bytes_received += len(chunk)
                await self._close(chunks)
                logger.warning(
                    "Upload aborted mid-stream",
                    bytes_received=self.bytes_received,
                    max_bytes=self.max_bytes,
                    declared_size=self.declared_size,
                )
                raise PayloadTooLargeError(
                    f"Upload exceeds {self.max_bytes} byte limit",
                    details={"max_bytes": self.max_bytes},
                )
            buffer.extend(chunk)
            self.bytes_received += len(chunk)

        if self.bytes_received == 0:
            raise EmptyUploadError("Upload contained no data")

        if self.declared_size is not None and self.declared_size != self.bytes_received:
            logger.info(
                "Declared size differs from received size",
                declared_size=self.declared_size,
                bytes_received=self.bytes_received,
            )

        return bytes(buffer)

    @staticmethod
    async def _close(chunks: AsyncIterator[bytes]) -> None:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
