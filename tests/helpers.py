"""Shared test helpers and constants."""
from collections.abc import AsyncIterator, Iterable

TEST_BUCKET_NAME = "docvault-test-bucket"
TEST_REGION = "us-east-1"
MAX_TEST_UPLOAD_BYTES = 1024


class RecordingStream:
    """Async byte stream that remembers how much was pulled from it."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks = iter(chunks)
        self.bytes_read = 0
        self.chunks_read = 0
        self.closed = False

    def __aiter__(self) -> "RecordingStream":
        return self

    async def __anext__(self) -> bytes:
        if self.closed:
            raise StopAsyncIteration
        try:
            chunk = next(self._chunks)
        except StopIteration:
            raise StopAsyncIteration from None
        self.chunks_read += 1
        self.bytes_read += len(chunk)
        return chunk

    async def aclose(self) -> None:
        self.closed = True


async def byte_stream(*chunks: bytes) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk
