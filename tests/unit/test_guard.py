"""Tests for streaming size enforcement."""
import pytest

from docvault.core.exceptions import EmptyUploadError, InvalidUploadError, PayloadTooLargeError
from docvault.ingest.guard import StreamingIngestGuard
from tests.helpers import RecordingStream, byte_stream

MiB = 1024 * 1024


class TestStreamingIngestGuard:
    """Test cases for StreamingIngestGuard."""

    @pytest.mark.asyncio
    async def test_collects_whole_stream(self) -> None:
        guard = StreamingIngestGuard(max_bytes=100, declared_size=10)
        data = await guard.consume(byte_stream(b"hello", b"", b"world"))

        assert data == b"helloworld"
        assert guard.bytes_received == 10

    @pytest.mark.asyncio
    async def test_exactly_at_limit_is_accepted(self) -> None:
        guard = StreamingIngestGuard(max_bytes=8)
        data = await guard.consume(byte_stream(b"1234", b"5678"))
        assert len(data) == 8

    @pytest.mark.asyncio
    async def test_declared_oversize_rejected_before_reading(self) -> None:
        stream = RecordingStream([b"x" * 10])
        guard = StreamingIngestGuard(max_bytes=50 * MiB, declared_size=60 * MiB)

        with pytest.raises(PayloadTooLargeError):
            await guard.consume(stream)

        assert stream.bytes_read == 0
        assert stream.chunks_read == 0

    def test_check_declared_alone(self) -> None:
        with pytest.raises(PayloadTooLargeError):
            StreamingIngestGuard(max_bytes=10, declared_size=11).check_declared()
        StreamingIngestGuard(max_bytes=10, declared_size=10).check_declared()
        StreamingIngestGuard(max_bytes=10).check_declared()

    def test_negative_declared_size_rejected(self) -> None:
        with pytest.raises(InvalidUploadError):
            StreamingIngestGuard(max_bytes=10, declared_size=-1).check_declared()

    @pytest.mark.asyncio
    async def test_lying_sender_aborted_mid_stream(self) -> None:
        """A sender declaring a small size but sending more is cut off."""
        chunks = [b"a" * 4] * 100
        stream = RecordingStream(chunks)
        guard = StreamingIngestGuard(max_bytes=10, declared_size=5)

        with pytest.raises(PayloadTooLargeError):
            await guard.consume(stream)

        # Two chunks accepted (8 bytes), third would exceed, nothing after
        assert stream.chunks_read == 3
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_stream_not_read_after_abort(self) -> None:
        stream = RecordingStream([b"a" * 6, b"b" * 6, b"c" * 6, b"d" * 6])
        guard = StreamingIngestGuard(max_bytes=10)

        with pytest.raises(PayloadTooLargeError):
            await guard.consume(stream)

        assert stream.bytes_read == 12
        assert [chunk async for chunk in stream] == []

    @pytest.mark.asyncio
    async def test_empty_stream_rejected(self) -> None:
        guard = StreamingIngestGuard(max_bytes=10, declared_size=0)
        with pytest.raises(EmptyUploadError):
            await guard.consume(byte_stream())

    @pytest.mark.asyncio
    async def test_only_empty_chunks_rejected(self) -> None:
        guard = StreamingIngestGuard(max_bytes=10)
        with pytest.raises(EmptyUploadError):
            await guard.consume(byte_stream(b"", b""))

    @pytest.mark.asyncio
    async def test_size_is_counted_not_declared(self) -> None:
        guard = StreamingIngestGuard(max_bytes=100, declared_size=3)
        data = await guard.consume(byte_stream(b"0123456789"))

        assert len(data) == 10
        assert guard.bytes_received == 10
