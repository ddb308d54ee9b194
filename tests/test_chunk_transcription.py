"""Tests for chunked transcription."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest
import soundfile

from voice_shortcut.audio_chunker import CHUNK_DIR_PREFIX, AudioChunker
from voice_shortcut.cancellation import CancellationToken
from voice_shortcut.chunk_transcription import ChunkTranscriber
from voice_shortcut.config import MIB
from voice_shortcut.errors import EmptyInputError, ServerFailureError, ServiceUnavailableError

SAMPLE_RATE = 8000


class RecordingObserver:
    """Observer that records every notification in order."""

    def __init__(self):
        self.events = []

    def splitting_started(self):
        self.events.append(("splitting",))

    def chunking_started(self, total):
        self.events.append(("chunking", total))

    def chunk_started(self, index):
        self.events.append(("started", index))

    def chunk_completed(self, index, text):
        self.events.append(("completed", index, text))

    def chunk_failed(self, index, error, will_retry):
        self.events.append(("failed", index, will_retry))

    def merging_started(self):
        self.events.append(("merging",))

    def rate_limit_wait(self, seconds):
        self.events.append(("rate_limit", seconds))


@pytest.fixture
def wav_path(tmp_path):
    """A 7 second mono WAV, three chunks at a 3 second limit."""
    frames = 7 * SAMPLE_RATE
    samples = (np.sin(np.arange(frames) / 10) * 8000).astype(np.int16)
    path = tmp_path / "long.wav"
    soundfile.write(str(path), samples, SAMPLE_RATE, subtype="PCM_16")
    return path


@pytest.fixture
def chunk_root(tmp_path):
    """Directory the chunker writes its temp folders into."""
    return tmp_path / "chunks"


@pytest.fixture
def mock_client():
    """GeminiClient mock with an async transcribe_audio."""
    client = MagicMock()
    client.transcribe_audio = AsyncMock()
    return client


@pytest.fixture
def transcriber(mock_client, chunk_root):
    """ChunkTranscriber with a real chunker at a 3 second limit."""
    chunker = AudioChunker(max_duration=3.0, max_bytes=10 * MIB, temp_root=chunk_root)
    return ChunkTranscriber(mock_client, chunker, prompt="Transcribe", model="gemini-test")


def chunk_dirs(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return [p for p in root.iterdir() if p.name.startswith(CHUNK_DIR_PREFIX)]


class TestChunkTranscriber:
    """Tests for ChunkTranscriber.transcribe()."""

    @pytest.mark.asyncio
    async def test_all_chunks_succeed(self, transcriber, mock_client, wav_path, chunk_root):
        """Test chunks are sent in order and merged."""
        mock_client.transcribe_audio.side_effect = ["alpha one", "beta two", "gamma three"]

        result = await transcriber.transcribe(wav_path)

        assert result.text == "alpha one beta two gamma three"
        assert result.chunk_count == 3
        assert not result.partial
        assert mock_client.transcribe_audio.await_count == 3
        sent = [c.args[0].name for c in mock_client.transcribe_audio.await_args_list]
        assert sent == ["chunk_000.wav", "chunk_001.wav", "chunk_002.wav"]
        assert mock_client.transcribe_audio.await_args.kwargs["model"] == "gemini-test"
        assert chunk_dirs(chunk_root) == []

    @pytest.mark.asyncio
    async def test_overlap_removed(self, transcriber, mock_client, wav_path):
        """Test words repeated across a chunk boundary appear once."""
        mock_client.transcribe_audio.side_effect = [
            "we went to the market",
            "the market was closed",
            "so we went home",
        ]

        result = await transcriber.transcribe(wav_path)

        assert result.text == "we went to the market was closed so we went home"

    @pytest.mark.asyncio
    async def test_partial_failure_marks_gap(self, transcriber, mock_client, wav_path):
        """Test a failed chunk becomes a gap marker and the rest is kept."""
        mock_client.transcribe_audio.side_effect = [
            "alpha one",
            ServiceUnavailableError(),
            "gamma three",
        ]

        result = await transcriber.transcribe(wav_path)

        assert result.text == "alpha one [chunk 2 failed] gamma three"
        assert result.failed_chunks == [1]
        assert result.partial

    @pytest.mark.asyncio
    async def test_all_chunks_fail(self, transcriber, mock_client, wav_path, chunk_root):
        """Test the first error is raised when every chunk failed."""
        first = ServerFailureError(500)
        mock_client.transcribe_audio.side_effect = [
            first,
            ServiceUnavailableError(),
            ServiceUnavailableError(),
        ]

        with pytest.raises(ServerFailureError) as exc_info:
            await transcriber.transcribe(wav_path)

        assert exc_info.value is first
        assert chunk_dirs(chunk_root) == []

    @pytest.mark.asyncio
    async def test_cancel_stops_further_chunks(self, transcriber, mock_client, wav_path, chunk_root):
        """Test cancellation mid-loop sends no more requests and removes chunks."""
        token = CancellationToken()

        async def first_then_cancel(*args, **kwargs):
            token.cancel()
            return "alpha one"

        mock_client.transcribe_audio.side_effect = first_then_cancel

        with pytest.raises(asyncio.CancelledError):
            await transcriber.transcribe(wav_path, token=token)

        assert mock_client.transcribe_audio.await_count == 1
        assert chunk_dirs(chunk_root) == []

    @pytest.mark.asyncio
    async def test_observer_order(self, transcriber, mock_client, wav_path):
        """Test progress notifications arrive in operation order."""
        observer = RecordingObserver()

        async def flaky(path, prompt, **kwargs):
            if path.name == "chunk_001.wav":
                kwargs["on_retry"](1, ServiceUnavailableError(), 1.5)
            return path.stem

        mock_client.transcribe_audio.side_effect = flaky

        await transcriber.transcribe(wav_path, observer=observer)

        assert observer.events == [
            ("splitting",),
            ("chunking", 3),
            ("started", 0),
            ("completed", 0, "chunk_000"),
            ("started", 1),
            ("failed", 1, True),
            ("completed", 1, "chunk_001"),
            ("started", 2),
            ("completed", 2, "chunk_002"),
            ("merging",),
        ]

    @pytest.mark.asyncio
    async def test_unreadable_source(self, transcriber, mock_client, tmp_path):
        """Test a file that is not audio fails before any request."""
        bogus = tmp_path / "bogus.wav"
        bogus.write_bytes(b"not audio at all")

        with pytest.raises(EmptyInputError):
            await transcriber.transcribe(bogus)

        mock_client.transcribe_audio.assert_not_awaited()
