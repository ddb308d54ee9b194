"""Tests for audio chunking."""

from pathlib import Path

import numpy as np
import pytest
import soundfile

from voice_shortcut.audio_chunker import (
    WAV_HEADER_ALLOWANCE,
    AudioChunker,
    probe,
)
from voice_shortcut.config import ChunkingConfig
from voice_shortcut.errors import EmptyInputError

SAMPLE_RATE = 8000


@pytest.fixture
def make_wav(tmp_path):
    """Factory writing a mono 16-bit sine WAV of the given duration."""

    def _make(duration: float, name: str = "input.wav", sample_rate: int = SAMPLE_RATE) -> Path:
        frames = int(duration * sample_rate)
        t = np.arange(frames) / sample_rate
        samples = (0.3 * np.sin(2 * np.pi * 440 * t) * 32767).astype(np.int16)
        path = tmp_path / name
        soundfile.write(str(path), samples, sample_rate, subtype="PCM_16")
        return path

    return _make


class TestProbe:
    """Tests for probe()."""

    def test_reports_duration_and_size(self, make_wav):
        """Test probe reads frames, rate and file size."""
        path = make_wav(2.0)
        info = probe(path)

        assert info.sample_rate == SAMPLE_RATE
        assert info.channels == 1
        assert info.frames == 2 * SAMPLE_RATE
        assert info.duration == pytest.approx(2.0)
        assert info.byte_size == path.stat().st_size

    def test_unreadable_file(self, tmp_path):
        """Test a non-audio file raises EmptyInputError."""
        path = tmp_path / "bad.wav"
        path.write_bytes(b"not audio at all")
        with pytest.raises(EmptyInputError):
            probe(path)


class TestAudioChunker:
    """Tests for AudioChunker.split."""

    def test_short_file_is_single_unowned_chunk(self, make_wav, tmp_path):
        """Test a file within limits is returned as-is."""
        path = make_wav(3.0)
        chunker = AudioChunker(max_duration=10.0, max_bytes=1024 * 1024, temp_root=tmp_path)

        chunks = chunker.split(path)

        assert len(chunks) == 1
        assert chunks[0].path == path
        assert not chunks[0].owned
        assert chunks[0].start == 0.0

    def test_split_by_duration_covers_source(self, make_wav, tmp_path):
        """Test chunks are contiguous, ordered and sum to the source duration."""
        path = make_wav(10.5)
        chunker = AudioChunker(max_duration=3.0, max_bytes=1024 * 1024, temp_root=tmp_path)

        chunks = chunker.split(path)
        try:
            assert [c.index for c in chunks] == [0, 1, 2, 3]
            assert sum(c.duration for c in chunks) == pytest.approx(10.5, abs=1 / SAMPLE_RATE)
            for previous, current in zip(chunks, chunks[1:]):
                assert current.start == pytest.approx(previous.end)
            assert all(c.duration <= 3.0 for c in chunks)
            assert chunks[-1].duration == pytest.approx(1.5)
            assert all(c.owned and c.path.exists() for c in chunks)
        finally:
            AudioChunker.cleanup(chunks)

    def test_split_by_bytes_stays_below_limit(self, make_wav, tmp_path):
        """Test every chunk file is strictly smaller than max_bytes."""
        path = make_wav(4.0)
        # 2 bytes per frame: roughly one second of audio per chunk
        max_bytes = SAMPLE_RATE * 2 + WAV_HEADER_ALLOWANCE
        chunker = AudioChunker(max_duration=60.0, max_bytes=max_bytes, temp_root=tmp_path)

        chunks = chunker.split(path)
        try:
            assert len(chunks) >= 4
            for chunk in chunks:
                assert chunk.byte_size < max_bytes
                assert chunk.path.stat().st_size == chunk.byte_size
            assert sum(c.duration for c in chunks) == pytest.approx(4.0, abs=1 / SAMPLE_RATE)
        finally:
            AudioChunker.cleanup(chunks)

    def test_chunks_are_valid_wav(self, make_wav, tmp_path):
        """Test chunk files decode back to the original samples."""
        path = make_wav(2.0)
        chunker = AudioChunker(max_duration=0.5, max_bytes=1024 * 1024, temp_root=tmp_path)
        original, _ = soundfile.read(str(path), dtype="int16")

        chunks = chunker.split(path)
        try:
            pieces = [soundfile.read(str(c.path), dtype="int16")[0] for c in chunks]
            np.testing.assert_array_equal(np.concatenate(pieces), original)
        finally:
            AudioChunker.cleanup(chunks)

    def test_cleanup_removes_owned_files_only(self, make_wav, tmp_path):
        """Test cleanup deletes chunk files and directory but never the source."""
        path = make_wav(2.0)
        chunker = AudioChunker(max_duration=0.5, max_bytes=1024 * 1024, temp_root=tmp_path)
        chunks = chunker.split(path)
        chunk_dir = chunks[0].path.parent

        AudioChunker.cleanup(chunks)

        assert not chunk_dir.exists()
        assert path.exists()

        single = chunker.split(make_wav(0.2, name="short.wav"))
        AudioChunker.cleanup(single)
        assert single[0].path.exists()

    def test_empty_audio_rejected(self, make_wav, tmp_path):
        """Test a WAV without frames raises EmptyInputError."""
        path = make_wav(0.0)
        chunker = AudioChunker(max_duration=1.0, max_bytes=1024 * 1024, temp_root=tmp_path)
        with pytest.raises(EmptyInputError):
            chunker.split(path)

    def test_needs_split(self, make_wav):
        """Test needs_split checks both duration and size."""
        info = probe(make_wav(2.0))
        assert AudioChunker(1.0, 10 * 1024 * 1024).needs_split(info)
        assert not AudioChunker(5.0, 10 * 1024 * 1024).needs_split(info)
        assert AudioChunker(5.0, info.byte_size).needs_split(info)

    def test_from_config(self, tmp_path):
        """Test construction from ChunkingConfig."""
        cfg = ChunkingConfig(max_chunk_duration=30.0, max_chunk_bytes=4096, temp_dir=str(tmp_path))
        chunker = AudioChunker.from_config(cfg)
        assert chunker.max_duration == 30.0
        assert chunker.max_bytes == 4096
        assert chunker.temp_root == tmp_path

    def test_invalid_limits(self):
        """Test non-positive limits are rejected."""
        with pytest.raises(ValueError):
            AudioChunker(0, 1024 * 1024)
        with pytest.raises(ValueError):
            AudioChunker(1.0, 100)
