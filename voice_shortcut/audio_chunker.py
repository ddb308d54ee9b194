"""Splitting long recordings into time- and size-bounded WAV chunks."""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

import soundfile

from voice_shortcut._types import AudioChunk
from voice_shortcut.config import ChunkingConfig
from voice_shortcut.errors import EmptyInputError, FileTooLargeError

logger = logging.getLogger(__name__)

# Room for the RIFF/fmt/data headers soundfile writes in front of the samples
WAV_HEADER_ALLOWANCE = 1024
CHUNK_DIR_PREFIX = "voice_shortcut_chunks_"


@dataclass(frozen=True)
class AudioInfo:
    """Basic facts about an audio file."""

    frames: int
    sample_rate: int
    channels: int
    byte_size: int

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0


def probe(path: Path) -> AudioInfo:
    """Read frame count, rate and size of an audio file without decoding it.

    Raises:
        EmptyInputError: If the file cannot be read as audio
    """
    path = Path(path)
    try:
        info = soundfile.info(str(path))
    except (RuntimeError, OSError) as e:
        raise EmptyInputError(f"Cannot read audio file {path.name}: {e}") from e
    return AudioInfo(
        frames=info.frames,
        sample_rate=info.samplerate,
        channels=info.channels,
        byte_size=path.stat().st_size,
    )


class AudioChunker:
    """Splits audio at fixed time boundaries.

    Every chunk stays at or under ``max_duration`` seconds and strictly below
    ``max_bytes`` once written. Chunks cover the source contiguously; a short
    trailing chunk is kept.
    """

    def __init__(
        self,
        max_duration: float,
        max_bytes: int,
        temp_root: Path | str | None = None,
    ):
        """Initialize chunker.

        Args:
            max_duration: Maximum chunk duration in seconds
            max_bytes: Exclusive upper bound for each chunk file size
            temp_root: Directory for chunk files (system temp dir if None)
        """
        if max_duration <= 0:
            raise ValueError("max_duration must be positive")
        if max_bytes <= WAV_HEADER_ALLOWANCE:
            raise ValueError(f"max_bytes must exceed {WAV_HEADER_ALLOWANCE}")
        self.max_duration = max_duration
        self.max_bytes = max_bytes
        self.temp_root = Path(temp_root) if temp_root else None

    @classmethod
    def from_config(cls, cfg: ChunkingConfig) -> "AudioChunker":
        return cls(cfg.max_chunk_duration, cfg.max_chunk_bytes, cfg.temp_dir)

    def needs_split(self, info: AudioInfo) -> bool:
        return info.duration > self.max_duration or info.byte_size >= self.max_bytes

    def frames_per_chunk(self, info: AudioInfo) -> int:
        """Largest frame count that satisfies both the duration and byte limits."""
        by_duration = int(self.max_duration * info.sample_rate)
        bytes_per_frame = 2 * info.channels
        by_bytes = (self.max_bytes - WAV_HEADER_ALLOWANCE - 1) // bytes_per_frame
        return max(0, min(by_duration, by_bytes))

    def split(self, path: Path) -> list[AudioChunk]:
        """Split ``path`` into ordered chunks.

        Blocking; call through ``run_in_executor`` from async code.

        Args:
            path: Source audio file

        Returns:
            Ordered chunks. A single un-owned chunk pointing at ``path`` when
            the source already fits both limits.

        Raises:
            EmptyInputError: If the source cannot be read or has no frames
            FileTooLargeError: If a written chunk does not fit under max_bytes
        """
        path = Path(path)
        info = probe(path)
        if info.frames <= 0:
            raise EmptyInputError(f"Audio file has no frames: {path.name}")

        if not self.needs_split(info):
            logger.debug(
                "Audio %s fits limits (%.1fs, %d bytes), no split needed",
                path.name,
                info.duration,
                info.byte_size,
            )
            return [
                AudioChunk(
                    index=0,
                    start=0.0,
                    duration=info.duration,
                    byte_size=info.byte_size,
                    path=path,
                    owned=False,
                )
            ]

        frames_per_chunk = self.frames_per_chunk(info)
        if frames_per_chunk <= 0:
            raise FileTooLargeError(
                f"Cannot fit any audio into {self.max_bytes} byte chunks"
            )

        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        chunk_dir = Path(tempfile.mkdtemp(prefix=CHUNK_DIR_PREFIX, dir=self.temp_root))
        logger.info(
            "Splitting %s (%.1fs, %d bytes) into %d-frame chunks in %s",
            path.name,
            info.duration,
            info.byte_size,
            frames_per_chunk,
            chunk_dir,
        )

        chunks: list[AudioChunk] = []
        try:
            with soundfile.SoundFile(str(path)) as source:
                start_frame = 0
                while start_frame < info.frames:
                    block = source.read(frames=frames_per_chunk, dtype="int16", always_2d=True)
                    if len(block) == 0:
                        break
                    index = len(chunks)
                    chunk_path = chunk_dir / f"chunk_{index:03d}.wav"
                    soundfile.write(
                        str(chunk_path), block, info.sample_rate, subtype="PCM_16", format="WAV"
                    )
                    size = chunk_path.stat().st_size
                    if size >= self.max_bytes:
                        raise FileTooLargeError(
                            f"Chunk {index} is {size} bytes, limit is {self.max_bytes}"
                        )
                    chunks.append(
                        AudioChunk(
                            index=index,
                            start=start_frame / info.sample_rate,
                            duration=len(block) / info.sample_rate,
                            byte_size=size,
                            path=chunk_path,
                            owned=True,
                        )
                    )
                    start_frame += len(block)
        except (RuntimeError, OSError, FileTooLargeError) as e:
            logger.warning("Splitting %s failed, removing partial chunks: %s", path.name, e)
            shutil.rmtree(chunk_dir, ignore_errors=True)
            if isinstance(e, FileTooLargeError):
                raise
            raise EmptyInputError(f"Cannot split audio file {path.name}: {e}") from e

        logger.info("Created %d chunks from %s", len(chunks), path.name)
        return chunks

    @staticmethod
    def cleanup(chunks: list[AudioChunk]) -> None:
        """Delete chunk files this chunker created and their directory."""
        dirs: set[Path] = set()
        for chunk in chunks:
            if not chunk.owned:
                continue
            dirs.add(chunk.path.parent)
            try:
                chunk.path.unlink(missing_ok=True)
                logger.debug("Deleted chunk file: %s", chunk.path)
            except OSError as e:
                logger.warning("Error deleting chunk file %s: %s", chunk.path, e)
        for directory in dirs:
            if directory.name.startswith(CHUNK_DIR_PREFIX):
                shutil.rmtree(directory, ignore_errors=True)
