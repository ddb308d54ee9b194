"""Shared types and dataclasses for cross-module use."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class RecordingMode(Enum):
    """What a recording is for."""

    TRANSCRIPTION = "transcription"
    PROMPT = "prompt"
    TTS_READ_ALOUD = "tts_read_aloud"
    LIVE_MEETING = "live_meeting"


class PromptMode(Enum):
    """Prompt flavours that keep separate conversation histories."""

    PROMPT = "prompt"
    PROMPT_AND_READ = "prompt_and_read"


class AttemptOutcome(Enum):
    """Classified outcome of a single request attempt."""

    SUCCESS = "success"
    RETRYABLE_ERROR = "retryable_error"
    FATAL_ERROR = "fatal_error"
    CANCELLED = "cancelled"


@dataclass
class RequestAttempt:
    """One try of a remote exchange, kept only for logging."""

    attempt: int
    elapsed: float
    outcome: AttemptOutcome


@dataclass(frozen=True)
class AudioChunk:
    """A contiguous slice of a source recording.

    ``owned`` is True when the chunk file was created by the chunker and must
    be removed once the operation finishes.
    """

    index: int
    start: float
    duration: float
    byte_size: int
    path: Path
    owned: bool = False

    @property
    def end(self) -> float:
        return self.start + self.duration


class ChunkStatus(Enum):
    """Lifecycle of a single chunk inside a chunked operation."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ChunkResult:
    """Outcome of processing one chunk."""

    index: int
    status: ChunkStatus = ChunkStatus.PENDING
    text: str | None = None
    audio: bytes | None = None
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ChunkStatus.COMPLETED


@dataclass(frozen=True)
class ConversationTurn:
    """A single completed prompt exchange."""

    instruction: str
    response: str
    timestamp: float
    selected_text: str | None = None


@dataclass
class SynthesizedAudio:
    """Raw 16-bit little-endian mono PCM returned by the speech endpoint."""

    pcm: bytes
    sample_rate: int = 24000
    mime_type: str = "audio/L16;codec=pcm;rate=24000"

    @property
    def duration(self) -> float:
        return len(self.pcm) / 2 / self.sample_rate if self.sample_rate else 0.0


@dataclass
class TranscriptionResult:
    """Final text of a transcription or prompt operation."""

    text: str
    chunk_count: int = 1
    failed_chunks: list[int] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed_chunks)
