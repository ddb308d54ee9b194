"""Transcription, prompt and speech operations with per-kind cancellation."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import Protocol, TypeVar

from voice_shortcut._types import PromptMode, SynthesizedAudio, TranscriptionResult
from voice_shortcut.audio_chunker import AudioChunker, probe
from voice_shortcut.cancellation import CancellationToken, check
from voice_shortcut.chunk_transcription import ChunkTranscriber
from voice_shortcut.config import Config
from voice_shortcut.credentials import CredentialProvider
from voice_shortcut.errors import (
    EmptyInputError,
    NoCredentialError,
    NoSpeechDetectedError,
    SpeechError,
)
from voice_shortcut.gemini import Content, GeminiClient, GenerateRequest, Part
from voice_shortcut.history import ConversationHistory, user_turn_text
from voice_shortcut.progress import ChunkProgressObserver, NullObserver
from voice_shortcut.synthesizer import AudioPlayer, PipelinedSynthesizer
from voice_shortcut.text_chunker import TextChunker
from voice_shortcut.text_processing import normalize_transcript, validate_speech_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Stored in history for instructions that were only given as audio
SPOKEN_INSTRUCTION = "(spoken instruction, see attached audio)"


class OperationKind(Enum):
    TRANSCRIPTION = "transcription"
    PROMPT = "prompt"
    TTS = "tts"


class OfflineTranscriber(Protocol):
    """On-device recognizer used when no remote credential is configured."""

    def is_available(self) -> bool: ...

    async def transcribe(self, path: Path) -> str: ...


class SpeechService:
    """Runs at most one operation of each kind.

    Starting an operation of a kind that is already running cancels the
    running one first. Each operation gets its own CancellationToken bound to
    its task, so cancel() unwinds it at the current await.
    """

    def __init__(
        self,
        config: Config,
        client: GeminiClient,
        credentials: CredentialProvider,
        *,
        chunker: AudioChunker | None = None,
        history: ConversationHistory | None = None,
        player: AudioPlayer | None = None,
        offline: OfflineTranscriber | None = None,
    ):
        """Initialize speech service.

        Args:
            config: Application configuration
            client: GeminiClient for all remote calls
            credentials: Provider checked before remote operations start
            chunker: AudioChunker (built from config if None)
            history: Prompt conversation history (built from config if None)
            player: AudioPlayer for speak(); synthesize() works without one
            offline: Optional on-device transcriber
        """
        self.config = config
        self.client = client
        self.credentials = credentials
        self.chunker = chunker or AudioChunker.from_config(config.chunking)
        self.history = history or ConversationHistory(
            max_turns=config.history.max_turns,
            expiry_seconds=config.history.expiry_seconds,
        )
        self.player = player
        self.offline = offline
        self.text_chunker = TextChunker(config.tts.max_text_length)
        self._operations: dict[OperationKind, tuple[asyncio.Task, CancellationToken]] = {}

    def has_credential(self) -> bool:
        return self.credentials.get_credential() is not None

    def offline_available(self) -> bool:
        return self.offline is not None and self.offline.is_available()

    def is_running(self, kind: OperationKind) -> bool:
        entry = self._operations.get(kind)
        return entry is not None and not entry[0].done()

    def cancel(self, kind: OperationKind) -> bool:
        """Cancel the running operation of ``kind``.

        Returns:
            True if an operation was running
        """
        entry = self._operations.pop(kind, None)
        if entry is None:
            return False
        task, token = entry
        if task.done():
            return False
        logger.info("Cancelling %s operation", kind.value)
        token.cancel()
        return True

    def cancel_all(self) -> None:
        for kind in list(self._operations):
            self.cancel(kind)

    async def _run(
        self,
        kind: OperationKind,
        factory: Callable[[CancellationToken], Awaitable[T]],
    ) -> T:
        if self.cancel(kind):
            logger.debug("Replaced running %s operation", kind.value)
        token = CancellationToken(kind.value)
        task = asyncio.create_task(factory(token), name=f"speech-{kind.value}")
        token.bind(task)
        self._operations[kind] = (task, token)
        try:
            return await task
        finally:
            current = self._operations.get(kind)
            if current is not None and current[0] is task:
                del self._operations[kind]

    # Transcription

    async def transcribe(
        self,
        path: Path,
        *,
        observer: ChunkProgressObserver | None = None,
    ) -> TranscriptionResult:
        """Transcribe a finished recording.

        Args:
            path: Audio file to transcribe
            observer: Receives chunk progress when the file is split

        Returns:
            TranscriptionResult with the validated text

        Raises:
            NoCredentialError: If no credential and no offline model is available
            NoSpeechDetectedError: If the recording is too short to hold speech
            SpeechError: On any other classified failure
        """
        return await self._run(
            OperationKind.TRANSCRIPTION,
            lambda token: self._transcribe(Path(path), token, observer or NullObserver()),
        )

    async def _transcribe(
        self,
        path: Path,
        token: CancellationToken,
        observer: ChunkProgressObserver,
    ) -> TranscriptionResult:
        if not self.has_credential():
            if self.offline_available():
                logger.info("No credential configured, using offline transcriber")
                text = normalize_transcript(await self.offline.transcribe(path))
                return TranscriptionResult(text=validate_speech_text(text))
            raise NoCredentialError()

        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, probe, path)
        check(token)
        logger.debug(
            "Recording %s: %.2fs, %d bytes", path.name, info.duration, info.byte_size
        )
        if info.duration < self.config.chunking.min_audio_duration:
            raise NoSpeechDetectedError(f"Recording is only {info.duration:.2f}s long")

        prompt = self.config.general.transcription_prompt
        if self.chunker.needs_split(info):
            logger.info("Recording exceeds chunk limits, transcribing in chunks")
            transcriber = ChunkTranscriber(self.client, self.chunker, prompt=prompt)
            result = await transcriber.transcribe(path, token=token, observer=observer)
            result.text = validate_speech_text(result.text, prompt=prompt)
            return result

        raw = await self.client.transcribe_audio(
            path,
            prompt,
            token=token,
            on_rate_limit=observer.rate_limit_wait,
        )
        text = validate_speech_text(normalize_transcript(raw), prompt=prompt)
        logger.info("Transcription successful: %d characters", len(text))
        return TranscriptionResult(text=text)

    # Prompt

    async def prompt(
        self,
        audio_path: Path,
        *,
        selected_text: str | None = None,
        mode: PromptMode = PromptMode.PROMPT,
        observer: ChunkProgressObserver | None = None,
    ) -> str:
        """Apply a spoken instruction, optionally to ``selected_text``.

        Earlier non-expired turns of ``mode`` are sent as context and the new
        exchange is appended to the history on success.
        """
        return await self._run(
            OperationKind.PROMPT,
            lambda token: self._prompt(
                mode,
                SPOKEN_INSTRUCTION,
                selected_text,
                Path(audio_path),
                token,
                observer or NullObserver(),
            ),
        )

    async def prompt_text(
        self,
        instruction: str,
        *,
        selected_text: str | None = None,
        mode: PromptMode = PromptMode.PROMPT,
        observer: ChunkProgressObserver | None = None,
    ) -> str:
        """Apply a typed instruction; same history handling as prompt()."""
        return await self._run(
            OperationKind.PROMPT,
            lambda token: self._prompt(
                mode, instruction, selected_text, None, token, observer or NullObserver()
            ),
        )

    async def _prompt(
        self,
        mode: PromptMode,
        instruction: str,
        selected_text: str | None,
        audio_path: Path | None,
        token: CancellationToken,
        observer: ChunkProgressObserver,
    ) -> str:
        if not self.has_credential():
            raise NoCredentialError()

        parts = [Part.from_text(user_turn_text(instruction, selected_text))]
        if audio_path is not None:
            parts.append(await self.client.audio_part(audio_path, token=token))
        contents = self.history.contents_for_api(mode)
        logger.debug("Prompt context: %d history message(s)", len(contents))
        contents.append(Content(role="user", parts=parts))

        request = GenerateRequest(
            contents=contents,
            system_instruction=self.config.general.prompt_system_instruction,
        )
        response = await self.client.generate(
            self.config.api.prompt_model,
            request,
            token=token,
            on_rate_limit=observer.rate_limit_wait,
            label="PROMPT",
        )
        check(token)
        text = validate_speech_text(response.text, check_echo=False)
        self.history.append(mode, instruction, text, selected_text)
        logger.info("Prompt successful: %d characters", len(text))
        return text

    # Speech

    def _check_speech_text(self, text: str) -> None:
        minimum = self.config.tts.min_text_length
        if len(text.strip()) < minimum:
            raise EmptyInputError(f"Text to read needs at least {minimum} characters")

    def _synthesize_func(self, observer: ChunkProgressObserver):
        async def synthesize(
            index: int, text: str, token: CancellationToken | None
        ) -> SynthesizedAudio:
            def _on_retry(attempt: int, error: SpeechError, delay: float) -> None:
                observer.chunk_failed(index, error, True)

            return await self.client.synthesize_speech(
                text,
                token=token,
                on_retry=_on_retry,
                on_rate_limit=observer.rate_limit_wait,
            )

        return synthesize

    async def speak(
        self,
        text: str,
        *,
        observer: ChunkProgressObserver | None = None,
    ) -> int:
        """Synthesize ``text`` and play it chunk by chunk.

        Returns:
            Number of chunks played

        Raises:
            EmptyInputError: If ``text`` is blank
            RuntimeError: If the service has no AudioPlayer
        """
        if self.player is None:
            raise RuntimeError("SpeechService.speak() needs an AudioPlayer")
        observer = observer or NullObserver()

        async def _speak(token: CancellationToken) -> int:
            self._check_speech_text(text)
            if not self.has_credential():
                raise NoCredentialError()
            chunks = self.text_chunker.split(text)
            logger.info("Speaking %d characters in %d chunk(s)", len(text), len(chunks))
            synthesizer = PipelinedSynthesizer(self._synthesize_func(observer), self.player)
            return await synthesizer.play(chunks, token=token, observer=observer)

        return await self._run(OperationKind.TTS, _speak)

    async def synthesize(
        self,
        text: str,
        *,
        observer: ChunkProgressObserver | None = None,
    ) -> SynthesizedAudio:
        """Synthesize ``text`` into one PCM buffer without playing it."""
        observer = observer or NullObserver()

        async def _render(token: CancellationToken) -> SynthesizedAudio:
            self._check_speech_text(text)
            if not self.has_credential():
                raise NoCredentialError()
            chunks = self.text_chunker.split(text)
            logger.info("Synthesizing %d characters in %d chunk(s)", len(text), len(chunks))
            synthesizer = PipelinedSynthesizer(self._synthesize_func(observer))
            return await synthesizer.render(chunks, token=token, observer=observer)

        return await self._run(OperationKind.TTS, _render)
