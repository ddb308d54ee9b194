"""Pipelined speech synthesis with one-ahead prefetch, plus playback."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol

import numpy as np
import soundfile

from voice_shortcut._types import SynthesizedAudio
from voice_shortcut.cancellation import CancellationToken, check
from voice_shortcut.errors import SpeechError
from voice_shortcut.merger import merge_pcm
from voice_shortcut.progress import ChunkProgressObserver, NullObserver

logger = logging.getLogger(__name__)

SynthesizeFunc = Callable[[int, str, CancellationToken | None], Awaitable[SynthesizedAudio]]


class AudioPlayer(Protocol):
    """Plays raw 16-bit mono PCM; ``play`` returns when playback finished."""

    async def play(self, pcm: bytes, sample_rate: int) -> None: ...

    def stop(self) -> None: ...


class SoundDevicePlayer:
    """AudioPlayer backed by sounddevice.

    Blocking playback runs inside a thread pool executor so the event loop
    keeps serving the prefetch request.
    """

    def __init__(self, device: int | str | None = None, executor: ThreadPoolExecutor | None = None):
        self.device = device
        self.executor = executor or ThreadPoolExecutor(max_workers=1)
        self._executor_owned = executor is None

    async def play(self, pcm: bytes, sample_rate: int) -> None:
        samples = np.frombuffer(pcm, dtype="<i2")
        if samples.size == 0:
            return
        loop = asyncio.get_running_loop()
        logger.debug("Playing %.2fs of audio", samples.size / sample_rate)
        await loop.run_in_executor(self.executor, self._play_blocking, samples, sample_rate)

    def _play_blocking(self, samples: np.ndarray, sample_rate: int) -> None:
        import sounddevice

        sounddevice.play(samples, samplerate=sample_rate, device=self.device)
        sounddevice.wait()

    def stop(self) -> None:
        import sounddevice

        sounddevice.stop()

    def close(self) -> None:
        if self._executor_owned:
            self.executor.shutdown(wait=False)


def write_wav(path: Path, pcm: bytes, sample_rate: int) -> Path:
    """Write 16-bit mono PCM to a WAV file."""
    path = Path(path)
    samples = np.frombuffer(pcm, dtype="<i2")
    soundfile.write(str(path), samples, sample_rate, subtype="PCM_16", format="WAV")
    logger.info("Wrote %d samples to %s", samples.size, path)
    return path


class PipelinedSynthesizer:
    """Synthesizes text chunks so playback sounds like one continuous call.

    Chunk 0 is synthesized and awaited; while chunk *i* plays, chunk *i+1*
    is already being synthesized. Cancelling stops playback and the prefetch.
    """

    def __init__(self, synthesize: SynthesizeFunc, player: AudioPlayer | None = None):
        """Initialize synthesizer.

        Args:
            synthesize: Coroutine function (index, text, token) -> SynthesizedAudio
            player: AudioPlayer used by play(); not needed for render()
        """
        self._synthesize = synthesize
        self.player = player

    def _start(
        self,
        index: int,
        chunks: Sequence[str],
        token: CancellationToken | None,
        observer: ChunkProgressObserver,
    ) -> asyncio.Task:
        observer.chunk_started(index)
        return asyncio.create_task(
            self._synthesize(index, chunks[index], token), name=f"tts-chunk-{index}"
        )

    async def _collect(
        self,
        index: int,
        task: asyncio.Task,
        chunks: Sequence[str],
        observer: ChunkProgressObserver,
        errors: list[SpeechError],
    ) -> SynthesizedAudio | None:
        try:
            audio = await task
        except SpeechError as e:
            logger.warning("Speech chunk %d failed: %s", index + 1, e)
            observer.chunk_failed(index, e, False)
            errors.append(e)
            return None
        observer.chunk_completed(index, chunks[index])
        return audio

    async def play(
        self,
        chunks: Sequence[str],
        *,
        token: CancellationToken | None = None,
        observer: ChunkProgressObserver | None = None,
    ) -> int:
        """Synthesize and play ``chunks`` in order.

        Returns:
            Number of chunks that were played

        Raises:
            SpeechError: The first synthesis error when no chunk could be played
            asyncio.CancelledError: If cancelled; the prefetch is cancelled too
        """
        if self.player is None:
            raise RuntimeError("PipelinedSynthesizer.play() needs an AudioPlayer")
        observer = observer or NullObserver()
        total = len(chunks)
        if total == 0:
            return 0

        observer.chunking_started(total)
        errors: list[SpeechError] = []
        played = 0
        pending: asyncio.Task | None = self._start(0, chunks, token, observer)
        try:
            for index in range(total):
                check(token)
                audio = await self._collect(index, pending, chunks, observer, errors)
                pending = None
                if index + 1 < total:
                    pending = self._start(index + 1, chunks, token, observer)
                if audio is None:
                    continue
                check(token)
                await self.player.play(audio.pcm, audio.sample_rate)
                played += 1
        except asyncio.CancelledError:
            logger.info("Speech playback cancelled after %d/%d chunks", played, total)
            self.player.stop()
            raise
        finally:
            if pending is not None and not pending.done():
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)

        if played == 0 and errors:
            raise errors[0]
        logger.info("Played %d/%d speech chunks", played, total)
        return played

    async def render(
        self,
        chunks: Sequence[str],
        *,
        token: CancellationToken | None = None,
        observer: ChunkProgressObserver | None = None,
    ) -> SynthesizedAudio:
        """Synthesize ``chunks`` and return one merged PCM buffer.

        Raises:
            SpeechError: The first synthesis error when every chunk failed
        """
        observer = observer or NullObserver()
        total = len(chunks)
        observer.chunking_started(total)
        errors: list[SpeechError] = []
        parts: list[SynthesizedAudio] = []
        pending: asyncio.Task | None = self._start(0, chunks, token, observer) if total else None
        try:
            for index in range(total):
                check(token)
                audio = await self._collect(index, pending, chunks, observer, errors)
                pending = None
                if index + 1 < total:
                    pending = self._start(index + 1, chunks, token, observer)
                if audio is not None:
                    parts.append(audio)
        finally:
            if pending is not None and not pending.done():
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)

        if not parts:
            if errors:
                raise errors[0]
            return SynthesizedAudio(pcm=b"")
        observer.merging_started()
        rates = {p.sample_rate for p in parts}
        if len(rates) > 1:
            logger.warning("Speech chunks have mixed sample rates %s, using the first", sorted(rates))
        return SynthesizedAudio(
            pcm=merge_pcm([p.pcm for p in parts]),
            sample_rate=parts[0].sample_rate,
            mime_type=parts[0].mime_type,
        )
