"""Sequential transcription of an audio file split into chunks."""

import asyncio
import logging
from pathlib import Path

from voice_shortcut._types import AudioChunk, ChunkResult, ChunkStatus, TranscriptionResult
from voice_shortcut.audio_chunker import AudioChunker
from voice_shortcut.cancellation import CancellationToken, check
from voice_shortcut.errors import SpeechError
from voice_shortcut.gemini import GeminiClient
from voice_shortcut.merger import merge_with_gaps
from voice_shortcut.progress import ChunkProgressObserver, ChunkTracker, NullObserver
from voice_shortcut.text_processing import normalize_transcript

logger = logging.getLogger(__name__)


class ChunkTranscriber:
    """Splits a recording, transcribes chunks in order and merges the texts.

    Chunks run strictly one after another so the merger sees them in order.
    A chunk that fails after its retries becomes a gap marker; the operation
    only fails when every chunk failed. Chunk files are removed on every exit
    path, including cancellation.
    """

    def __init__(
        self,
        client: GeminiClient,
        chunker: AudioChunker,
        *,
        prompt: str,
        model: str | None = None,
    ):
        """Initialize chunk transcriber.

        Args:
            client: GeminiClient used for each chunk request
            chunker: AudioChunker that produces the chunk files
            prompt: Transcription instruction sent with every chunk
            model: Model override (client default if None)
        """
        self.client = client
        self.chunker = chunker
        self.prompt = prompt
        self.model = model

    async def transcribe(
        self,
        path: Path,
        *,
        token: CancellationToken | None = None,
        observer: ChunkProgressObserver | None = None,
    ) -> TranscriptionResult:
        """Transcribe ``path`` chunk by chunk.

        Args:
            path: Source recording
            token: Cancellation token checked between and inside chunk requests
            observer: Receives chunk progress notifications

        Returns:
            Merged transcript with the indices of failed chunks

        Raises:
            SpeechError: The first chunk error when every chunk failed
            asyncio.CancelledError: If cancelled; no further chunk is requested
        """
        observer = observer or NullObserver()
        observer.splitting_started()
        loop = asyncio.get_running_loop()
        split_future = loop.run_in_executor(None, self.chunker.split, Path(path))
        try:
            chunks = await asyncio.shield(split_future)
        except asyncio.CancelledError:
            # The split keeps running in its thread; remove its output when it lands
            split_future.add_done_callback(_cleanup_late_split)
            raise

        try:
            check(token)
            return await self._transcribe_chunks(chunks, token, observer)
        finally:
            self.chunker.cleanup(chunks)

    async def _transcribe_chunks(
        self,
        chunks: list[AudioChunk],
        token: CancellationToken | None,
        observer: ChunkProgressObserver,
    ) -> TranscriptionResult:
        tracker = ChunkTracker(len(chunks))
        results: list[ChunkResult] = []
        logger.info("Transcribing %d chunks", len(chunks))
        observer.chunking_started(len(chunks))

        for chunk in chunks:
            check(token)
            index = chunk.index
            tracker.set(index, ChunkStatus.ACTIVE)
            observer.chunk_started(index)
            logger.debug(
                "Chunk %d/%d: %.1fs-%.1fs (%d bytes)",
                index + 1,
                len(chunks),
                chunk.start,
                chunk.end,
                chunk.byte_size,
            )

            def _on_retry(attempt: int, error: SpeechError, delay: float, index: int = index) -> None:
                observer.chunk_failed(index, error, True)

            try:
                raw = await self.client.transcribe_audio(
                    chunk.path,
                    self.prompt,
                    model=self.model,
                    token=token,
                    on_retry=_on_retry,
                    on_rate_limit=observer.rate_limit_wait,
                )
            except SpeechError as e:
                logger.warning("Chunk %d failed: %s", index + 1, e)
                tracker.set(index, ChunkStatus.FAILED)
                observer.chunk_failed(index, e, False)
                results.append(ChunkResult(index=index, status=ChunkStatus.FAILED, error=e))
                continue

            text = normalize_transcript(raw)
            tracker.set(index, ChunkStatus.COMPLETED)
            observer.chunk_completed(index, text)
            results.append(ChunkResult(index=index, status=ChunkStatus.COMPLETED, text=text))
            logger.debug("Chunk %d completed: %d characters", index + 1, len(text))

        failed = [r for r in results if r.status is ChunkStatus.FAILED]
        if results and len(failed) == len(results):
            logger.error("All %d chunks failed", len(results))
            raise failed[0].error

        check(token)
        observer.merging_started()
        text = merge_with_gaps(results)
        logger.info(
            "Merged %d chunks into %d characters (%d failed)",
            len(results),
            len(text),
            len(failed),
        )
        return TranscriptionResult(
            text=text,
            chunk_count=len(results),
            failed_chunks=[r.index for r in failed],
        )


def _cleanup_late_split(future: asyncio.Future) -> None:
    if future.cancelled() or future.exception() is not None:
        return
    logger.debug("Removing chunks of a split that finished after cancellation")
    AudioChunker.cleanup(future.result())
