"""Central async coordinator driving the state machine from user actions."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from voice_shortcut._types import PromptMode, RecordingMode
from voice_shortcut.cancellation import CancellationToken
from voice_shortcut.errors import NoCredentialError, SpeechError
from voice_shortcut.speech_service import SpeechService
from voice_shortcut.state import (
    Cancel,
    CancelRecording,
    ChunkCompleted,
    ChunkFailed,
    ChunkingStarted,
    ChunkStarted,
    Feedback,
    MergingStarted,
    Phase,
    PhaseChanged,
    Processing,
    Recording,
    RecordingFinished,
    RetryRequested,
    Splitting,
    StartProcessing,
    StartRecording,
    StateMachine,
    TtsSynthesizing,
    phase_for_mode,
)

logger = logging.getLogger(__name__)


class Recorder(Protocol):
    """Audio capture collaborator; produces a finished file on stop()."""

    def start(self, token: CancellationToken | None = None) -> None: ...

    def stop(self) -> Path: ...

    def cancel(self) -> None: ...


class TextSink(Protocol):
    """Receives final text (clipboard, paste, ...)."""

    async def deliver(self, text: str) -> None: ...


class SelectionSource(Protocol):
    """Provides the text the user had selected when a prompt started."""

    async def selected_text(self) -> str | None: ...


@dataclass
class PendingOperation:
    """Everything needed to run (or re-run) one processing step."""

    mode: RecordingMode
    audio_path: Path | None = None
    text: str | None = None
    selected_text: str | None = None

    @property
    def phase(self) -> Phase:
        if self.audio_path is None:
            return TtsSynthesizing()
        return phase_for_mode(self.mode)


class StateProgressObserver:
    """Feeds chunk progress notifications into the state machine."""

    def __init__(self, machine: StateMachine):
        self.machine = machine

    def splitting_started(self) -> None:
        self.machine.dispatch(PhaseChanged(Splitting()))

    def chunking_started(self, total: int) -> None:
        self.machine.dispatch(ChunkingStarted(total))

    def chunk_started(self, index: int) -> None:
        self.machine.dispatch(ChunkStarted(index))

    def chunk_completed(self, index: int, text: str) -> None:
        self.machine.dispatch(ChunkCompleted(index))

    def chunk_failed(self, index: int, error: Exception, will_retry: bool) -> None:
        self.machine.dispatch(ChunkFailed(index, will_retry))

    def merging_started(self) -> None:
        self.machine.dispatch(MergingStarted())

    def rate_limit_wait(self, seconds: float) -> None:
        logger.info("Rate limited, waiting %.0fs before the next request", seconds)
        self.machine.rate_limit_wait(seconds)


class Orchestrator:
    """Coordinates recorder, speech service and state machine.

    A press of a mode's shortcut starts recording; a second press of the same
    mode stops it and starts processing. Cancel always returns to idle without
    feedback. A retryable failure keeps its operation (and audio file) so
    retry() can run it again; other outcomes remove temporary files at once.
    """

    def __init__(
        self,
        recorder: Recorder,
        service: SpeechService,
        *,
        machine: StateMachine | None = None,
        sink: TextSink | None = None,
        selection: SelectionSource | None = None,
    ):
        """Initialize orchestrator with components.

        Args:
            recorder: Recorder instance
            service: SpeechService instance
            machine: StateMachine (created with config feedback durations if None)
            sink: Receives transcription and prompt results
            selection: Supplies selected text for prompt modes
        """
        self.recorder = recorder
        self.service = service
        self.machine = machine or StateMachine(service.config.feedback)
        self.sink = sink
        self.selection = selection
        self.observer = StateProgressObserver(self.machine)

        self._recording_token = CancellationToken("recording")
        self._processing_task: asyncio.Task | None = None
        self._retry_operation: PendingOperation | None = None
        self._temp_files: set[Path] = set()
        self._last_result: str | None = None

        logger.info("Orchestrator initialized in IDLE state")

    @property
    def state(self):
        return self.machine.state

    @property
    def last_result(self) -> str | None:
        return self._last_result

    async def startup(self) -> None:
        """Reset tokens and report configuration problems early."""
        logger.info("Orchestrator startup")
        self._recording_token.reset()
        if not self.service.has_credential():
            if self.service.offline_available():
                logger.warning("No API credential configured, only offline transcription works")
            else:
                logger.warning("No API credential configured")
        logger.info("Orchestrator startup complete")

    async def shutdown(self) -> None:
        """Cancel everything in flight and remove temporary files."""
        logger.info("Orchestrator shutdown starting")
        self._recording_token.cancel()
        if isinstance(self.machine.state, Recording):
            try:
                self.recorder.cancel()
            except Exception as e:
                logger.warning("Error cancelling recorder: %s", e)

        self.service.cancel_all()
        task = self._processing_task
        if task is not None and not task.done():
            logger.debug("Cancelling processing task")
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass

        self._retry_operation = None
        self._cleanup_all()
        self.machine.close()
        logger.info("Orchestrator shutdown complete")

    async def press(self, mode: RecordingMode) -> None:
        """Handle the shortcut of ``mode``.

        Raises:
            RuntimeError: If the recorder cannot start or stop
        """
        state = self.machine.state
        if isinstance(state, Recording):
            if state.mode is mode:
                await self.finish_recording()
            else:
                logger.warning(
                    "Shortcut for %s pressed while recording %s, ignoring",
                    mode.value,
                    state.mode.value,
                )
            return
        if isinstance(state, Processing):
            logger.warning("Shortcut for %s pressed while processing, ignoring", mode.value)
            return
        await self.start_recording(mode)

    async def start_recording(self, mode: RecordingMode) -> None:
        event = StartRecording(
            mode,
            has_credential=self.service.has_credential(),
            offline_model_available=self.service.offline_available(),
        )
        if not isinstance(self.machine.dispatch(event), Recording):
            logger.warning("Cannot start %s recording: preconditions not met", mode.value)
            self.machine.fail(NoCredentialError())
            return

        self._discard_retry()
        self._recording_token.reset()
        try:
            self.recorder.start(token=self._recording_token)
            logger.debug("Audio recorder started with cancellation token")
        except RuntimeError as e:
            logger.error("Failed to start recorder: %s", e)
            self.machine.dispatch(CancelRecording())
            raise

    async def finish_recording(self) -> None:
        state = self.machine.state
        if not isinstance(state, Recording):
            logger.warning("Stop requested while not recording, ignoring")
            return
        if self._recording_token.is_cancelled():
            logger.info("Recording cancelled, skipping processing")
            self.machine.dispatch(CancelRecording())
            return

        try:
            audio_path = Path(self.recorder.stop())
        except RuntimeError as e:
            logger.error("Failed to stop recording: %s", e)
            self.machine.dispatch(CancelRecording())
            raise
        self._temp_files.add(audio_path)
        logger.debug("Audio recording stopped and saved to %s", audio_path)

        self.machine.dispatch(RecordingFinished(audio_path))
        operation = PendingOperation(mode=state.mode, audio_path=audio_path)
        if state.mode in (RecordingMode.PROMPT, RecordingMode.TTS_READ_ALOUD) and self.selection:
            operation.selected_text = await self.selection.selected_text()
        self._spawn(operation)

    async def read_aloud(self, text: str) -> None:
        """Speak ``text`` without a recording step."""
        if isinstance(self.machine.state, (Recording, Processing)):
            logger.warning("Read aloud requested while busy, ignoring")
            return
        self._discard_retry()
        operation = PendingOperation(mode=RecordingMode.TTS_READ_ALOUD, text=text)
        self.machine.dispatch(StartProcessing(operation.phase))
        self._spawn(operation)

    async def cancel(self) -> None:
        """Abort whatever is in flight and return to idle."""
        state = self.machine.state
        if isinstance(state, Recording):
            logger.info("Cancelling recording")
            self._recording_token.cancel()
            self.recorder.cancel()
            self.machine.dispatch(CancelRecording())
            return
        if isinstance(state, Processing):
            logger.info("Cancelling processing")
            self.service.cancel_all()
            if self._processing_task is not None and not self._processing_task.done():
                self._processing_task.cancel()
        self.machine.dispatch(Cancel())

    async def retry(self) -> bool:
        """Re-run the last operation after a retryable failure.

        Returns:
            True if a retry was started
        """
        operation = self._retry_operation
        state = self.machine.state
        if operation is None or not isinstance(state, Feedback) or not state.retryable:
            logger.debug("Nothing to retry")
            return False
        if not isinstance(self.machine.dispatch(RetryRequested(operation.phase)), Processing):
            return False
        self._retry_operation = None
        logger.info("Retrying %s operation", operation.mode.value)
        self._spawn(operation)
        return True

    async def wait(self) -> None:
        """Wait for the current processing task, if any."""
        task = self._processing_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _spawn(self, operation: PendingOperation) -> None:
        self._processing_task = asyncio.create_task(
            self._process(operation), name=f"process-{operation.mode.value}"
        )

    async def _process(self, operation: PendingOperation) -> None:
        try:
            message = await self._execute(operation)
        except asyncio.CancelledError:
            logger.info("Processing of %s cancelled", operation.mode.value)
            # A cancel() that already returned may have been followed by a new operation
            if asyncio.current_task() is self._processing_task and isinstance(
                self.machine.state, Processing
            ):
                self.machine.dispatch(Cancel())
            self._cleanup(operation)
            raise
        except SpeechError as e:
            logger.error("Processing of %s failed: %s", operation.mode.value, e)
            self.machine.fail(e)
            if e.retryable:
                self._retry_operation = operation
            else:
                self._cleanup(operation)
            return
        except Exception as e:
            logger.error("Unexpected processing error: %s", e, exc_info=True)
            self.machine.fail(e)
            self._cleanup(operation)
            return

        self.machine.succeed(message)
        self._cleanup(operation)

    async def _execute(self, operation: PendingOperation) -> str:
        if operation.audio_path is None:
            return await self._speak(operation.text or "")

        if operation.mode in (RecordingMode.TRANSCRIPTION, RecordingMode.LIVE_MEETING):
            result = await self.service.transcribe(operation.audio_path, observer=self.observer)
            await self._deliver(result.text)
            if result.partial:
                return (
                    f"Transcribed {len(result.text)} characters "
                    f"({len(result.failed_chunks)} of {result.chunk_count} chunks failed)"
                )
            return f"Transcribed {len(result.text)} characters"

        prompt_mode = (
            PromptMode.PROMPT_AND_READ
            if operation.mode is RecordingMode.TTS_READ_ALOUD
            else PromptMode.PROMPT
        )
        text = await self.service.prompt(
            operation.audio_path,
            selected_text=operation.selected_text,
            mode=prompt_mode,
            observer=self.observer,
        )
        if prompt_mode is PromptMode.PROMPT:
            await self._deliver(text)
            return f"Prompt answered ({len(text)} characters)"

        self._last_result = text
        self.machine.dispatch(PhaseChanged(TtsSynthesizing()))
        return await self._speak(text)

    async def _speak(self, text: str) -> str:
        played = await self.service.speak(text, observer=self.observer)
        return f"Read aloud {played} chunk(s)"

    async def _deliver(self, text: str) -> None:
        self._last_result = text
        if self.sink is not None:
            await self.sink.deliver(text)

    def _discard_retry(self) -> None:
        if self._retry_operation is not None:
            logger.debug("Discarding pending retry of %s", self._retry_operation.mode.value)
            self._cleanup(self._retry_operation)
            self._retry_operation = None

    def _cleanup(self, operation: PendingOperation) -> None:
        path = operation.audio_path
        if path is None:
            return
        self._temp_files.discard(path)
        _unlink(path)

    def _cleanup_all(self) -> None:
        for temp_file in self._temp_files:
            _unlink(temp_file)
        self._temp_files.clear()


def _unlink(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
            logger.debug("Deleted temporary file: %s", path)
    except OSError as e:
        logger.warning("Error deleting temp file %s: %s", path, e)
