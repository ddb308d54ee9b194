"""Application state values, events and the pure transition function.

``AppState`` is a closed set of frozen dataclasses. The only way to move
between states is ``transition(state, event)``; ``StateMachine`` owns the
single current value, replaces it as a whole and expires feedback states.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path

from voice_shortcut._types import ChunkStatus, RecordingMode
from voice_shortcut.config import FeedbackConfig
from voice_shortcut.errors import SpeechError, describe

logger = logging.getLogger(__name__)


# Processing phases


@dataclass(frozen=True)
class Transcribing:
    pass


@dataclass(frozen=True)
class Prompting:
    pass


@dataclass(frozen=True)
class TtsSynthesizing:
    pass


@dataclass(frozen=True)
class Splitting:
    pass


@dataclass(frozen=True)
class ProcessingChunks:
    statuses: tuple[ChunkStatus, ...]

    @property
    def completed(self) -> int:
        return sum(1 for s in self.statuses if s is ChunkStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return sum(1 for s in self.statuses if s is ChunkStatus.FAILED)


@dataclass(frozen=True)
class Merging:
    pass


Phase = Transcribing | Prompting | TtsSynthesizing | Splitting | ProcessingChunks | Merging


class FeedbackKind(Enum):
    SUCCESS = "success"
    ERROR = "error"


# States


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Recording:
    mode: RecordingMode


@dataclass(frozen=True)
class Processing:
    phase: Phase
    # Monotonic time a server-requested rate-limit wait ends, while one is running
    rate_limit_until: float | None = None


@dataclass(frozen=True)
class Feedback:
    kind: FeedbackKind
    expires_at: float
    label: str = ""
    message: str = ""
    retryable: bool = False
    retry_after: float | None = None


AppState = Idle | Recording | Processing | Feedback


# Events


@dataclass(frozen=True)
class StartRecording:
    mode: RecordingMode
    has_credential: bool = True
    offline_model_available: bool = False


@dataclass(frozen=True)
class RecordingFinished:
    path: Path


@dataclass(frozen=True)
class CancelRecording:
    pass


@dataclass(frozen=True)
class StartProcessing:
    """Begin an operation that has no recording step (e.g. reading text aloud)."""

    phase: Phase


@dataclass(frozen=True)
class PhaseChanged:
    phase: Phase


@dataclass(frozen=True)
class ChunkingStarted:
    total: int


@dataclass(frozen=True)
class ChunkStarted:
    index: int


@dataclass(frozen=True)
class ChunkCompleted:
    index: int


@dataclass(frozen=True)
class ChunkFailed:
    index: int
    will_retry: bool = False


@dataclass(frozen=True)
class MergingStarted:
    pass


@dataclass(frozen=True)
class RateLimitWaitStarted:
    until: float


@dataclass(frozen=True)
class RateLimitWaitEnded:
    until: float


@dataclass(frozen=True)
class Succeeded:
    at: float
    duration: float
    message: str = ""


@dataclass(frozen=True)
class Failed:
    at: float
    duration: float
    error: BaseException


@dataclass(frozen=True)
class RetryRequested:
    phase: Phase


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class FeedbackExpired:
    at: float


Event = (
    StartRecording
    | RecordingFinished
    | CancelRecording
    | StartProcessing
    | PhaseChanged
    | ChunkingStarted
    | ChunkStarted
    | ChunkCompleted
    | ChunkFailed
    | MergingStarted
    | RateLimitWaitStarted
    | RateLimitWaitEnded
    | Succeeded
    | Failed
    | RetryRequested
    | Cancel
    | FeedbackExpired
)

OFFLINE_CAPABLE_MODES = frozenset({RecordingMode.TRANSCRIPTION, RecordingMode.LIVE_MEETING})


def phase_for_mode(mode: RecordingMode) -> Phase:
    """Processing phase entered when a recording of ``mode`` finishes."""
    if mode is RecordingMode.PROMPT or mode is RecordingMode.TTS_READ_ALOUD:
        return Prompting()
    return Transcribing()


def can_start(event: StartRecording) -> bool:
    """Mode-specific preconditions for starting a recording."""
    if event.has_credential:
        return True
    return event.mode in OFFLINE_CAPABLE_MODES and event.offline_model_available


def _set_chunk(
    phase: ProcessingChunks, index: int, status: ChunkStatus
) -> ProcessingChunks | None:
    if not 0 <= index < len(phase.statuses):
        return None
    current = phase.statuses[index]
    allowed = {
        ChunkStatus.ACTIVE: (ChunkStatus.PENDING, ChunkStatus.FAILED, ChunkStatus.ACTIVE),
        ChunkStatus.COMPLETED: (ChunkStatus.ACTIVE,),
        ChunkStatus.FAILED: (ChunkStatus.ACTIVE,),
    }[status]
    if current not in allowed:
        return None
    statuses = list(phase.statuses)
    statuses[index] = status
    return replace(phase, statuses=tuple(statuses))


def _error_feedback(event: Failed) -> Feedback:
    label, message = describe(event.error)
    error = event.error
    return Feedback(
        kind=FeedbackKind.ERROR,
        expires_at=event.at + event.duration,
        label=label,
        message=message,
        retryable=isinstance(error, SpeechError) and error.retryable,
        retry_after=error.retry_after if isinstance(error, SpeechError) else None,
    )


def transition(state: AppState, event: Event) -> AppState:
    """Compute the next state. Events that do not apply leave ``state`` unchanged."""
    if isinstance(state, (Idle, Feedback)):
        if isinstance(event, StartRecording):
            return Recording(event.mode) if can_start(event) else state
        if isinstance(event, StartProcessing):
            return Processing(event.phase)
        if isinstance(event, Failed):
            # Precondition failures reported before any processing started
            return _error_feedback(event)

    if isinstance(state, Feedback):
        if isinstance(event, FeedbackExpired):
            return Idle() if event.at >= state.expires_at else state
        if isinstance(event, RetryRequested):
            if state.kind is FeedbackKind.ERROR and state.retryable:
                return Processing(event.phase)
            return state
        if isinstance(event, Cancel):
            return Idle()
        return state

    if isinstance(state, Recording):
        if isinstance(event, RecordingFinished):
            return Processing(phase_for_mode(state.mode))
        if isinstance(event, (CancelRecording, Cancel)):
            return Idle()
        return state

    if isinstance(state, Processing):
        phase = state.phase
        if isinstance(event, Cancel):
            return Idle()
        if isinstance(event, Succeeded):
            return Feedback(
                kind=FeedbackKind.SUCCESS,
                expires_at=event.at + event.duration,
                label="Done",
                message=event.message,
            )
        if isinstance(event, Failed):
            return _error_feedback(event)
        if isinstance(event, PhaseChanged):
            return Processing(event.phase)
        if isinstance(event, ChunkingStarted):
            return Processing(ProcessingChunks((ChunkStatus.PENDING,) * event.total))
        if isinstance(event, MergingStarted):
            return Processing(Merging())
        if isinstance(event, RateLimitWaitStarted):
            return replace(state, rate_limit_until=event.until)
        if isinstance(event, RateLimitWaitEnded):
            if state.rate_limit_until == event.until:
                return replace(state, rate_limit_until=None)
            return state
        if isinstance(phase, ProcessingChunks):
            updated = None
            if isinstance(event, ChunkStarted):
                updated = _set_chunk(phase, event.index, ChunkStatus.ACTIVE)
            elif isinstance(event, ChunkCompleted):
                updated = _set_chunk(phase, event.index, ChunkStatus.COMPLETED)
            elif isinstance(event, ChunkFailed):
                status = ChunkStatus.ACTIVE if event.will_retry else ChunkStatus.FAILED
                updated = _set_chunk(phase, event.index, status)
            if updated is not None:
                return Processing(updated)
        return state

    return state


def describe_state(state: AppState) -> str:
    """Short human-readable form used in logs and the CLI."""
    if isinstance(state, Idle):
        return "idle"
    if isinstance(state, Recording):
        return f"recording({state.mode.value})"
    if isinstance(state, Processing):
        phase = state.phase
        if isinstance(phase, ProcessingChunks):
            return f"processing(chunks {phase.completed}/{len(phase.statuses)})"
        return f"processing({type(phase).__name__.lower()})"
    if isinstance(state, Feedback):
        return f"feedback({state.kind.value})"
    return repr(state)


Listener = Callable[[AppState, AppState], None]


class StateMachine:
    """Single owner of the current AppState.

    Listeners see every change as (old, new) whole values. Feedback states
    schedule their own expiry on the running event loop; any later change
    supersedes the pending expiry.
    """

    def __init__(
        self,
        feedback: FeedbackConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize state machine in the idle state.

        Args:
            feedback: Success and error feedback durations
            clock: Monotonic time source, injectable for tests
        """
        self.feedback = feedback or FeedbackConfig()
        self._clock = clock
        self._state: AppState = Idle()
        self._listeners: list[Listener] = []
        self._expiry_handle: asyncio.TimerHandle | None = None
        self._wait_handle: asyncio.TimerHandle | None = None

    @property
    def state(self) -> AppState:
        return self._state

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def dispatch(self, event: Event) -> AppState:
        """Apply ``event`` and return the resulting state."""
        old = self._state
        new = transition(old, event)
        if new == old:
            logger.debug("Event %s ignored in %s", type(event).__name__, describe_state(old))
            return old

        self._state = new
        if type(new) is not type(old) or not isinstance(new, Processing):
            logger.info("State transition: %s -> %s", describe_state(old), describe_state(new))
        else:
            logger.debug("State update: %s -> %s", describe_state(old), describe_state(new))

        self._reschedule_expiry(new)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception as e:
                logger.warning("State listener failed: %s", e, exc_info=True)
        return new

    def succeed(self, message: str = "") -> AppState:
        return self.dispatch(
            Succeeded(at=self._clock(), duration=self.feedback.success_duration, message=message)
        )

    def fail(self, error: BaseException) -> AppState:
        return self.dispatch(
            Failed(at=self._clock(), duration=self.feedback.error_duration, error=error)
        )

    def expire_feedback(self) -> AppState:
        return self.dispatch(FeedbackExpired(at=self._clock()))

    def rate_limit_wait(self, seconds: float) -> AppState:
        """Mark the running operation as waiting out a server rate limit.

        The wait is cleared again after ``seconds`` unless a later update has
        already replaced it.
        """
        until = self._clock() + seconds
        state = self.dispatch(RateLimitWaitStarted(until))
        if not isinstance(state, Processing) or state.rate_limit_until != until:
            return state
        if self._wait_handle is not None:
            self._wait_handle.cancel()
            self._wait_handle = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, rate-limit wait must be ended manually")
            return state
        self._wait_handle = loop.call_later(
            max(0.0, seconds), self.dispatch, RateLimitWaitEnded(until)
        )
        return state

    def _reschedule_expiry(self, state: AppState) -> None:
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
            self._expiry_handle = None
        if not isinstance(state, Feedback):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, feedback expiry must be triggered manually")
            return
        delay = max(0.0, state.expires_at - self._clock())
        self._expiry_handle = loop.call_later(delay, self._on_expiry_timer)

    def _on_expiry_timer(self) -> None:
        self._expiry_handle = None
        state = self._state
        if isinstance(state, Feedback):
            # Loop timers may fire up to one clock tick early
            self.dispatch(FeedbackExpired(at=max(self._clock(), state.expires_at)))

    def close(self) -> None:
        """Cancel pending feedback expiry and rate-limit timers."""
        if self._expiry_handle is not None:
            self._expiry_handle.cancel()
            self._expiry_handle = None
        if self._wait_handle is not None:
            self._wait_handle.cancel()
            self._wait_handle = None
