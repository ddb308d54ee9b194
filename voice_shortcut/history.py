"""Bounded, time-expiring conversation history for follow-up prompts."""

import logging
import time
from collections import deque
from collections.abc import Callable

from voice_shortcut._types import ConversationTurn, PromptMode
from voice_shortcut.gemini import Content, Part

logger = logging.getLogger(__name__)

SELECTED_TEXT_TEMPLATE = (
    "SELECTED TEXT FROM CLIPBOARD (apply the voice instruction to this text):\n\n{text}\n\n"
)
INSTRUCTION_TEMPLATE = "VOICE INSTRUCTION: {instruction}"


def user_turn_text(instruction: str, selected_text: str | None = None) -> str:
    """Text of the user message for one prompt turn."""
    prefix = SELECTED_TEXT_TEMPLATE.format(text=selected_text) if selected_text else ""
    return prefix + INSTRUCTION_TEMPLATE.format(instruction=instruction)


class ConversationHistory:
    """Keeps the last prompt turns per mode.

    Expiry is lazy: turns older than ``expiry_seconds`` are dropped when
    context is built for the next request, not by a background timer.
    """

    def __init__(
        self,
        max_turns: int = 10,
        expiry_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize history.

        Args:
            max_turns: Turns kept per mode; older ones are evicted on append
            expiry_seconds: Age after which a turn no longer feeds context
            clock: Time source in seconds, injectable for tests
        """
        if max_turns <= 0:
            raise ValueError("max_turns must be positive")
        self.max_turns = max_turns
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self._turns: dict[PromptMode, deque[ConversationTurn]] = {
            mode: deque(maxlen=max_turns) for mode in PromptMode
        }

    def append(
        self,
        mode: PromptMode,
        instruction: str,
        response: str,
        selected_text: str | None = None,
    ) -> ConversationTurn:
        """Record a completed exchange."""
        turn = ConversationTurn(
            instruction=instruction,
            response=response,
            timestamp=self._clock(),
            selected_text=selected_text or None,
        )
        self._turns[mode].append(turn)
        logger.debug("Added turn to %s history (total: %d)", mode.value, len(self._turns[mode]))
        return turn

    def prune(self, mode: PromptMode) -> int:
        """Drop expired turns of ``mode`` and return how many were removed."""
        now = self._clock()
        turns = self._turns[mode]
        removed = 0
        while turns and now - turns[0].timestamp > self.expiry_seconds:
            turns.popleft()
            removed += 1
        if removed:
            logger.debug("Expired %d turn(s) from %s history", removed, mode.value)
        return removed

    def turns(self, mode: PromptMode) -> list[ConversationTurn]:
        """Non-expired turns, oldest first."""
        self.prune(mode)
        return list(self._turns[mode])

    def contents_for_api(self, mode: PromptMode) -> list[Content]:
        """History as alternating user/model contents for the next request."""
        contents: list[Content] = []
        for turn in self.turns(mode):
            contents.append(
                Content(role="user", parts=[Part.from_text(user_turn_text(turn.instruction, turn.selected_text))])
            )
            contents.append(Content(role="model", parts=[Part.from_text(turn.response)]))
        return contents

    def clear(self, mode: PromptMode) -> None:
        self._turns[mode].clear()
        logger.debug("Cleared %s history", mode.value)

    def clear_all(self) -> None:
        for mode in PromptMode:
            self._turns[mode].clear()
        logger.debug("Cleared all history")

    def turn_count(self, mode: PromptMode) -> int:
        return len(self._turns[mode])

    def has_active_history(self, mode: PromptMode) -> bool:
        self.prune(mode)
        return bool(self._turns[mode])
