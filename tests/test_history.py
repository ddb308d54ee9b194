"""Tests for prompt conversation history."""

import pytest

from voice_shortcut._types import PromptMode
from voice_shortcut.history import ConversationHistory, user_turn_text


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def history(clock):
    """Create history with a 30 second expiry."""
    return ConversationHistory(max_turns=3, expiry_seconds=30.0, clock=clock)


class TestExpiry:
    """Tests for lazy turn expiry."""

    def test_turn_included_just_before_expiry(self, history, clock):
        """Test a turn recorded at T is used at T + expiry - epsilon."""
        history.append(PromptMode.PROMPT, "shorten this", "short")
        clock.now += 30.0 - 0.01

        assert len(history.contents_for_api(PromptMode.PROMPT)) == 2

    def test_turn_excluded_just_after_expiry(self, history, clock):
        """Test a turn recorded at T is dropped at T + expiry + epsilon."""
        history.append(PromptMode.PROMPT, "shorten this", "short")
        clock.now += 30.0 + 0.01

        assert history.contents_for_api(PromptMode.PROMPT) == []
        assert history.turn_count(PromptMode.PROMPT) == 0

    def test_expiry_is_per_turn(self, history, clock):
        """Test only the turns older than the expiry are dropped."""
        history.append(PromptMode.PROMPT, "first", "one")
        clock.now += 20
        history.append(PromptMode.PROMPT, "second", "two")
        clock.now += 15

        turns = history.turns(PromptMode.PROMPT)
        assert [t.instruction for t in turns] == ["second"]

    def test_has_active_history(self, history, clock):
        """Test has_active_history prunes before answering."""
        assert not history.has_active_history(PromptMode.PROMPT)
        history.append(PromptMode.PROMPT, "a", "b")
        assert history.has_active_history(PromptMode.PROMPT)
        clock.now += 31
        assert not history.has_active_history(PromptMode.PROMPT)


class TestContents:
    """Tests for building request contents."""

    def test_alternating_roles_oldest_first(self, history):
        """Test each turn becomes a user message followed by a model message."""
        history.append(PromptMode.PROMPT, "first", "one", selected_text="hello")
        history.append(PromptMode.PROMPT, "second", "two")

        contents = history.contents_for_api(PromptMode.PROMPT)

        assert [c.role for c in contents] == ["user", "model", "user", "model"]
        assert contents[0].parts[0].text == user_turn_text("first", "hello")
        assert "hello" in contents[0].parts[0].text
        assert contents[1].parts[0].text == "one"
        assert contents[3].parts[0].text == "two"

    def test_modes_are_separate(self, history):
        """Test each prompt mode keeps its own history."""
        history.append(PromptMode.PROMPT, "a", "b")

        assert history.contents_for_api(PromptMode.PROMPT_AND_READ) == []
        assert history.turn_count(PromptMode.PROMPT) == 1

    def test_max_turns_evicts_oldest(self, history):
        """Test only the newest max_turns turns are kept."""
        for i in range(5):
            history.append(PromptMode.PROMPT, f"q{i}", f"a{i}")

        assert [t.instruction for t in history.turns(PromptMode.PROMPT)] == ["q2", "q3", "q4"]

    def test_clear(self, history):
        """Test clear and clear_all empty the history."""
        history.append(PromptMode.PROMPT, "a", "b")
        history.append(PromptMode.PROMPT_AND_READ, "c", "d")

        history.clear(PromptMode.PROMPT)
        assert history.turn_count(PromptMode.PROMPT) == 0
        assert history.turn_count(PromptMode.PROMPT_AND_READ) == 1

        history.clear_all()
        assert history.turn_count(PromptMode.PROMPT_AND_READ) == 0


def test_user_turn_text_without_selection():
    """Test the user message without selected text is just the instruction."""
    assert user_turn_text("make it formal") == "VOICE INSTRUCTION: make it formal"


def test_invalid_max_turns():
    """Test max_turns must be positive."""
    with pytest.raises(ValueError):
        ConversationHistory(max_turns=0)
