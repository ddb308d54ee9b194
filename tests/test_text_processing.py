"""Tests for transcript post-processing."""

import pytest

from voice_shortcut.errors import NoSpeechDetectedError, ResponseTooShortError
from voice_shortcut.text_processing import (
    normalize_transcript,
    strip_prompt_echo,
    validate_speech_text,
)

PROMPT = "Transcribe this audio verbatim. Return only the transcribed text without any commentary."


class TestStripPromptEcho:
    """Tests for strip_prompt_echo()."""

    def test_strips_known_prefix(self):
        """Test a leading 'Transcription:' label is removed."""
        assert strip_prompt_echo("Transcription: hello there") == "hello there"

    def test_strips_known_suffix(self):
        """Test a trailing prompt fragment is removed."""
        assert strip_prompt_echo("hello there with proper punctuation") == "hello there"

    def test_plain_text_unchanged(self):
        """Test ordinary text passes through."""
        assert strip_prompt_echo("  Meeting at noon.  ") == "Meeting at noon."


class TestValidateSpeechText:
    """Tests for validate_speech_text()."""

    def test_valid_text_returned_trimmed(self):
        """Test valid text is returned without surrounding whitespace."""
        assert validate_speech_text("  hi  ", prompt=PROMPT) == "hi"

    def test_empty_text_too_short(self):
        """Test empty output raises ResponseTooShortError."""
        with pytest.raises(ResponseTooShortError):
            validate_speech_text("   ")

    def test_min_length(self):
        """Test min_length is enforced."""
        with pytest.raises(ResponseTooShortError):
            validate_speech_text("abc", min_length=5)

    def test_full_prompt_echo(self):
        """Test output containing the whole prompt is treated as no speech."""
        with pytest.raises(NoSpeechDetectedError):
            validate_speech_text(f"{PROMPT}", prompt=PROMPT)

    def test_keyword_echo(self):
        """Test output made of prompt keywords is treated as no speech."""
        text = "Please transcribe this audio verbatim without any commentary."
        with pytest.raises(NoSpeechDetectedError):
            validate_speech_text(text)

    def test_keyword_check_can_be_skipped(self):
        """Test answers about transcription style pass when echo checks are off."""
        text = "Write it verbatim, with proper punctuation, and remove filler words."
        assert validate_speech_text(text, check_echo=False) == text


def test_normalize_transcript():
    """Test echo stripping and whitespace normalization combined."""
    assert normalize_transcript("Transcription:   hello    world\n\n\n\nbye") == "hello world\n\nbye"
