"""Post-processing and validation of model text output."""

import logging

from voice_shortcut.errors import NoSpeechDetectedError, ResponseTooShortError
from voice_shortcut.merger import normalize_whitespace

logger = logging.getLogger(__name__)

PROMPT_PREFIXES = (
    "transcribe this audio",
    "please transcribe",
    "transcription:",
    "audio transcription:",
    "here is the transcription:",
    "the transcription is:",
    "transcribed text:",
    "the audio says:",
)

PROMPT_SUFFIXES = (
    "with proper punctuation",
    "remove filler words",
    "preserve correct punctuation",
)

PROMPT_KEYWORDS = (
    "transcribe this audio",
    "verbatim",
    "without any commentary",
    "proper punctuation",
    "remove filler words",
    "disfluencies",
)


def strip_prompt_echo(text: str) -> str:
    """Remove prompt fragments a model sometimes repeats around its answer."""
    cleaned = text.strip()
    lowered = cleaned.lower()
    for prefix in PROMPT_PREFIXES:
        if lowered.startswith(prefix):
            logger.debug("Removed prompt prefix %r from transcription", prefix)
            cleaned = cleaned[len(prefix):]
            break
    lowered = cleaned.lower().rstrip()
    for suffix in PROMPT_SUFFIXES:
        if lowered.endswith(suffix):
            logger.debug("Removed prompt suffix %r from transcription", suffix)
            cleaned = cleaned.rstrip()[: -len(suffix)]
            break
    return cleaned.strip()


def normalize_transcript(text: str) -> str:
    """Strip prompt echoes and normalize whitespace."""
    return normalize_whitespace(strip_prompt_echo(text))


def validate_speech_text(
    text: str,
    *,
    prompt: str | None = None,
    min_length: int = 1,
    check_echo: bool = True,
) -> str:
    """Reject empty output and obvious prompt echoes.

    Args:
        text: Model output after normalization
        prompt: Instruction that was sent with the audio, if any
        min_length: Minimum number of characters
        check_echo: Apply the transcription prompt-echo heuristics

    Returns:
        The trimmed text

    Raises:
        ResponseTooShortError: If the text is shorter than ``min_length``
        NoSpeechDetectedError: If the text just repeats the instruction
    """
    trimmed = text.strip()
    if len(trimmed) < max(min_length, 1):
        raise ResponseTooShortError(f"Got {len(trimmed)} characters")

    if prompt and prompt.strip() and prompt.strip() in trimmed:
        logger.warning("Model output contains the full transcription prompt")
        raise NoSpeechDetectedError("Model repeated the instruction instead of a transcript")

    if not check_echo:
        return trimmed

    lowered = trimmed.lower()
    hits = sum(1 for keyword in PROMPT_KEYWORDS if keyword in lowered)
    if hits > 2 or lowered.startswith("context:"):
        logger.warning("Model output looks like a prompt echo (%d keywords)", hits)
        raise NoSpeechDetectedError("Model repeated the instruction instead of a transcript")
    return trimmed
