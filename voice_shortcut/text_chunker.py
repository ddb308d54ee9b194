"""Sentence-aware splitting of long text for speech synthesis."""

import logging
import re

from voice_shortcut.errors import EmptyInputError

logger = logging.getLogger(__name__)

# Latin-style terminators need trailing whitespace; CJK full stops do not.
# Closing quotes and brackets stay with their sentence. Blank lines also end one.
SENTENCE_BOUNDARY = re.compile(
    r"(?<=[.!?…؟।])[\"'”’)\]]*(?:\s+|$)"
    r"|(?<=[。！？])[」』”’)\]]*\s*"
    r"|\n\s*\n"
)


def split_sentences(text: str) -> list[str]:
    """Split text into trimmed, non-empty sentences."""
    sentences = []
    start = 0
    for match in SENTENCE_BOUNDARY.finditer(text):
        end = match.end()
        piece = text[start:end].strip()
        if piece:
            sentences.append(piece)
        start = end
    tail = text[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def hard_split(sentence: str, max_len: int) -> list[str]:
    """Split an oversized sentence at the last whitespace before ``max_len``.

    Falls back to cutting exactly at ``max_len`` when the window holds no
    whitespace.
    """
    pieces = []
    remaining = sentence.strip()
    while len(remaining) > max_len:
        window = remaining[: max_len + 1]
        cut = max(window.rfind(" "), window.rfind("\n"), window.rfind("\t"))
        if cut <= 0:
            piece, remaining = remaining[:max_len], remaining[max_len:]
        else:
            piece, remaining = remaining[:cut], remaining[cut + 1 :]
        piece = piece.strip()
        if piece:
            pieces.append(piece)
        remaining = remaining.strip()
    if remaining:
        pieces.append(remaining)
    return pieces


class TextChunker:
    """Packs whole sentences into chunks no longer than ``max_len`` characters."""

    def __init__(self, max_len: int):
        if max_len <= 0:
            raise ValueError("max_len must be positive")
        self.max_len = max_len

    def needs_chunking(self, text: str) -> bool:
        return len(text.strip()) > self.max_len

    def split(self, text: str) -> list[str]:
        """Split ``text`` into ordered chunks.

        Args:
            text: Input text

        Returns:
            Non-empty, trimmed chunks each at most ``max_len`` characters;
            exactly one chunk when the trimmed text already fits

        Raises:
            EmptyInputError: If the text is empty or whitespace only
        """
        stripped = text.strip()
        if not stripped:
            raise EmptyInputError("Text to synthesize is empty")
        if len(stripped) <= self.max_len:
            return [stripped]

        chunks: list[str] = []
        current = ""
        for sentence in split_sentences(stripped):
            pieces = [sentence] if len(sentence) <= self.max_len else hard_split(sentence, self.max_len)
            for piece in pieces:
                if not current:
                    current = piece
                elif len(current) + 1 + len(piece) <= self.max_len:
                    current = f"{current} {piece}"
                else:
                    chunks.append(current)
                    current = piece
        if current:
            chunks.append(current)

        logger.info(
            "Split %d characters into %d chunks (max %d)", len(stripped), len(chunks), self.max_len
        )
        return chunks
