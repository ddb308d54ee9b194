"""Reassembling per-chunk results into one transcript or one audio stream."""

import logging
import re
from collections.abc import Iterable, Sequence

from voice_shortcut._types import ChunkResult, ChunkStatus
from voice_shortcut.errors import EmptyInputError, UnexpectedResponseShapeError

logger = logging.getLogger(__name__)

MIN_OVERLAP_WORDS = 2
OVERLAP_WINDOW = 5
GAP_MARKER = "[chunk {number} failed]"

_PUNCTUATION_RE = re.compile(r"^[^\w]+|[^\w]+$", re.UNICODE)
_INLINE_SPACE_RE = re.compile(r"[ \t]+")
_MANY_NEWLINES_RE = re.compile(r"\n{3,}")


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces per line, cap blank lines at one, trim."""
    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _MANY_NEWLINES_RE.sub("\n\n", text)
    return text.strip()


def _comparable(word: str) -> str:
    return _PUNCTUATION_RE.sub("", word).lower()


def find_overlap(
    merged: str,
    incoming: str,
    *,
    window: int = OVERLAP_WINDOW,
    min_words: int = MIN_OVERLAP_WORDS,
) -> int:
    """Number of leading words of ``incoming`` that repeat the tail of ``merged``.

    Compares the last ``window`` words of ``merged`` with the first ``window``
    words of ``incoming``, ignoring case and surrounding punctuation, and
    returns the longest suffix/prefix match of at least ``min_words`` words.
    """
    tail = [_comparable(w) for w in merged.split()[-window:]]
    head = [_comparable(w) for w in incoming.split()[:window]]
    for size in range(min(len(tail), len(head)), min_words - 1, -1):
        candidate = tail[-size:]
        if candidate == head[:size] and all(candidate):
            return size
    return 0


def _drop_leading_words(text: str, count: int) -> str:
    remaining = text.lstrip()
    for _ in range(count):
        parts = remaining.split(None, 1)
        remaining = parts[1] if len(parts) > 1 else ""
    return remaining


def merge(texts: Iterable[str]) -> str:
    """Join ordered chunk transcripts, removing words duplicated at boundaries.

    Args:
        texts: Chunk transcripts in chunk order

    Returns:
        Single normalized transcript
    """
    merged = ""
    for index, text in enumerate(texts):
        text = text.strip()
        if not text:
            continue
        if not merged:
            merged = text
            continue
        overlap = find_overlap(merged, text)
        if overlap:
            logger.debug("Dropping %d duplicated boundary words before chunk %d", overlap, index)
            text = _drop_leading_words(text, overlap)
        if text:
            merged = f"{merged} {text}"
    return normalize_whitespace(merged)


def merge_with_gaps(results: Sequence[ChunkResult]) -> str:
    """Merge chunk results in index order, marking failed chunks.

    Overlap removal only happens between neighbouring successful chunks; a gap
    marker resets the comparison so words are never dropped across a gap.
    """
    segments: list[str] = []
    pending: list[str] = []
    for result in sorted(results, key=lambda r: r.index):
        if result.status is ChunkStatus.COMPLETED:
            pending.append(result.text or "")
            continue
        if pending:
            segments.append(merge(pending))
            pending = []
        segments.append(GAP_MARKER.format(number=result.index + 1))
    if pending:
        segments.append(merge(pending))
    return normalize_whitespace(" ".join(s for s in segments if s))


def merge_pcm(chunks: Sequence[bytes]) -> bytes:
    """Concatenate 16-bit PCM chunks in order.

    Raises:
        EmptyInputError: If no chunks are given
        UnexpectedResponseShapeError: If a chunk has an odd byte length
    """
    if not chunks:
        raise EmptyInputError("No audio chunks to merge")
    for index, chunk in enumerate(chunks):
        if len(chunk) % 2:
            raise UnexpectedResponseShapeError(
                f"Audio chunk {index} has odd length {len(chunk)} for 16-bit PCM"
            )
    merged = b"".join(chunks)
    logger.debug("Merged %d audio chunks into %d bytes", len(chunks), len(merged))
    return merged
