from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable

from ttschunker.errors import InputError
from ttschunker.models import Segment
from ttschunker.services.markup import utf8_size

logger = logging.getLogger(__name__)

Measure = Callable[[str], int]

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace to one space. Idempotent."""
    return _WHITESPACE.sub(" ", text).strip()


def segment_text(text: str, max_bytes: int, measure: Measure = utf8_size) -> list[Segment]:
    """Split *text* into ordered segments whose wire size fits *max_bytes*.

    *measure* returns the size of a candidate as it will be sent to the
    provider (after markup enrichment), so wrapper overhead is budgeted for.
    """
    return [
        Segment(index=i, text=piece, byte_size=measure(piece))
        for i, piece in enumerate(_split(text, max_bytes, measure))
    ]


def segment_pairs(
    pairs: Iterable[tuple[int, str]], max_bytes: int, measure: Measure = utf8_size
) -> list[Segment]:
    """Segment ordered ``(index, text)`` pairs from a text source into one sequence.

    Pairs are processed in ascending source index; output indices are
    renumbered 0..N-1 so they match the audio key convention.
    """
    pieces: list[str] = []
    for source_index, text in sorted(pairs, key=lambda pair: pair[0]):
        parts = _split(text, max_bytes, measure)
        logger.debug(f"Source part {source_index} produced {len(parts)} segments")
        pieces.extend(parts)
    return [
        Segment(index=i, text=piece, byte_size=measure(piece)) for i, piece in enumerate(pieces)
    ]


def _split(text: str, max_bytes: int, measure: Measure) -> list[str]:
    if max_bytes < 1:
        raise InputError(f"max_bytes must be at least 1, got {max_bytes}")

    normalized = normalize_text(text or "")
    if not normalized:
        return []

    chunks: list[str] = []
    current_chunk = ""

    for sentence in _SENTENCE_BOUNDARY.split(normalized):
        test_chunk = f"{current_chunk} {sentence}" if current_chunk else sentence
        if measure(test_chunk) <= max_bytes:
            current_chunk = test_chunk
            continue

        if current_chunk:
            chunks.append(current_chunk)

        if measure(sentence) <= max_bytes:
            current_chunk = sentence
        else:
            # Sentence alone is too big: fall back to word boundaries
            word_chunks = _split_words(sentence, max_bytes, measure)
            chunks.extend(word_chunks[:-1])
            current_chunk = word_chunks[-1]

    if current_chunk:
        chunks.append(current_chunk)

    return chunks


def _split_words(sentence: str, max_bytes: int, measure: Measure) -> list[str]:
    chunks: list[str] = []
    current_chunk = ""

    for word in sentence.split(" "):
        test_chunk = f"{current_chunk} {word}" if current_chunk else word
        if measure(test_chunk) <= max_bytes:
            current_chunk = test_chunk
            continue

        if current_chunk:
            chunks.append(current_chunk)

        if measure(word) <= max_bytes:
            current_chunk = word
        else:
            char_chunks = _split_chars(word, max_bytes, measure)
            chunks.extend(char_chunks[:-1])
            current_chunk = char_chunks[-1]

    if current_chunk:
        chunks.append(current_chunk)

    return chunks


def _split_chars(word: str, max_bytes: int, measure: Measure) -> list[str]:
    # Slicing str keeps every piece valid UTF-8. A lone character that still
    # does not fit is emitted as-is rather than dropped.
    chunks: list[str] = []
    current_chunk = ""
    for char in word:
        if current_chunk and measure(current_chunk + char) > max_bytes:
            chunks.append(current_chunk)
            current_chunk = char
        else:
            current_chunk += char
    if current_chunk:
        chunks.append(current_chunk)
    return chunks
