"""
Text chunking service that prefers section and sentence boundaries
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, List, Optional

from policylens.core.config import settings
from policylens.models.chapter import Chapter
from policylens.services.text_patterns import PolicyPatterns

logger = logging.getLogger(__name__)


@dataclass
class TextChunk:
    """Container for a single text chunk with metadata"""
    chunk_id: int
    text: str
    token_count: int  # Estimated from characters per token
    heading: str      # Title of the chapter the chunk came from


@dataclass
class _Unit:
    text: str
    separator: str  # Joins the unit to the text before it
    boundary: bool  # Starts a new section


class TextChunker:
    """Line-based chunker for policy text"""

    def __init__(
        self,
        min_length: int = settings.chunk_min_length,
        max_length: int = settings.chunk_max_length,
        chars_per_token: int = settings.embedding_chars_per_token,
    ):
        self.min_length = min_length
        self.max_length = max_length
        self.chars_per_token = chars_per_token

    def chunk(self, text: str, min_length: Optional[int] = None, max_length: Optional[int] = None) -> List[str]:
        """
        Split text into chunks in document order

        A chunk is closed when a heading line arrives and the chunk already
        reaches min_length, or when the next line would push it past
        max_length. Lines longer than max_length are split on sentence
        boundaries, and sentences longer than max_length are sliced.

        Every chunk but the last has a length within [min_length, max_length].
        Joining the chunks reproduces the non-whitespace characters of the
        input in order.

        Args:
            text: Text to split
            min_length: Minimum chunk length, defaults to the configured value
            max_length: Maximum chunk length, defaults to the configured value

        Returns:
            List of chunk strings
        """
        min_length = self.min_length if min_length is None else min_length
        max_length = self.max_length if max_length is None else max_length
        if max_length <= 0 or min_length < 0 or 2 * min_length > max_length:
            raise ValueError(
                f"Invalid chunk bounds min={min_length} max={max_length}; need 0 <= 2*min <= max"
            )

        chunks: List[str] = []
        current = ""
        pending: Deque[_Unit] = deque(self._units(text, max_length))

        while pending:
            unit = pending.popleft()
            if not current:
                current = unit.text
                continue

            if unit.boundary and len(current) >= min_length:
                chunks.append(current)
                current = unit.text
                continue

            if len(current) + len(unit.separator) + len(unit.text) <= max_length:
                current += unit.separator + unit.text
                continue

            if len(current) >= min_length:
                chunks.append(current)
                current = unit.text
                continue

            # Current chunk is still short: fill it to max_length from this unit
            room = max_length - len(current) - len(unit.separator)
            chunks.append(current + unit.separator + unit.text[:room])
            current = ""
            pending.appendleft(_Unit(unit.text[room:], " ", False))

        if current:
            if len(current) < min_length and chunks and len(chunks[-1]) + 1 + len(current) <= max_length:
                chunks[-1] += "\n" + current
            else:
                chunks.append(current)

        logger.debug(f"Split {len(text)} chars into {len(chunks)} chunks")
        return chunks

    def chunk_chapter(self, chapter: Chapter) -> List[TextChunk]:
        """Chunk a chapter's full text, tagging each chunk with the chapter title"""
        return [
            TextChunk(
                chunk_id=index,
                text=piece,
                token_count=max(1, len(piece) // self.chars_per_token),
                heading=chapter.title,
            )
            for index, piece in enumerate(self.chunk(chapter.full_text()))
        ]

    def _units(self, text: str, max_length: int) -> Iterator[_Unit]:
        for line in text.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            boundary = PolicyPatterns.is_heading_line(stripped)
            if len(stripped) <= max_length:
                yield _Unit(stripped, "\n", boundary)
                continue
            for index, piece in enumerate(self._split_long_line(stripped, max_length)):
                yield _Unit(piece, "\n" if index == 0 else " ", boundary and index == 0)

    @staticmethod
    def _split_long_line(line: str, max_length: int) -> Iterator[str]:
        """Split on sentence boundaries; slice sentences that are still too long"""
        for sentence in PolicyPatterns.split_sentences(line):
            sentence = sentence.strip()
            for start in range(0, len(sentence), max_length):
                yield sentence[start:start + max_length]
