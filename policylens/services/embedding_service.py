"""
Embedding service - text to vector with budget slicing, caching and averaging
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from policylens.core.config import settings
from policylens.core.errors import EmbeddingUnavailableError
from policylens.models.chapter import Chapter
from policylens.services.embedding_cache import EmbeddingCache
from policylens.services.text_chunker import TextChunker

logger = logging.getLogger(__name__)


def cosine_similarity(v1: Optional[Sequence[float]], v2: Optional[Sequence[float]]) -> float:
    """
    Cosine similarity in [-1, 1]

    Returns 0 when either vector is empty or has zero magnitude. Vectors of
    different lengths are compared over their common prefix.
    """
    if v1 is None or v2 is None or len(v1) == 0 or len(v2) == 0:
        return 0.0
    n = min(len(v1), len(v2))
    a = np.asarray(v1[:n], dtype=np.float64)
    b = np.asarray(v2[:n], dtype=np.float64)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


class EmbeddingService:
    """Turns text into a single unit vector"""

    similarity = staticmethod(cosine_similarity)

    def __init__(
        self,
        provider,
        cache: EmbeddingCache,
        max_tokens: int = settings.embedding_max_tokens,
        retry_max_tokens: int = settings.embedding_retry_max_tokens,
        chars_per_token: int = settings.embedding_chars_per_token,
        chunker: Optional[TextChunker] = None,
    ):
        """
        Args:
            provider: Embedding collaborator exposing async embed_text(text, task_type)
            cache: Shared embedding cache
            max_tokens: Token budget per request
            retry_max_tokens: Smaller budget used for the single retry
            chars_per_token: Characters assumed per token when slicing
            chunker: Splits chapters at section and sentence boundaries
        """
        self.provider = provider
        self.cache = cache
        self.chunker = chunker or TextChunker(chars_per_token=chars_per_token)
        self.max_tokens = max_tokens
        self.retry_max_tokens = retry_max_tokens
        self.chars_per_token = chars_per_token

    def split_for_budget(self, text: str, max_tokens: int) -> List[str]:
        """Hard-slice text into pieces of at most max_tokens * chars_per_token characters"""
        max_chars = max(1, max_tokens * self.chars_per_token)
        return [text[i:i + max_chars] for i in range(0, len(text), max_chars)]

    async def embed(self, text: str, task_type: Optional[str] = None) -> List[float]:
        """
        Embed text of any length

        Over-budget text is sliced, each slice is embedded (or read from the
        cache) and the results are averaged and renormalized.

        Returns:
            Unit vector, or an empty list when no slice could be embedded.
            CollaboratorUnavailableError propagates.
        """
        text = text.strip()
        if not text:
            return []

        pieces = self.split_for_budget(text, self.max_tokens)
        if len(pieces) > 1:
            logger.info(f"Text of {len(text)} chars split into {len(pieces)} pieces for embedding")

        vectors: List[List[float]] = []
        for piece in pieces:
            vectors.extend(await self._embed_piece(piece, task_type, allow_retry=True))

        if not vectors:
            logger.warning(f"No embedding obtained for text of {len(text)} chars")
            return []
        return self.average(vectors)

    async def _embed_piece(self, piece: str, task_type: Optional[str], allow_retry: bool) -> List[List[float]]:
        key = self._cache_key(piece, task_type)
        cached = await self.cache.get(key)
        if cached is not None:
            return [cached]

        try:
            vector = await self.provider.embed_text(piece, task_type)
        except EmbeddingUnavailableError as e:
            if not allow_retry:
                logger.warning(f"Embedding retry failed for piece of {len(piece)} chars: {e}")
                return []
            logger.warning(
                f"Embedding failed for piece of {len(piece)} chars ({e}), "
                f"retrying with {self.retry_max_tokens}-token budget"
            )
            vectors: List[List[float]] = []
            for sub_piece in self.split_for_budget(piece, self.retry_max_tokens):
                vectors.extend(await self._embed_piece(sub_piece, task_type, allow_retry=False))
            return vectors

        if len(vector) == 0:
            return []
        await self.cache.set(key, vector)
        return [list(vector)]

    async def embed_chapter(self, chapter: Chapter, task_type: Optional[str] = None) -> List[float]:
        """
        Embed a whole chapter

        The chapter is chunked at semantic boundaries first, each chunk is
        embedded with embed() and the chunk vectors are averaged.
        """
        vectors = []
        for chunk in self.chunker.chunk_chapter(chapter):
            vector = await self.embed(f"{chunk.heading}\n{chunk.text}", task_type)
            if vector:
                vectors.append(vector)
        if not vectors:
            return await self.embed(chapter.title, task_type)
        return vectors[0] if len(vectors) == 1 else self.average(vectors)

    def _cache_key(self, piece: str, task_type: Optional[str]) -> str:
        if task_type is None:
            return self.cache.generate_key(piece)
        return self.cache.generate_key(f"{task_type}\n{piece}")

    @staticmethod
    def average(vectors: Sequence[Sequence[float]]) -> List[float]:
        """Element-wise mean renormalized to unit length"""
        mean = np.mean(np.asarray(vectors, dtype=np.float64), axis=0)
        norm = np.linalg.norm(mean)
        if norm == 0:
            return mean.tolist()
        return (mean / norm).tolist()
