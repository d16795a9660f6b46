"""
Similarity ranking over precomputed vectors
"""
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from policylens.services.embedding_service import cosine_similarity

SimilarityFunction = Callable[[Sequence[float], Sequence[float]], float]


def top_k(
    query_vector: Sequence[float],
    candidates: Mapping[str, Sequence[float]],
    k: int,
    similarity: SimilarityFunction = cosine_similarity,
    min_similarity: Optional[float] = None,
) -> List[Tuple[str, float]]:
    """
    Rank candidates by similarity to the query vector

    Args:
        query_vector: Embedded query
        candidates: Candidate id -> vector, in input order
        k: Maximum number of results
        similarity: Scoring function
        min_similarity: Drop candidates scoring below this value

    Returns:
        (id, similarity) pairs, highest first, ties in input order
    """
    if k <= 0:
        return []
    scored = [(candidate_id, similarity(query_vector, vector)) for candidate_id, vector in candidates.items()]
    if min_similarity is not None:
        scored = [item for item in scored if item[1] >= min_similarity]
    return sorted(scored, key=lambda item: -item[1])[:k]
