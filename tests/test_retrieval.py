"""Tests for top-K similarity ranking."""

import pytest

from policylens.services.retrieval import top_k

CANDIDATES = {
    "transplants": [1.0, 0.0, 0.0],
    "medications": [0.0, 1.0, 0.0],
    "mixed": [1.0, 1.0, 0.0],
    "empty": [],
}


class TestTopK:
    def test_ranked_by_similarity(self):
        ranked = top_k([1.0, 0.1, 0.0], CANDIDATES, k=3)

        assert [candidate_id for candidate_id, _ in ranked] == ["transplants", "mixed", "medications"]
        assert ranked[0][1] > ranked[1][1] > ranked[2][1]

    def test_k_limits_results(self):
        assert len(top_k([1.0, 0.0, 0.0], CANDIDATES, k=1)) == 1
        assert top_k([1.0, 0.0, 0.0], CANDIDATES, k=0) == []

    def test_empty_vector_scores_zero(self):
        ranked = dict(top_k([1.0, 0.0, 0.0], CANDIDATES, k=10))

        assert ranked["empty"] == 0.0

    def test_ties_keep_input_order(self):
        candidates = {"first": [1.0, 0.0], "second": [2.0, 0.0], "third": [0.0, 1.0]}

        ranked = top_k([1.0, 0.0], candidates, k=2)

        assert [candidate_id for candidate_id, _ in ranked] == ["first", "second"]

    def test_min_similarity(self):
        ranked = top_k([1.0, 0.0, 0.0], CANDIDATES, k=10, min_similarity=0.5)

        assert [candidate_id for candidate_id, _ in ranked] == ["transplants", "mixed"]

    def test_injected_similarity(self):
        by_length = lambda query, vector: float(len(vector))

        ranked = top_k([1.0], {"short": [1.0], "long": [1.0, 2.0, 3.0]}, k=2, similarity=by_length)

        assert ranked == [("long", 3.0), ("short", 1.0)]

    def test_no_candidates(self):
        assert top_k([1.0], {}, k=3) == []


@pytest.mark.parametrize("k", [-1, 0])
def test_non_positive_k(k):
    assert top_k([1.0], {"a": [1.0]}, k=k) == []
