"""
Comparison analytics - token usage and cost estimates per policy
"""
import logging
import math
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

import tiktoken

from policylens.core.config import settings
from policylens.models.chapter import Policy
from policylens.models.comparison import ComparisonResult

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]


@dataclass
class PolicyAnalytics:
    policy_id: str
    token_count: int
    processing_time: float
    chapter_count: int
    extracted_coverage_count: int
    cost: float

    def to_dict(self) -> Dict:
        return asdict(self)


class ComparisonAnalytics:
    """
    Estimates what a comparison cost

    Only part of each policy reaches the completion service (the relevant
    excerpts), so the cost model applies sent_fraction to the policy's
    token count and splits the result between input and output tokens.
    """

    sent_fraction = 0.25
    input_share = 0.75

    def __init__(
        self,
        token_counter: Optional[TokenCounter] = None,
        input_token_price: float = settings.input_token_price,
        output_token_price: float = settings.output_token_price,
        chars_per_token: int = settings.embedding_chars_per_token,
    ):
        """
        Args:
            token_counter: Counts tokens in a text, tiktoken cl100k_base when None
            input_token_price: USD per million input tokens
            output_token_price: USD per million output tokens
            chars_per_token: Characters per token when the counter is unavailable
        """
        self._token_counter = token_counter
        self.input_token_price = input_token_price
        self.output_token_price = output_token_price
        self.chars_per_token = chars_per_token

    def count_tokens(self, text: str) -> int:
        """Token count of a text, a character-based estimate when the counter fails"""
        try:
            if self._token_counter is None:
                encoding = tiktoken.get_encoding("cl100k_base")
                self._token_counter = lambda value: len(encoding.encode(value))
            return self._token_counter(text)
        except Exception as e:
            logger.warning(f"Token counting failed, estimating from length: {e}")
            return max(1, math.ceil(len(text) / self.chars_per_token))

    def estimate_tokens(self, policy: Policy) -> int:
        """Token count of a policy's chapter text, or of its source text when it has no chapters"""
        if policy.chapters:
            text = "\n".join(chapter.full_text() for chapter in policy.chapters)
        else:
            text = policy.text
        return self.count_tokens(text) if text else 0

    def estimate_cost(self, token_count: int) -> float:
        sent = token_count * self.sent_fraction
        input_tokens = math.ceil(sent * self.input_share)
        output_tokens = math.ceil(sent * (1 - self.input_share))
        return (input_tokens * self.input_token_price + output_tokens * self.output_token_price) / 1_000_000

    @staticmethod
    def count_extracted_coverage(result: ComparisonResult, side: str) -> int:
        """Questions the given side ('A' or 'B') answered"""
        count = 0
        for chapter in result.chapter_comparisons.values():
            count += len(chapter.coverage_comparisons)
            # A question missing in B was answered by A only, and vice versa
            count += len(chapter.missing_in_b if side == "A" else chapter.missing_in_a)
        return count

    def analyze(
        self,
        result: ComparisonResult,
        policy_a: Policy,
        policy_b: Policy,
        processing_time: float,
    ) -> Dict[str, PolicyAnalytics]:
        """
        Per-policy and total analytics of one comparison

        Returns:
            Dict with keys policy_a, policy_b and total
        """
        per_policy = {}
        for key, policy, side in (("policy_a", policy_a, "A"), ("policy_b", policy_b, "B")):
            tokens = self.estimate_tokens(policy)
            per_policy[key] = PolicyAnalytics(
                policy_id=policy.id,
                token_count=tokens,
                processing_time=processing_time / 2,
                chapter_count=len(policy.chapters),
                extracted_coverage_count=self.count_extracted_coverage(result, side),
                cost=self.estimate_cost(tokens),
            )

        a, b = per_policy["policy_a"], per_policy["policy_b"]
        per_policy["total"] = PolicyAnalytics(
            policy_id="total",
            token_count=a.token_count + b.token_count,
            processing_time=processing_time,
            chapter_count=a.chapter_count + b.chapter_count,
            extracted_coverage_count=a.extracted_coverage_count + b.extracted_coverage_count,
            cost=a.cost + b.cost,
        )
        logger.info(f"Comparison analytics: {per_policy['total'].token_count} tokens, ${per_policy['total'].cost:.4f}")
        return per_policy
