"""
Comparison result models

These form the output contract handed to report renderers, so they
serialise with camelCase aliases.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BetterPolicy(str, Enum):
    """Verdict of a pairwise comparison"""
    A = "A"
    B = "B"
    EQUAL = "equal"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "BetterPolicy":
        """Map free-form model output onto a verdict, unknown when unrecognised"""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        for member in cls:
            if text.lower() == member.value.lower():
                return member
        return cls.UNKNOWN


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CoverageComparison(_CamelModel):
    policy_a: str
    policy_b: str
    difference: str
    percentage_difference: Optional[str] = None
    better_policy: BetterPolicy = BetterPolicy.UNKNOWN
    analysis: str = ""
    financial_impact: Optional[float] = None


class ChapterComparison(_CamelModel):
    title: str
    coverage_comparisons: Dict[str, CoverageComparison] = Field(default_factory=dict)
    missing_in_a: List[str] = Field(default_factory=list)
    missing_in_b: List[str] = Field(default_factory=list)
    summary: Optional[str] = None


class SignificantDifference(_CamelModel):
    aspect: str
    chapter: str
    financial_impact: str = ""
    practical_implication: str = ""
    better_policy: BetterPolicy = BetterPolicy.UNKNOWN


class ComparisonResult(_CamelModel):
    policy_a_id: str
    policy_b_id: str
    policy_a_name: Optional[str] = None
    policy_b_name: Optional[str] = None
    chapter_comparisons: Dict[str, ChapterComparison] = Field(default_factory=dict)
    significant_differences: List[SignificantDifference] = Field(default_factory=list)
    summary: Optional[str] = None
    comparison_date: datetime = Field(default_factory=datetime.now)
