"""
Data models for the chapter question catalog and extracted coverage
"""
from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class Importance(str, Enum):
    """How much a question weighs when ranking differences"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ChapterType(str, Enum):
    """Chapter categories the question catalog knows about"""
    TRANSPLANTS = "transplants"
    MEDICATIONS = "medications"
    SURGERIES_ABROAD = "surgeries-abroad"
    SURGERIES_ISRAEL = "surgeries-israel"
    AMBULATORY = "ambulatory"
    CRITICAL_ILLNESS = "critical-illness"


@dataclass(frozen=True)
class ChapterQuestion:
    """A targeted factual question asked of every chapter of a given type"""
    id: str
    question: str
    chapter_type: ChapterType
    keywords: Tuple[str, ...]
    importance: Importance = Importance.MEDIUM
    requires_numerical_answer: bool = False


@dataclass(frozen=True)
class CoverageAnswer:
    """One question's extracted answer for one chapter"""
    question_id: str
    answer: str


# Answer sentinels
NOT_SPECIFIED_ANSWER = "לא מפורט"
NO_INFORMATION_ANSWER = "לא נמצא מידע"
EXTRACTION_ERROR_ANSWER = "שגיאה בעת חילוץ המידע"

NO_INFORMATION_ANSWERS = (NOT_SPECIFIED_ANSWER, NO_INFORMATION_ANSWER, EXTRACTION_ERROR_ANSWER)


def is_no_information(answer: str) -> bool:
    """Whether an answer carries no extracted fact"""
    text = (answer or "").strip().strip('."\'')
    return not text or any(text == sentinel or text.startswith(sentinel) for sentinel in NO_INFORMATION_ANSWERS)
