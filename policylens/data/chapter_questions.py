"""
Question catalog for health insurance chapter types, and chapter classification
"""
import logging
import re
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from policylens.models.questions import ChapterQuestion, ChapterType, Importance

logger = logging.getLogger(__name__)

CHAPTER_QUESTIONS: Dict[ChapterType, Tuple[ChapterQuestion, ...]] = {
    ChapterType.TRANSPLANTS: (
        ChapterQuestion(
            id="transplant-max-amount",
            question="מהו סכום הכיסוי להשתלה?",
            chapter_type=ChapterType.TRANSPLANTS,
            keywords=("כיסוי", "השתלה", "₪"),
            importance=Importance.HIGH,
            requires_numerical_answer=True,
        ),
        ChapterQuestion(
            id="transplant-related-expenses",
            question="מהו הכיסוי להוצאות נלוות להשתלה?",
            chapter_type=ChapterType.TRANSPLANTS,
            keywords=("הוצאות", "נלוות", "טיסה", "שהייה", "מלווה"),
            importance=Importance.MEDIUM,
            requires_numerical_answer=True,
        ),
    ),
    ChapterType.MEDICATIONS: (
        ChapterQuestion(
            id="medications-max-amount",
            question="מהי תקרת הכיסוי לתרופות?",
            chapter_type=ChapterType.MEDICATIONS,
            keywords=("תקרת", "סכום", "מרבי", "מקסימלי", "תרופות"),
            importance=Importance.HIGH,
            requires_numerical_answer=True,
        ),
        ChapterQuestion(
            id="medications-deductible",
            question="מהי ההשתתפות העצמית לתרופות?",
            chapter_type=ChapterType.MEDICATIONS,
            keywords=("השתתפות", "עצמית", "תשלום", "תרופה"),
            importance=Importance.HIGH,
            requires_numerical_answer=True,
        ),
    ),
    ChapterType.SURGERIES_ABROAD: (
        ChapterQuestion(
            id="surgeries-abroad-max-amount",
            question='מהו סכום הביטוח המרבי לניתוחים בחו"ל?',
            chapter_type=ChapterType.SURGERIES_ABROAD,
            keywords=("סכום", "מרבי", "ניתוח", 'חו"ל', "תקרה"),
            importance=Importance.HIGH,
            requires_numerical_answer=True,
        ),
    ),
    ChapterType.SURGERIES_ISRAEL: (
        ChapterQuestion(
            id="surgeries-israel-coverage-type",
            question='איזה סוג כיסוי קיים לניתוחים בישראל (מסלול משלים שב"ן / מהשקל הראשון)?',
            chapter_type=ChapterType.SURGERIES_ISRAEL,
            keywords=("מסלול", "משלים", 'שב"ן', "שקל", "ראשון"),
            importance=Importance.HIGH,
        ),
    ),
    ChapterType.AMBULATORY: (
        ChapterQuestion(
            id="ambulatory-consultations",
            question="מהו הכיסוי להתייעצויות עם רופאים מומחים?",
            chapter_type=ChapterType.AMBULATORY,
            keywords=("התייעצות", "רופא", "מומחה"),
            importance=Importance.HIGH,
            requires_numerical_answer=True,
        ),
        ChapterQuestion(
            id="ambulatory-tests",
            question="מהו הכיסוי לבדיקות אבחוניות?",
            chapter_type=ChapterType.AMBULATORY,
            keywords=("בדיקות", "אבחוניות", "הדמיה"),
            importance=Importance.HIGH,
            requires_numerical_answer=True,
        ),
    ),
    ChapterType.CRITICAL_ILLNESS: (
        ChapterQuestion(
            id="critical-illness-compensation",
            question="מהו סכום הפיצוי בגילוי מחלה קשה?",
            chapter_type=ChapterType.CRITICAL_ILLNESS,
            keywords=("פיצוי", "מחלה", "קשה", "₪"),
            importance=Importance.HIGH,
            requires_numerical_answer=True,
        ),
    ),
}

# Title fragments that identify each chapter type
CONTENT_PATTERNS: Dict[ChapterType, Tuple[str, ...]] = {
    ChapterType.TRANSPLANTS: ("השתלות", "השתלה", "איבר", "מח עצם"),
    ChapterType.MEDICATIONS: ("תרופות", "סל", "תרופה"),
    ChapterType.SURGERIES_ABROAD: ("ניתוח", "מחוץ לישראל", 'חו"ל', "מחליפי ניתוח"),
    ChapterType.SURGERIES_ISRAEL: ("ניתוח", "בישראל", 'שב"ן', "מהשקל הראשון"),
    ChapterType.AMBULATORY: ("אמבולטורי", "בדיקות", "התייעצות", "שירותים"),
    ChapterType.CRITICAL_ILLNESS: ("מחלה קשה", "מחלות קשות", "גילוי מחלה", "הוצאות רפואיות", "שיפוי"),
}


def normalize_title(text: str) -> str:
    """Collapse whitespace and drop punctuation and digits"""
    text = re.sub(r'\s+', ' ', text).strip()
    text = re.sub(r'[:"\'.,()״׳]', '', text)
    text = re.sub(r'\d+', '', text)
    return re.sub(r'\s+', ' ', text).strip()


def cleanup_chapter_title(title: str) -> str:
    """Reduce a chapter header to its core title"""
    match = re.search(r'פרק\s+[א-ת]{1,2}[\'׳]?\s*[:\-–.]?\s*[^\n]+', title)
    clean = match.group(0).strip() if match else title.strip()
    clean = re.sub(r'\s+\d+$', '', clean)
    for separator in ("שם הכיסוי", "תיאור הכיסוי", "(", " - "):
        index = clean.find(separator)
        if index > 0:
            clean = clean[:index].strip()
    return clean


class ChapterTypeClassifier:
    """
    Maps chapter titles to chapter types

    A type matches when at least min_matches of its patterns occur in the
    normalized title (one suffices for types with a single pattern). When
    no type matches and the title carries a chapter letter, keyword hints
    decide.
    """

    def __init__(
        self,
        patterns: Mapping[ChapterType, Sequence[str]] = CONTENT_PATTERNS,
        catalog: Mapping[ChapterType, Sequence[ChapterQuestion]] = CHAPTER_QUESTIONS,
        min_matches: int = 2,
    ):
        self.patterns = patterns
        self.catalog = catalog
        self.min_matches = min_matches
        self._questions_by_id = {q.id: q for questions in catalog.values() for q in questions}

    def classify(self, chapter_title: str) -> Optional[ChapterType]:
        cleaned = cleanup_chapter_title(chapter_title)
        normalized = normalize_title(cleaned)

        for chapter_type, patterns in self.patterns.items():
            match_count = sum(1 for p in patterns if normalize_title(p) in normalized)
            required = 1 if len(patterns) == 1 else self.min_matches
            if match_count >= required:
                logger.debug(f"Chapter '{chapter_title}' matched {chapter_type.value} ({match_count} patterns)")
                return chapter_type

        if re.search(r'פרק\s+[א-ת]', cleaned):
            return self._hint(normalized)
        return None

    @staticmethod
    def _hint(normalized: str) -> Optional[ChapterType]:
        if "השתל" in normalized:
            return ChapterType.TRANSPLANTS
        if "תרופ" in normalized:
            return ChapterType.MEDICATIONS
        if "ניתוח" in normalized and ("מחוץ" in normalized or "חול" in normalized):
            return ChapterType.SURGERIES_ABROAD
        if "ניתוח" in normalized and "ישראל" in normalized:
            return ChapterType.SURGERIES_ISRAEL
        if "אמבולטורי" in normalized:
            return ChapterType.AMBULATORY
        if "שיפוי" in normalized or "מחלה קשה" in normalized or "מחלות קשות" in normalized:
            return ChapterType.CRITICAL_ILLNESS
        return None

    def questions_for_chapter(self, chapter_title: str) -> List[ChapterQuestion]:
        """Catalog questions that apply to a chapter, empty when unclassified"""
        chapter_type = self.classify(chapter_title)
        if chapter_type is None:
            logger.debug(f"No chapter type for '{chapter_title}'")
            return []
        return list(self.catalog.get(chapter_type, ()))

    def get_question(self, question_id: str) -> Optional[ChapterQuestion]:
        return self._questions_by_id.get(question_id)
