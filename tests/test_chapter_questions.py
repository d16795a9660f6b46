"""Tests for the question catalog and chapter classification."""

import pytest

from policylens.data.chapter_questions import (
    ChapterTypeClassifier,
    cleanup_chapter_title,
    normalize_title,
)
from policylens.models.questions import ChapterType, is_no_information


@pytest.fixture
def classifier():
    return ChapterTypeClassifier()


class TestClassify:
    @pytest.mark.parametrize("title,expected", [
        ("תרופות מחוץ לסל הבריאות", ChapterType.MEDICATIONS),
        ('ניתוחים בחו"ל', ChapterType.SURGERIES_ABROAD),
        ("ניתוחים בישראל", ChapterType.SURGERIES_ISRAEL),
        ("שירותים אמבולטוריים", ChapterType.AMBULATORY),
    ])
    def test_pattern_matches(self, classifier, title, expected):
        assert classifier.classify(title) == expected

    def test_chapter_letter_falls_back_to_hints(self, classifier):
        assert classifier.classify("פרק א: השתלות") == ChapterType.TRANSPLANTS
        assert classifier.classify("פרק ב: תרופות") == ChapterType.MEDICATIONS

    def test_unknown_title(self, classifier):
        assert classifier.classify("הגדרות כלליות") is None
        assert classifier.classify("פרק ז: הגדרות") is None

    def test_single_pattern_type_needs_one_match(self):
        classifier = ChapterTypeClassifier(patterns={ChapterType.CRITICAL_ILLNESS: ("שיפוי",)})

        assert classifier.classify("שיפוי הוצאות") == ChapterType.CRITICAL_ILLNESS


class TestQuestions:
    def test_questions_for_chapter(self, classifier):
        questions = classifier.questions_for_chapter("פרק ב: תרופות")

        assert [q.id for q in questions] == ["medications-max-amount", "medications-deductible"]

    def test_unclassified_chapter_has_no_questions(self, classifier):
        assert classifier.questions_for_chapter("הגדרות כלליות") == []

    def test_get_question(self, classifier):
        assert classifier.get_question("ambulatory-tests").chapter_type == ChapterType.AMBULATORY
        assert classifier.get_question("no-such-question") is None


class TestTitleHelpers:
    @pytest.mark.parametrize("title,expected", [
        ("פרק ג: ניתוחים (כולל התייעצויות) 12", "פרק ג: ניתוחים"),
        ("פרק ה: תרופות - הרחבה", "פרק ה: תרופות"),
        ("  כותרת  ", "כותרת"),
    ])
    def test_cleanup_chapter_title(self, title, expected):
        assert cleanup_chapter_title(title) == expected

    def test_normalize_title(self):
        assert normalize_title('פרק א:  "השתלות" 2') == "פרק א השתלות"


class TestNoInformation:
    @pytest.mark.parametrize("answer", ["לא מפורט.", '"לא נמצא מידע"', "", "  ", "לא מפורט בפוליסה"])
    def test_no_information(self, answer):
        assert is_no_information(answer)

    def test_fact_is_information(self):
        assert not is_no_information("1,000,000 ₪")
