"""Tests for the layered policy parser."""

from policylens.models.chapter import Chapter
from policylens.services.policy_parser import (
    PolicyParser,
    PolicyType,
    identify_policy_type,
    parse_sub_chapter_content,
    remove_redundant_content,
)

LAYERED_POLICY = "\n".join([
    "הקדמה כללית לפוליסה",
    "רובד בסיס",
    "פרק א: השתלות",
    "מבוא לפרק",
    "1. כיסוי להשתלה",
    "1.1. השתלת כליה",
    "2. הוצאות נלוות",
    "פרק ב: תרופות",
    "1. תרופות מחוץ לסל",
    "רובד הרחבה",
    'פרק א: ניתוחים בחו"ל',
    "טקסט",
])


class TestPolicyParser:
    def test_layers_in_order(self):
        structure = PolicyParser().parse(LAYERED_POLICY)

        assert [layer.title for layer in structure.layers] == ["", "רובד בסיס", "רובד הרחבה"]
        assert all(layer.level == 1 for layer in structure.layers)

    def test_text_before_first_chapter_goes_to_catch_all(self):
        structure = PolicyParser().parse(LAYERED_POLICY)
        implicit = structure.layers[0]

        assert [c.title for c in implicit.sub_chapters] == ["כללי"]
        assert implicit.sub_chapters[0].content == "הקדמה כללית לפוליסה"

    def test_chapters_under_layer(self):
        base = PolicyParser().parse(LAYERED_POLICY).layers[1]

        assert [c.title for c in base.sub_chapters] == ["פרק א: השתלות", "פרק ב: תרופות"]
        assert all(c.level == 2 for c in base.sub_chapters)

    def test_numbered_sub_chapters_with_preamble(self):
        transplants = PolicyParser().parse(LAYERED_POLICY).layers[1].sub_chapters[0]

        assert transplants.content is None
        assert [c.title for c in transplants.sub_chapters] == ["מבוא", "1", "2"]
        assert transplants.sub_chapters[0].content == "מבוא לפרק"

        coverage = transplants.sub_chapters[1]
        assert coverage.content is None
        assert coverage.sub_chapters[0].title == "1.1"
        assert coverage.sub_chapters[0].content == "השתלת כליה"
        assert coverage.sub_chapters[0].level == 4

    def test_chapter_without_numbering_keeps_content(self):
        extension = PolicyParser().parse(LAYERED_POLICY).layers[2]

        assert extension.sub_chapters[0].title == 'פרק א: ניתוחים בחו"ל'
        assert extension.sub_chapters[0].content == "טקסט"

    def test_chapters_flattened_in_document_order(self):
        structure = PolicyParser().parse(LAYERED_POLICY)

        assert [c.title for c in structure.chapters()] == [
            "כללי", "פרק א: השתלות", "פרק ב: תרופות", 'פרק א: ניתוחים בחו"ל'
        ]

    def test_policy_type(self):
        assert PolicyParser().parse(LAYERED_POLICY).policy_type == PolicyType.HEALTH

    def test_policy_without_layers(self):
        structure = PolicyParser().parse("פרק א: השתלות\nכיסוי מלא")

        assert len(structure.layers) == 1
        assert structure.layers[0].title == ""
        assert structure.layers[0].sub_chapters[0].content == "כיסוי מלא"

    def test_near_duplicate_chapters_merged(self):
        text = "פרק א: השתלות\nקצר\nפרק א: השתלות.\nתוכן ארוך בהרבה מהקודם"
        chapters = PolicyParser().parse(text).chapters()

        assert len(chapters) == 1
        assert chapters[0].content == "תוכן ארוך בהרבה מהקודם"


class TestHelpers:
    def test_parse_sub_chapter_content_levels(self):
        preamble, roots = parse_sub_chapter_content("פתיח\n1 ראשון\n1.1 משני\nהמשך\n2 שני", base_level=2)

        assert preamble == "פתיח"
        assert [r.title for r in roots] == ["1", "2"]
        assert roots[0].level == 3
        assert roots[0].sub_chapters[0].content == "משני\nהמשך"

    def test_remove_redundant_content(self):
        chapter = Chapter(
            title="פרק", level=1, content="כפול",
            sub_chapters=[Chapter(title="1", level=2, content="ילד")],
        )
        cleaned = remove_redundant_content(chapter)

        assert cleaned.content is None
        assert cleaned.sub_chapters[0].content == "ילד"
        assert chapter.content == "כפול"

    def test_identify_policy_type(self):
        assert identify_policy_type("פוליסת ביטוח חיים - תגמול במקרה פטירה") == PolicyType.LIFE
        assert identify_policy_type("ביטוח סיעוד") == PolicyType.NURSING
        assert identify_policy_type("") == PolicyType.OTHER
