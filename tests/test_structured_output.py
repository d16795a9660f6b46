"""Tests for permissive parsing of model output."""

import pytest

from policylens.core.errors import MalformedModelOutputError
from policylens.services.structured_output import parse_structured_output


class TestParseStructuredOutput:
    def test_plain_json(self):
        output = parse_structured_output('{"betterPolicy": "A", "difference": "100 ₪"}')

        assert output.parsed
        assert output.value["betterPolicy"] == "A"

    def test_fenced_block(self):
        output = parse_structured_output('התוצאה:\n```json\n{"betterPolicy": "B"}\n```\nבברכה')

        assert output.value == {"betterPolicy": "B"}

    def test_object_inside_prose(self):
        output = parse_structured_output('הנה ההשוואה {"betterPolicy": "equal"} כמבוקש')

        assert output.value == {"betterPolicy": "equal"}

    def test_list_expected(self):
        output = parse_structured_output('ההבדלים:\n[{"aspect": "השתלות"}]', expected=list)

        assert output.parsed
        assert output.value == [{"aspect": "השתלות"}]

    def test_wrong_type_is_not_parsed(self):
        output = parse_structured_output('{"aspect": "השתלות"}', expected=list)

        assert not output.parsed

    def test_truncated_json_keeps_raw_text(self):
        raw = '{"policyA": "1,000,000 ₪", "betterPolicy": "A"'
        output = parse_structured_output(raw)

        assert not output.parsed
        assert output.raw == raw
        assert output.value is None

    def test_unwrap_raises_with_raw_text(self):
        output = parse_structured_output("אין JSON כאן")

        with pytest.raises(MalformedModelOutputError) as exc_info:
            output.unwrap()
        assert exc_info.value.raw_text == "אין JSON כאן"

    def test_unwrap_returns_value(self):
        assert parse_structured_output('{"a": 1}').unwrap() == {"a": 1}

    @pytest.mark.parametrize("text", [None, "", "   "])
    def test_empty_output(self, text):
        output = parse_structured_output(text)

        assert not output.parsed
        assert output.raw == (text or "")
