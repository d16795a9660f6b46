"""
Permissive parsing of JSON embedded in model output
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Type

from policylens.core.errors import MalformedModelOutputError

logger = logging.getLogger(__name__)

FENCED_BLOCK_PATTERN = re.compile(r'```(?:json|JSON)?\s*([\s\S]*?)```')
OBJECT_PATTERN = re.compile(r'\{[\s\S]*\}')
ARRAY_PATTERN = re.compile(r'\[[\s\S]*\]')


@dataclass
class StructuredOutput:
    """Either a parsed value or the raw text it could not be parsed from"""
    raw: str
    value: Any = None
    parsed: bool = False

    def unwrap(self) -> Any:
        if not self.parsed:
            raise MalformedModelOutputError("model output is not valid structured data", raw_text=self.raw)
        return self.value


def _try_load(candidate: str, expected: Type) -> Optional[Any]:
    try:
        value = json.loads(candidate)
    except (ValueError, TypeError):
        return None
    return value if isinstance(value, expected) else None


def parse_structured_output(text: Optional[str], expected: Type = dict) -> StructuredOutput:
    """
    Parse JSON from model output

    Tries the whole text, then each fenced code block, then the outermost
    {...} (or [...] when a list is expected) substring.

    Args:
        text: Model output
        expected: dict or list

    Returns:
        StructuredOutput with parsed=True and the value, or the raw text
    """
    raw = text or ""
    stripped = raw.strip()

    candidates = [stripped]
    candidates.extend(block.strip() for block in FENCED_BLOCK_PATTERN.findall(raw))
    substring = (ARRAY_PATTERN if expected is list else OBJECT_PATTERN).search(raw)
    if substring:
        candidates.append(substring.group(0))

    for candidate in candidates:
        if not candidate:
            continue
        value = _try_load(candidate, expected)
        if value is not None:
            return StructuredOutput(raw=raw, value=value, parsed=True)

    logger.warning(f"Could not parse {expected.__name__} from model output ({len(raw)} chars)")
    return StructuredOutput(raw=raw)
