"""
Text pattern recognition utilities for Hebrew insurance policy structure
"""
import re
from typing import List, Dict
from dataclasses import dataclass, field

@dataclass
class PatternMatch:
    """A pattern match in text"""
    text: str
    start: int
    end: int
    pattern_type: str
    metadata: Dict[str, str] = field(default_factory=dict)

class PolicyPatterns:
    """Pattern recognition for policy document structures"""

    # Page markers emitted by the text extraction step
    PAGE_MARKER_PATTERN = r'---\s*Page\s+(\d+)\s*---'

    # Layer headers: "רובד בסיס", "רובד הרחבה"
    LAYER_PATTERN = r'^[ \t]*(רובד[ \t]+(?:בסיס|הרחבה|[א-ת]+))[ \t]*(?:[:\-–][^\n]*)?$'

    # Chapter headers: "פרק א: השתלות", "פרק ב' - תרופות"
    CHAPTER_PATTERN = r'^[ \t]*(פרק[ \t]+([א-ת]{1,2})(?![א-ת])[\'"׳]?[ \t]*[:.\-–]?[ \t]*([^\n.]*))'

    # Top-level numbered headers on their own line: "3. ניתוחים בחו"ל"
    NUMBERED_HEADER_PATTERN = r'^[ \t]*(\d{1,2})\.[ \t]+([^\n]{2,80})$'

    # Lines opening with a common section name
    SECTION_KEYWORD_PATTERN = r'^[ \t]*((?:השתלות|ניתוחים|תרופות|אמבולטורי|שירותים|כיסויים)[^\n]{0,80})$'

    # Section names searched literally when few headers were found
    KEYWORD_LITERALS = [
        'השתלות וטיפולים מיוחדים בחו"ל',
        'תרופות מחוץ לסל הבריאות',
        'ניתוחים וטיפולים בחו"ל',
        'ניתוחים וטיפולים בארץ',
        'שירותים אמבולטוריים',
    ]

    # Numbered markers inside a chapter: "2." "2.1." or "2.1" at line start
    SECTION_MARKER_PATTERN = (
        r'(?:(?:^|(?<=\s))(\d{1,3}(?:\.\d{1,3})*)\.|^[ \t]*(\d{1,3}(?:\.\d{1,3})+))(?=\s)'
    )

    # Heading lines used as chunk boundaries
    HEADING_PATTERNS = [
        r'^(פרק|סעיף|חלק|סימן|רובד)\s+[\u0590-\u05FF\d]',
        r'^[\u0590-\u05FF\s"\']{2,30}:$',
        r'^\d+(\.\d+){0,2}\.?\s+[\u0590-\u05FFA-Za-z]',
        r'^[A-Z][A-Z\s&/\-]{3,}:?$',
    ]

    SENTENCE_BOUNDARY_PATTERN = r'(?<=[.!?])\s+'

    @classmethod
    def extract_page_markers(cls, text: str) -> List[PatternMatch]:
        """Extract page markers from text"""
        matches = []
        for match in re.finditer(cls.PAGE_MARKER_PATTERN, text, re.MULTILINE):
            matches.append(PatternMatch(
                text=match.group(0),
                start=match.start(),
                end=match.end(),
                pattern_type="page_marker",
                metadata={"page_number": match.group(1)}
            ))
        return matches

    @classmethod
    def extract_layer_headers(cls, text: str) -> List[PatternMatch]:
        """Extract layer headers such as "רובד בסיס" """
        matches = []
        for match in re.finditer(cls.LAYER_PATTERN, text, re.MULTILINE):
            layer = re.sub(r'\s+', ' ', match.group(1))
            matches.append(PatternMatch(
                text=match.group(0).strip(),
                start=match.start(1),
                end=match.end(),
                pattern_type="layer",
                metadata={"identifier": layer, "title": match.group(0).strip()}
            ))
        return matches

    @classmethod
    def extract_chapter_headers(cls, text: str) -> List[PatternMatch]:
        """Extract chapter headers keyed by their chapter letter"""
        matches = []
        for match in re.finditer(cls.CHAPTER_PATTERN, text, re.MULTILINE):
            header = match.group(1).strip()
            matches.append(PatternMatch(
                text=header,
                start=match.start(1),
                end=match.end(1),
                pattern_type="chapter",
                metadata={
                    "identifier": f"פרק {match.group(2)}",
                    "letter": match.group(2),
                    "title": header,
                    "name": match.group(3).strip(),
                }
            ))
        return matches

    @classmethod
    def extract_numbered_headers(cls, text: str) -> List[PatternMatch]:
        """Extract top-level numbered header lines"""
        matches = []
        for match in re.finditer(cls.NUMBERED_HEADER_PATTERN, text, re.MULTILINE):
            header = match.group(0).strip()
            matches.append(PatternMatch(
                text=header,
                start=match.start(1),
                end=match.end(),
                pattern_type="numbered",
                metadata={"identifier": f"{match.group(1)}.", "title": header}
            ))
        return matches

    @classmethod
    def extract_keyword_headers(cls, text: str) -> List[PatternMatch]:
        """Extract lines that open with a known section name"""
        matches = []
        for match in re.finditer(cls.SECTION_KEYWORD_PATTERN, text, re.MULTILINE):
            header = match.group(1).strip()
            matches.append(PatternMatch(
                text=header,
                start=match.start(1),
                end=match.end(1),
                pattern_type="keyword",
                metadata={"identifier": header, "title": header}
            ))
        return matches

    @classmethod
    def find_keyword_literals(cls, text: str) -> List[PatternMatch]:
        """Find known section names anywhere in the text"""
        matches = []
        for literal in cls.KEYWORD_LITERALS:
            start = text.find(literal)
            if start == -1:
                continue
            matches.append(PatternMatch(
                text=literal,
                start=start,
                end=start + len(literal),
                pattern_type="keyword_literal",
                metadata={"identifier": literal, "title": literal}
            ))
        return matches

    @classmethod
    def extract_section_markers(cls, text: str) -> List[PatternMatch]:
        """Extract numbered section markers (1. / 1.2. / 1.2) inside chapter content"""
        matches = []
        for match in re.finditer(cls.SECTION_MARKER_PATTERN, text, re.MULTILINE):
            number = match.group(1) or match.group(2)
            matches.append(PatternMatch(
                text=match.group(0),
                start=match.start(),
                end=match.end(),
                pattern_type="section_marker",
                metadata={"number": number, "depth": str(number.count('.') + 1)}
            ))
        return matches

    @classmethod
    def is_heading_line(cls, line: str) -> bool:
        """Check whether a line opens a new section"""
        stripped = line.strip()
        if not stripped:
            return False
        return any(re.match(pattern, stripped) for pattern in cls.HEADING_PATTERNS)

    @classmethod
    def split_sentences(cls, text: str) -> List[str]:
        """Split text on sentence-ending punctuation"""
        return [s for s in re.split(cls.SENTENCE_BOUNDARY_PATTERN, text) if s.strip()]
