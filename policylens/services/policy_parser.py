"""
Layered policy parsing - builds a layer / chapter / numbered item tree
"""
import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from policylens.core.config import settings
from policylens.models.chapter import Chapter
from policylens.services.chapter_extractor import SimilarityFunction, merge_similar_chapters, title_similarity
from policylens.services.text_patterns import PolicyPatterns

logger = logging.getLogger(__name__)

NUMBERED_LINE_PATTERN = re.compile(r'^(\d+(?:\.\d+)*)\.?\s+(.*)$')


class PolicyType(str, Enum):
    """Broad policy category"""
    HEALTH = "health"
    LIFE = "life"
    NURSING = "nursing"
    OTHER = "other"


POLICY_TYPE_KEYWORDS = {
    PolicyType.HEALTH: ("בריאות", "ניתוח", "השתל", "תרופ", "אמבולטורי"),
    PolicyType.LIFE: ("ביטוח חיים", "ריסק", "פטירה", "מוות"),
    PolicyType.NURSING: ("סיעוד", "תשישות נפש"),
}


@dataclass
class PolicyStructure:
    """Result of a layered parse"""
    policy_type: PolicyType
    layers: List[Chapter] = field(default_factory=list)

    def chapters(self) -> List[Chapter]:
        """All chapters under every layer, in document order"""
        result = []
        for layer in self.layers:
            result.extend(layer.sub_chapters if layer.sub_chapters else [layer])
        return sorted(result, key=lambda c: c.position)


def identify_policy_type(text: str) -> PolicyType:
    """Classify a policy by keyword hits, OTHER when nothing matches"""
    scores = {
        policy_type: sum(text.count(keyword) for keyword in keywords)
        for policy_type, keywords in POLICY_TYPE_KEYWORDS.items()
    }
    best_type, best_score = max(scores.items(), key=lambda item: item[1])
    return best_type if best_score > 0 else PolicyType.OTHER


def parse_sub_chapter_content(content: str, base_level: int) -> Tuple[str, List[Chapter]]:
    """
    Build numbered sub-chapters from chapter content

    Lines opening with 1 / 1.2 / 1.2.3 start a node whose depth follows the
    numbering; other lines are appended to the most recent node.

    Returns:
        Tuple of (text before the first numbered line, top-level nodes)
    """
    roots: List[Chapter] = []
    stack: List[Chapter] = []
    preamble: List[str] = []

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        match = NUMBERED_LINE_PATTERN.match(stripped)
        if match:
            number, rest = match.groups()
            node = Chapter(title=number, level=base_level + number.count('.') + 1, content=rest.strip())
            while stack and stack[-1].level >= node.level:
                stack.pop()
            if stack:
                stack[-1].sub_chapters.append(node)
            else:
                roots.append(node)
            stack.append(node)
        elif stack:
            stack[-1].content = f"{stack[-1].content}\n{stripped}" if stack[-1].content else stripped
        else:
            preamble.append(stripped)

    return "\n".join(preamble), roots


def remove_redundant_content(chapter: Chapter) -> Chapter:
    """Clear content of every node that has children"""
    children = [remove_redundant_content(child) for child in chapter.sub_chapters]
    return replace(chapter, content=None if children else chapter.content, sub_chapters=children)


class PolicyParser:
    """Line-based parser for layered policies (base layer, extension layer)"""

    def __init__(
        self,
        catch_all_title: str = settings.catch_all_chapter_title,
        similarity: SimilarityFunction = title_similarity,
        similarity_threshold: float = settings.title_similarity_threshold,
    ):
        self.catch_all_title = catch_all_title
        self.similarity = similarity
        self.similarity_threshold = similarity_threshold

    def parse(self, text: str) -> PolicyStructure:
        """
        Parse text into layers, chapters and numbered sub-chapters

        Text before the first chapter header lands in a catch-all chapter.
        Policies without layer headers get a single implicit layer.
        """
        layers: List[Chapter] = []
        current_layer: Optional[Chapter] = None
        current_chapter: Optional[Chapter] = None
        lines: List[str] = []
        offset = 0

        def flush():
            if current_chapter is not None:
                current_chapter.content = "\n".join(lines).strip()

        for raw_line in text.splitlines(keepends=True):
            line_position = offset
            offset += len(raw_line)
            line = raw_line.strip()
            if not line:
                continue

            layer_match = re.match(PolicyPatterns.LAYER_PATTERN, line)
            chapter_match = re.match(PolicyPatterns.CHAPTER_PATTERN, line)

            if layer_match:
                flush()
                current_layer = Chapter(title=line, level=1, position=line_position)
                layers.append(current_layer)
                current_chapter, lines = None, []
            elif chapter_match:
                flush()
                if current_layer is None:
                    current_layer = Chapter(title="", level=1, position=line_position)
                    layers.append(current_layer)
                current_chapter = Chapter(title=chapter_match.group(1).strip(), level=2, position=line_position)
                current_layer.sub_chapters.append(current_chapter)
                lines = []
            else:
                if current_chapter is None:
                    if current_layer is None:
                        current_layer = Chapter(title="", level=1, position=line_position)
                        layers.append(current_layer)
                    current_chapter = Chapter(title=self.catch_all_title, level=2, position=line_position)
                    current_layer.sub_chapters.append(current_chapter)
                    lines = []
                lines.append(line)
        flush()

        structured = [self._structure_layer(layer) for layer in layers]
        structured = merge_similar_chapters(structured, self.similarity_threshold, self.similarity)
        policy_type = identify_policy_type(text)
        logger.info(f"Parsed {len(structured)} layers from {policy_type.value} policy")
        return PolicyStructure(policy_type=policy_type, layers=structured)

    def _structure_layer(self, layer: Chapter) -> Chapter:
        chapters = []
        for chapter in layer.sub_chapters:
            preamble, children = parse_sub_chapter_content(chapter.content or "", chapter.level)
            if children:
                if preamble:
                    children.insert(0, Chapter(title="מבוא", level=chapter.level + 1, content=preamble))
                chapter = replace(chapter, sub_chapters=children)
            chapters.append(remove_redundant_content(chapter))
        chapters = merge_similar_chapters(chapters, self.similarity_threshold, self.similarity)
        return replace(layer, sub_chapters=chapters)
