"""
Cross-policy consolidation - lines up similar chapters of several policies
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from policylens.core.config import settings
from policylens.data.chapter_questions import ChapterTypeClassifier
from policylens.models.chapter import Chapter, Policy
from policylens.services.chapter_extractor import title_similarity

logger = logging.getLogger(__name__)

ChapterMatcher = Callable[[str, str], bool]

LAYER_TITLE_PATTERN = re.compile(r'^\s*רובד')
CHAPTER_PREFIX_PATTERN = re.compile(r'^\s*פרק\s+[א-ת]{1,2}(?![א-ת])[\'"׳]?\s*[:.\-–]?\s*')


@dataclass
class PolicyContent:
    """One policy's share of a consolidated chapter"""
    content: str = ""
    sub_chapters: List[Chapter] = field(default_factory=list)
    layer: Optional[str] = None  # Title of the enclosing layer, if any

    def to_dict(self) -> Dict:
        return {
            "content": self.content,
            "layer": self.layer,
            "sub_chapters": [child.to_dict() for child in self.sub_chapters],
        }


@dataclass
class ConsolidatedChapter:
    """Similar chapters of several policies, keyed by policy id"""
    title: str
    contents: Dict[str, PolicyContent] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "title": self.title,
            "contents": {policy_id: content.to_dict() for policy_id, content in self.contents.items()},
        }


def strip_chapter_prefix(title: str) -> str:
    """Drop a leading 'פרק X:' so chapters of different policies compare by name"""
    return CHAPTER_PREFIX_PATTERN.sub('', title).strip() or title.strip()


class DefaultChapterMatcher:
    """Chapters match when they share a content category or their names are near-duplicates"""

    def __init__(
        self,
        classifier: Optional[ChapterTypeClassifier] = None,
        threshold: float = settings.title_similarity_threshold,
    ):
        self.classifier = classifier or ChapterTypeClassifier()
        self.threshold = threshold

    def __call__(self, first: str, second: str) -> bool:
        first_type = self.classifier.classify(first)
        if first_type is not None and first_type == self.classifier.classify(second):
            return True
        return title_similarity(strip_chapter_prefix(first), strip_chapter_prefix(second)) >= self.threshold


def _actual_chapters(policy: Policy):
    for chapter in policy.chapters:
        if LAYER_TITLE_PATTERN.match(chapter.title) or (not chapter.title and chapter.sub_chapters):
            # Layers without a title are implicit and carry no category
            for child in chapter.sub_chapters:
                if child.title:
                    yield child, chapter.title or None
        elif chapter.title:
            yield chapter, None


def consolidate_policies(
    policies: Sequence[Policy],
    matcher: Optional[ChapterMatcher] = None,
) -> List[ConsolidatedChapter]:
    """
    Group similar chapters across policies

    Each chapter joins the first existing group whose title matches, or
    opens a new group. Layer chapters are descended into, so a chapter
    under 'רובד בסיס' lines up with a top-level chapter of another policy.

    Args:
        policies: Structured policies
        matcher: Decides whether two chapter titles describe the same coverage

    Returns:
        Consolidated chapters in order of first appearance
    """
    matcher = matcher or DefaultChapterMatcher()
    groups: List[ConsolidatedChapter] = []

    for policy in policies:
        for chapter, layer in _actual_chapters(policy):
            group = next((g for g in groups if matcher(g.title, chapter.title)), None)
            if group is None:
                group = ConsolidatedChapter(title=chapter.title)
                groups.append(group)

            existing = group.contents.get(policy.id)
            if existing is None:
                group.contents[policy.id] = PolicyContent(
                    content=chapter.content or "",
                    sub_chapters=list(chapter.sub_chapters),
                    layer=layer,
                )
            else:
                # Several chapters of one policy in the same group
                existing.sub_chapters.append(chapter)

    logger.info(f"Consolidated {len(policies)} policies into {len(groups)} chapter groups")
    return groups
