"""
Chapter extraction - segments raw policy text into scored, deduplicated chapters
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from policylens.core.config import settings
from policylens.core.errors import StructureNotFoundError
from policylens.models.chapter import Chapter, Section, SubSection
from policylens.services.text_patterns import PolicyPatterns, PatternMatch

logger = logging.getLogger(__name__)

SimilarityFunction = Callable[[str, str], float]


@dataclass
class ChapterCandidate:
    """A header match and the text that follows it"""
    position: int
    identifier: str
    title: str
    pattern_type: str
    content: str = ""
    score: int = 0


class ChapterScorer:
    """Additive content-quality score for chapter candidates"""

    CANONICAL_KEYWORDS = ("הגדרות", "מקרה הביטוח", "הכיסוי הביטוחי", "התחייבות החברה", "תגמולי ביטוח")
    STRUCTURE_KEYWORDS = ("סעיף", "חריגים", "תקופת")
    TOC_MARKERS = ("תוכן עניינים",)

    def __init__(
        self,
        keyword_bonus: int = 10,
        numbered_items_bonus: int = 5,
        length_tiers: Sequence[Tuple[int, int]] = ((5000, 20), (2500, 10), (1000, 5)),
        line_tiers: Sequence[Tuple[int, int]] = ((50, 10), (25, 5)),
        structure_bonus: int = 10,
        short_penalty: int = 15,
        short_length: int = 1000,
        head_window: int = 500,
    ):
        self.keyword_bonus = keyword_bonus
        self.numbered_items_bonus = numbered_items_bonus
        self.length_tiers = length_tiers
        self.line_tiers = line_tiers
        self.structure_bonus = structure_bonus
        self.short_penalty = short_penalty
        self.short_length = short_length
        self.head_window = head_window

    def __call__(self, content: str) -> int:
        score = 0
        head = content[:self.head_window]

        if any(keyword in head for keyword in self.CANONICAL_KEYWORDS):
            score += self.keyword_bonus
        if re.search(r'\n\s*\d+\s*\.', head):
            score += self.numbered_items_bonus

        for threshold, bonus in self.length_tiers:
            if len(content) > threshold:
                score += bonus
                break

        line_count = content.count("\n") + 1
        for threshold, bonus in self.line_tiers:
            if line_count > threshold:
                score += bonus
                break

        if re.search(r'\d+\.\d+', content) or any(k in content for k in self.STRUCTURE_KEYWORDS):
            score += self.structure_bonus

        if len(content) < self.short_length or any(m in content for m in self.TOC_MARKERS):
            score -= self.short_penalty

        return score


def title_similarity(first: str, second: str) -> float:
    """
    Fraction of matching characters at matching positions

    Titles are compared with whitespace removed and case folded, over the
    length of the shorter title.
    """
    a = re.sub(r'\s+', '', first).lower()
    b = re.sub(r'\s+', '', second).lower()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    matches = sum(1 for index, char in enumerate(shorter) if longer[index] == char)
    return matches / len(shorter)


def merge_similar_chapters(
    chapters: List[Chapter],
    threshold: float = settings.title_similarity_threshold,
    similarity: SimilarityFunction = title_similarity,
) -> List[Chapter]:
    """
    Merge chapters whose titles are near-duplicates

    Of two similar chapters the one with more total content (own plus
    sub-chapters) is kept.
    """
    merged: List[Chapter] = []
    for chapter in chapters:
        for index, existing in enumerate(merged):
            if similarity(existing.title, chapter.title) >= threshold:
                if chapter.total_content_length() > existing.total_content_length():
                    logger.debug(f"Merging '{existing.title}' into '{chapter.title}'")
                    merged[index] = chapter
                break
        else:
            merged.append(chapter)
    return sorted(merged, key=lambda c: c.position)


class ChapterExtractor:
    """Segments policy text into an ordered list of chapters with numbered sections"""

    def __init__(
        self,
        min_chapter_length: int = settings.min_chapter_length,
        fallback_candidate_threshold: int = settings.fallback_candidate_threshold,
        pages_per_chapter_min: int = settings.pages_per_chapter_min,
        page_chapter_target: int = settings.page_chapter_target,
        catch_all_title: str = settings.catch_all_chapter_title,
        scorer: Optional[Callable[[str], int]] = None,
        similarity: SimilarityFunction = title_similarity,
        similarity_threshold: float = settings.title_similarity_threshold,
    ):
        self.min_chapter_length = min_chapter_length
        self.fallback_candidate_threshold = fallback_candidate_threshold
        self.pages_per_chapter_min = pages_per_chapter_min
        self.page_chapter_target = page_chapter_target
        self.catch_all_title = catch_all_title
        self.scorer = scorer or ChapterScorer()
        self.similarity = similarity
        self.similarity_threshold = similarity_threshold

    def extract(self, text: str) -> List[Chapter]:
        """
        Extract chapters from raw policy text

        Never raises: when no header survives, pages are grouped into
        synthetic chapters, and failing that a single catch-all chapter
        holds the whole text.

        Args:
            text: Plain text of one policy

        Returns:
            Chapters ordered by position, each with its sections
        """
        try:
            chapters = self._extract_from_headers(text)
        except StructureNotFoundError as e:
            logger.warning(f"Header extraction failed: {e}; trying page grouping")
            try:
                chapters = self._extract_from_pages(text)
            except StructureNotFoundError as page_error:
                logger.warning(f"Page grouping failed: {page_error}; using catch-all chapter")
                chapters = [Chapter(title=self.catch_all_title, level=1, content=text.strip(), position=0)]

        for chapter in chapters:
            chapter.sections = self.build_sections(chapter.content or "", chapter.title)

        logger.info(f"Extracted {len(chapters)} chapters")
        return chapters

    def merge_similar(self, chapters: List[Chapter]) -> List[Chapter]:
        """Merge near-duplicate chapters using this extractor's similarity settings"""
        return merge_similar_chapters(chapters, self.similarity_threshold, self.similarity)

    def find_candidates(self, text: str) -> List[ChapterCandidate]:
        """Collect header candidates sorted by position"""
        matches: List[PatternMatch] = (
            PolicyPatterns.extract_layer_headers(text) + PolicyPatterns.extract_chapter_headers(text)
        )
        if not matches:
            matches = PolicyPatterns.extract_numbered_headers(text) + PolicyPatterns.extract_keyword_headers(text)

        if len(matches) < self.fallback_candidate_threshold:
            for literal in PolicyPatterns.find_keyword_literals(text):
                inside_existing = any(m.start <= literal.start < m.end for m in matches)
                if not inside_existing:
                    matches.append(literal)

        candidates: List[ChapterCandidate] = []
        seen_positions = set()
        for match in sorted(matches, key=lambda m: m.start):
            if match.start in seen_positions:
                continue
            seen_positions.add(match.start)
            candidates.append(ChapterCandidate(
                position=match.start,
                identifier=match.metadata["identifier"],
                title=match.metadata["title"],
                pattern_type=match.pattern_type,
            ))
        return candidates

    def _extract_from_headers(self, text: str) -> List[Chapter]:
        candidates = self.find_candidates(text)
        if not candidates:
            raise StructureNotFoundError("no chapter headers matched")

        for index, candidate in enumerate(candidates):
            end = candidates[index + 1].position if index + 1 < len(candidates) else len(text)
            candidate.content = text[candidate.position:end].strip()
            candidate.score = self.scorer(candidate.content)

        retained = self._keep_best(candidates, key=lambda c: c.identifier)
        retained = self._keep_best(retained, key=lambda c: c.title)

        chapters = [
            Chapter(title=c.title, level=1, content=c.content, position=c.position)
            for c in retained
            if len(c.content) >= self.min_chapter_length
        ]
        logger.debug(
            f"{len(candidates)} header candidates, {len(retained)} after dedup, {len(chapters)} long enough"
        )
        if not chapters:
            raise StructureNotFoundError(f"{len(candidates)} candidates, none long enough")
        return chapters

    @staticmethod
    def _keep_best(candidates: List[ChapterCandidate], key) -> List[ChapterCandidate]:
        """Keep the highest-scoring candidate per key, first one on ties, in position order"""
        best: Dict[str, ChapterCandidate] = {}
        for candidate in candidates:
            current = best.get(key(candidate))
            if current is None or candidate.score > current.score:
                best[key(candidate)] = candidate
        return sorted(best.values(), key=lambda c: c.position)

    def _extract_from_pages(self, text: str) -> List[Chapter]:
        markers = PolicyPatterns.extract_page_markers(text)
        if not markers:
            raise StructureNotFoundError("no page markers")

        pages: List[Tuple[int, str]] = []
        preamble = text[:markers[0].start].strip()
        if preamble:
            pages.append((0, preamble))
        for index, marker in enumerate(markers):
            end = markers[index + 1].start if index + 1 < len(markers) else len(text)
            pages.append((marker.start, text[marker.end:end].strip()))

        per_chapter = max(self.pages_per_chapter_min, math.ceil(len(pages) / self.page_chapter_target))
        chapters: List[Chapter] = []
        for start in range(0, len(pages), per_chapter):
            group = pages[start:start + per_chapter]
            content = "\n".join(page for _, page in group if page)
            if len(content) < self.min_chapter_length:
                continue
            chapters.append(Chapter(
                title=f"פרק {len(chapters) + 1}",
                level=1,
                content=content,
                position=group[0][0],
            ))

        if not chapters:
            raise StructureNotFoundError(f"{len(pages)} pages, no group long enough")
        logger.info(f"Grouped {len(pages)} pages into {len(chapters)} synthetic chapters")
        return chapters

    def build_sections(self, content: str, chapter_title: str = "") -> List[Section]:
        """
        Split chapter content into numbered sections and sub-sections

        Content without numbering becomes one implicit section.
        """
        markers = PolicyPatterns.extract_section_markers(content)
        if not markers:
            return [Section(section_number="1", title=chapter_title or "סעיף 1", content=content.strip())]

        sections: List[Section] = []
        current: Optional[Section] = None
        for index, marker in enumerate(markers):
            end = markers[index + 1].start if index + 1 < len(markers) else len(content)
            body = content[marker.end:end].strip()
            number = marker.metadata["number"]
            title = self._section_title(number, body)

            if current is not None and number.startswith(current.section_number + "."):
                current.subsections.append(SubSection(subsection_id=number, title=title, content=body))
            else:
                current = Section(section_number=number, title=title, content=body)
                sections.append(current)
        return sections

    @staticmethod
    def _section_title(number: str, body: str) -> str:
        quoted = re.match(r'^["״“]([^"״”]{2,60})["״”]', body)
        if quoted:
            return quoted.group(1).strip()
        labelled = re.match(r'^([^:\-–\n]{2,60}?)\s*[:\-–]\s', body)
        if labelled:
            return labelled.group(1).strip()
        first_sentence = re.split(r'[.\n]', body, maxsplit=1)[0].strip()
        if 0 < len(first_sentence) <= 60:
            return first_sentence
        return f"סעיף {number}"
