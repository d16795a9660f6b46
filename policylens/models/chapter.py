"""
Data models for policy structure
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class ChapterKind(str, Enum):
    """Whether a chapter still holds its own text or only children"""
    LEAF = "leaf"
    SECTION = "section"


@dataclass
class SubSection:
    """A nested numbered item inside a section (e.g. 2.1)"""
    subsection_id: str   # "2.1"
    title: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"subsection_id": self.subsection_id, "title": self.title, "content": self.content}


@dataclass
class Section:
    """A numbered unit inside a chapter (e.g. 2)"""
    section_number: str  # "2"
    title: str
    content: str
    subsections: List[SubSection] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_number": self.section_number,
            "title": self.title,
            "content": self.content,
            "subsections": [sub.to_dict() for sub in self.subsections],
        }


@dataclass
class Chapter:
    """A structural unit of a policy document"""
    title: str                               # Full header string, unique within a document
    level: int                               # 1 = layer / top chapter, deeper levels for sub-chapters
    content: Optional[str] = None
    sub_chapters: List["Chapter"] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)
    position: int = 0                        # Character offset in the source text

    @property
    def kind(self) -> ChapterKind:
        if self.sub_chapters and not self.content:
            return ChapterKind.SECTION
        return ChapterKind.LEAF

    def total_content_length(self) -> int:
        """Length of this chapter's own content plus that of all descendants"""
        total = len(self.content or "")
        for child in self.sub_chapters:
            total += child.total_content_length()
        return total

    def full_text(self) -> str:
        """Chapter text, rebuilt from children when content was redistributed"""
        parts = [self.content] if self.content else []
        for child in self.sub_chapters:
            child_text = child.full_text()
            if child_text:
                parts.append(f"{child.title}\n{child_text}" if child.title else child_text)
        return "\n".join(parts)

    def with_content(self, content: Optional[str]) -> "Chapter":
        return replace(self, content=content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "level": self.level,
            "content": self.content,
            "position": self.position,
            "sub_chapters": [child.to_dict() for child in self.sub_chapters],
            "sections": [section.to_dict() for section in self.sections],
        }


@dataclass
class Policy:
    """A policy document after structuring"""
    id: str
    name: str
    chapters: List[Chapter]
    issuer: Optional[str] = None
    text: str = ""  # Source text, kept for analytics
