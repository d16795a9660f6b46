"""
Free-form questions over one or more policies

Chapters are embedded on every request through the content-keyed
embedding cache, so unchanged text costs no collaborator calls. The top-K chapters across all
policies are retrieved for each question and a single completion call
answers from them.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from policylens.core.config import settings
from policylens.core.errors import CollaboratorUnavailableError, CompletionError, RateLimitedError
from policylens.models.chapter import Chapter, Policy
from policylens.services.embedding_service import EmbeddingService
from policylens.services.retrieval import top_k

logger = logging.getLogger(__name__)

NO_RELEVANT_CONTENT = "לא נמצא תוכן רלוונטי בפוליסות."
ANSWER_UNAVAILABLE = "לא ניתן היה לייצר תשובה על סמך הפוליסות. נסה שוב מאוחר יותר."


@dataclass
class ChapterSource:
    """A chapter used as context for an answer"""
    policy_id: str
    policy_name: str
    chapter_title: str
    similarity: float


@dataclass
class QuestionAnswer:
    """Answer to a free-form question"""
    question: str
    answer: str
    sources: List[ChapterSource] = field(default_factory=list)
    processing_time: float = 0.0
    degraded: bool = False

    @property
    def confidence(self) -> float:
        return self.sources[0].similarity if self.sources else 0.0

    @property
    def relevant_policies(self) -> List[str]:
        return list(dict.fromkeys(source.policy_name for source in self.sources))


class QAService:
    """Retrieval-augmented answers over structured policies"""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        provider,
        k: int = settings.retrieval_top_k,
        max_tokens: int = settings.qa_max_tokens,
        call_timeout: float = settings.llm_request_timeout,
        document_task_type: str = settings.gemini_task_type_document,
        query_task_type: str = settings.gemini_task_type_query,
    ):
        self.embedding_service = embedding_service
        self.provider = provider
        self.k = k
        self.max_tokens = max_tokens
        self.call_timeout = call_timeout
        self.document_task_type = document_task_type
        self.query_task_type = query_task_type

    async def index_policy(self, policy: Policy) -> Dict[str, List[float]]:
        """Embed every chapter of a policy, keyed by chapter title"""
        vectors: Dict[str, List[float]] = {}
        for chapter in policy.chapters:
            vector = await self.embedding_service.embed_chapter(chapter, self.document_task_type)
            if vector:
                vectors[chapter.title] = vector
            else:
                logger.warning(f"No embedding for chapter '{chapter.title}' of {policy.id}, excluded from retrieval")

        logger.info(f"Indexed {len(vectors)}/{len(policy.chapters)} chapters of policy {policy.id}")
        return vectors

    async def find_relevant_chapters(
        self,
        question: str,
        policies: Sequence[Policy],
    ) -> List[Tuple[Policy, Chapter, float]]:
        """Top-K chapters across all policies for a question"""
        query_vector = await self.embedding_service.embed(question, self.query_task_type)
        if not query_vector:
            logger.error("Failed to embed question")
            return []

        candidates: Dict[str, List[float]] = {}
        lookup: Dict[str, Tuple[Policy, Chapter]] = {}
        for policy in policies:
            vectors = await self.index_policy(policy)
            for chapter in policy.chapters:
                if chapter.title in vectors:
                    key = f"{policy.id}/{chapter.title}"
                    candidates[key] = vectors[chapter.title]
                    lookup[key] = (policy, chapter)

        ranked = top_k(query_vector, candidates, self.k, similarity=self.embedding_service.similarity)
        return [(*lookup[key], similarity) for key, similarity in ranked]

    async def answer(self, question: str, policies: Sequence[Policy]) -> QuestionAnswer:
        """
        Answer a question from the most relevant policy chapters

        Args:
            question: Free-form question
            policies: Policies to search

        Returns:
            QuestionAnswer, degraded when the completion call fails
        """
        start_time = time.time()
        relevant = await self.find_relevant_chapters(question, policies)
        sources = [
            ChapterSource(policy.id, policy.name, chapter.title, similarity)
            for policy, chapter, similarity in relevant
        ]

        context = "\n\n---\n\n".join(
            f"פוליסה: {policy.name}\nפרק: {chapter.title}\n\n{chapter.full_text()}"
            for policy, chapter, _ in relevant
        ) or NO_RELEVANT_CONTENT

        prompt = (
            "אתה עוזר המתמחה בפוליסות ביטוח. ענה על השאלה אך ורק על סמך מידע הפוליסות שלהלן. "
            "אם המידע אינו מופיע בתוכן, ציין זאת במפורש.\n\n"
            f"מידע הפוליסות:\n{context}\n\n"
            f"שאלה: {question}\n\n"
            "תשובה:"
        )

        try:
            text = await asyncio.wait_for(
                self.provider.complete(prompt, max_tokens=self.max_tokens),
                timeout=self.call_timeout
            )
            answer, degraded = text.strip() or ANSWER_UNAVAILABLE, not text.strip()
        except CollaboratorUnavailableError:
            raise
        except (RateLimitedError, CompletionError, asyncio.TimeoutError) as e:
            logger.warning(f"Answer generation failed: {e!r}")
            answer, degraded = ANSWER_UNAVAILABLE, True

        return QuestionAnswer(
            question=question,
            answer=answer,
            sources=sources,
            processing_time=time.time() - start_time,
            degraded=degraded,
        )
