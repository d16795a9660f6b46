"""
Policy Coordinator - builds the pipeline services once and drives them
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from policylens.core.config import Settings, settings as default_settings
from policylens.data.chapter_questions import ChapterTypeClassifier
from policylens.models.chapter import Chapter, Policy
from policylens.models.comparison import ComparisonResult
from policylens.services.analytics import ComparisonAnalytics, PolicyAnalytics
from policylens.services.chapter_extractor import ChapterExtractor
from policylens.services.comparison_engine import ComparisonEngine
from policylens.services.completion_provider import CompletionProvider
from policylens.services.consolidation import ConsolidatedChapter, DefaultChapterMatcher, consolidate_policies
from policylens.services.embedding_cache import EmbeddingCache
from policylens.services.embedding_service import EmbeddingService
from policylens.services.extraction_queue import ExtractionQueue
from policylens.services.gemini_embeddings import GeminiEmbeddingProvider
from policylens.services.policy_parser import PolicyParser, identify_policy_type
from policylens.services.qa_service import QAService, QuestionAnswer
from policylens.services.text_chunker import TextChunker

logger = logging.getLogger(__name__)


@dataclass
class ComparisonReport:
    """Comparison result together with its analytics"""
    result: ComparisonResult
    analytics: Dict[str, PolicyAnalytics]
    processing_time: float


class PolicyCoordinator:
    """Owns every pipeline service for the lifetime of the application"""

    def __init__(
        self,
        config: Optional[Settings] = None,
        completion_provider=None,
        embedding_provider=None,
        cache: Optional[EmbeddingCache] = None,
        token_counter=None,
    ):
        """
        Args:
            config: Settings to build from, the module settings when None
            completion_provider: Completion collaborator, CompletionProvider when None
            embedding_provider: Embedding collaborator, GeminiEmbeddingProvider when None
            cache: Embedding cache, file-backed at the configured path when None
            token_counter: Token counter for analytics, tiktoken when None
        """
        config = config or default_settings
        self.config = config

        self.completion_provider = completion_provider or CompletionProvider(
            model=config.llm_model,
            api_base=config.llm_api_base,
            api_token=config.copilot_access_token or None,
            timeout=config.llm_request_timeout,
        )
        self.embedding_provider = embedding_provider or GeminiEmbeddingProvider(
            api_key=config.gemini_api_key or None,
            model_name=config.gemini_embedding_model,
            dimension=config.gemini_embedding_dimension,
            api_timeout=config.gemini_api_timeout,
        )
        self.cache = cache if cache is not None else EmbeddingCache(
            cache_path=config.embedding_cache_path,
            ttl_days=config.embedding_cache_ttl_days,
        )

        self.extractor = ChapterExtractor(
            min_chapter_length=config.min_chapter_length,
            fallback_candidate_threshold=config.fallback_candidate_threshold,
            pages_per_chapter_min=config.pages_per_chapter_min,
            page_chapter_target=config.page_chapter_target,
            catch_all_title=config.catch_all_chapter_title,
            similarity_threshold=config.title_similarity_threshold,
        )
        self.parser = PolicyParser(
            catch_all_title=config.catch_all_chapter_title,
            similarity_threshold=config.title_similarity_threshold,
        )
        self.chunker = TextChunker(
            min_length=config.chunk_min_length,
            max_length=config.chunk_max_length,
            chars_per_token=config.embedding_chars_per_token,
        )
        self.embedding_service = EmbeddingService(
            self.embedding_provider,
            self.cache,
            max_tokens=config.embedding_max_tokens,
            retry_max_tokens=config.embedding_retry_max_tokens,
            chars_per_token=config.embedding_chars_per_token,
            chunker=self.chunker,
        )
        self.classifier = ChapterTypeClassifier()
        self.extraction_queue = ExtractionQueue(
            self.completion_provider,
            task_delay=config.extraction_task_delay,
            retry_delay=config.extraction_retry_delay,
            batch_size=config.extraction_batch_size,
            batch_delay=config.extraction_batch_delay,
            max_tokens=config.extraction_max_tokens,
            degraded_max_tokens=config.extraction_degraded_max_tokens,
            call_timeout=config.llm_request_timeout,
            max_queue_size=config.extraction_queue_size,
        )
        self.comparison_engine = ComparisonEngine(
            self.completion_provider,
            self.extraction_queue,
            classifier=self.classifier,
            max_concurrent_chapters=config.max_concurrent_chapter_comparisons,
            comparison_timeout=config.comparison_timeout,
            call_timeout=config.llm_request_timeout,
            rate_limit_retry_delay=config.extraction_retry_delay,
            max_significant_differences=config.max_significant_differences,
        )
        self.qa_service = QAService(
            self.embedding_service,
            self.completion_provider,
            k=config.retrieval_top_k,
            max_tokens=config.qa_max_tokens,
            call_timeout=config.llm_request_timeout,
            document_task_type=config.gemini_task_type_document,
            query_task_type=config.gemini_task_type_query,
        )
        self.analytics = ComparisonAnalytics(
            token_counter=token_counter,
            input_token_price=config.input_token_price,
            output_token_price=config.output_token_price,
            chars_per_token=config.embedding_chars_per_token,
        )
        logger.info("Policy coordinator initialized")

    async def startup(self):
        """Load the embedding cache and start the extraction worker"""
        await self.cache.initialize()
        await self.extraction_queue.start()
        logger.info(f"Policy coordinator started (persistent cache: {self.cache.persistent}, {len(self.cache)} entries)")

    async def shutdown(self):
        await self.extraction_queue.stop()
        logger.info("Policy coordinator stopped")

    def extract_chapters(self, text: str) -> List[Chapter]:
        return self.extractor.extract(text)

    def structure_policy(self, policy_id: str, name: str, text: str, issuer: Optional[str] = None) -> Policy:
        """Build a Policy from raw text"""
        chapters = self.extractor.extract(text)
        logger.info(f"Structured policy {policy_id} ({identify_policy_type(text).value}) into {len(chapters)} chapters")
        return Policy(id=policy_id, name=name, chapters=chapters, issuer=issuer, text=text)

    async def compare_policies(self, policy_a: Policy, policy_b: Policy) -> ComparisonReport:
        start_time = time.time()
        result = await self.comparison_engine.compare(policy_a, policy_b)
        processing_time = time.time() - start_time
        analytics = self.analytics.analyze(result, policy_a, policy_b, processing_time)
        return ComparisonReport(result=result, analytics=analytics, processing_time=processing_time)

    async def ask(self, question: str, policies: Sequence[Policy]) -> QuestionAnswer:
        return await self.qa_service.answer(question, policies)

    def parse_layered_policy(self, policy_id: str, name: str, text: str, issuer: Optional[str] = None) -> Policy:
        """Build a Policy whose chapters are the layers of a layered parse"""
        structure = self.parser.parse(text)
        return Policy(id=policy_id, name=name, chapters=structure.layers, issuer=issuer, text=text)

    def consolidate(self, policies: Sequence[Policy]) -> List[ConsolidatedChapter]:
        return consolidate_policies(policies, DefaultChapterMatcher(self.classifier, self.config.title_similarity_threshold))

    def health_check(self) -> Dict[str, Any]:
        return {
            "status": "healthy" if self.extraction_queue.running else "degraded",
            "extraction_worker": self.extraction_queue.running,
            "embedding_cache_entries": len(self.cache),
            "embedding_cache_persistent": self.cache.persistent,
        }
