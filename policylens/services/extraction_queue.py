"""
Rate-limited extraction queue

A single worker task pulls extraction tasks from a bounded asyncio queue,
so at most one request to the completion collaborator is in flight. The
pauses between tasks and between batches are client-side backpressure.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, TypeVar

from policylens.core.config import settings
from policylens.core.errors import CollaboratorUnavailableError, CompletionError, RateLimitedError
from policylens.models.questions import EXTRACTION_ERROR_ANSWER, NOT_SPECIFIED_ANSWER, ChapterQuestion
from policylens.services.amount_extractor import extract_amounts

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECTION_SPLIT_PATTERN = re.compile(r"פרק\s+[א-ת]'|\d+\.\d+\.\d+\.\s+|\d+\.\d+\.\s+|\d+\.\s+")
SUPERLATIVE_TERMS = ("מרבי", "מקסימלי", "מקסימום", "maximum")


class TaskState(str, Enum):
    """Lifecycle of one extraction task"""
    IDLE = "idle"
    DEQUEUED = "dequeued"
    CALLING = "calling"
    RATE_LIMITED = "rate_limited"
    BACKOFF = "backoff"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ExtractionTask:
    """One question asked of one chapter"""
    content: str
    question: ChapterQuestion
    future: asyncio.Future
    state: TaskState = TaskState.IDLE
    degraded: bool = False
    history: List[TaskState] = field(default_factory=list)

    def transition(self, state: TaskState):
        self.state = state
        self.history.append(state)


def normalize_text(text: str) -> str:
    """Lowercase, drop quote marks and collapse whitespace"""
    text = re.sub(r'["\'״׳]', '', text.lower())
    return re.sub(r'\s+', ' ', text).strip()


def split_sections(content: str, max_section_length: int = 1000) -> List[str]:
    """Split content at chapter and numbered-item markers, capping each piece"""
    starts = [m.start() for m in SECTION_SPLIT_PATTERN.finditer(content)]
    if not starts or starts[0] != 0:
        starts.insert(0, 0)
    sections = []
    for index, start in enumerate(starts):
        end = starts[index + 1] if index + 1 < len(starts) else len(content)
        section = content[start:end].strip()
        if section:
            sections.append(section[:max_section_length])
    return sections


def score_section(section: str, keywords: Sequence[str]) -> int:
    """Relevance of a section to a question's keywords"""
    normalized = normalize_text(section)
    score = 0
    match_count = 0
    for keyword in keywords:
        if normalize_text(keyword) in normalized:
            score += 15
            match_count += 1

    amounts = extract_amounts(section)
    if amounts:
        score += 20
        largest = max(a.value for a in amounts)
        if largest >= 1_000_000:
            score += 60
        elif largest >= 100_000:
            score += 30

    if any(term in normalized for term in SUPERLATIVE_TERMS) or re.match(r'^\d+\.\s+', section):
        score += 30

    if match_count >= 2 or (match_count >= 1 and amounts):
        score += 25
    return score


def _keyword_sentences(content: str, keywords: Sequence[str]) -> List[str]:
    normalized_keywords = [normalize_text(k) for k in keywords]
    sentences = [s.strip() for s in re.split(r'[.!?]\s+|\s{2,}', content) if s.strip()]
    return [s for s in sentences if any(k in normalize_text(s) for k in normalized_keywords)]


def extract_relevant_section(
    content: str,
    keywords: Sequence[str],
    min_score: int = 50,
    max_sections: int = 2,
    max_length: int = 2000,
    prefix_length: int = 1500,
) -> str:
    """
    Pick the part of a chapter most likely to answer a question

    Top-scoring sections first, then sentences containing a keyword, then
    a plain prefix of the content.
    """
    if not content or not keywords:
        return (content or "")[:prefix_length]

    scored = [(score_section(section, keywords), section) for section in split_sections(content)]
    top = sorted((item for item in scored if item[0] >= min_score), key=lambda item: -item[0])[:max_sections]
    if top:
        return "\n\n".join(section for _, section in top)[:max_length]

    sentences = _keyword_sentences(content, keywords)
    if sentences:
        return ". ".join(sentences[:3])[:max_length]

    return content[:prefix_length]


def get_brief_excerpt(content: str, keywords: Sequence[str], max_length: int = 300) -> str:
    """Very short excerpt for the degraded retry prompt"""
    sentences = _keyword_sentences(content or "", keywords)
    if sentences:
        return ". ".join(sentences[:3])[:max_length]
    return (content or "")[:max_length]


def batched(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive batches of at most size"""
    size = max(1, size)
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class ExtractionQueue:
    """Single-worker FIFO queue answering chapter questions"""

    def __init__(
        self,
        provider,
        task_delay: float = settings.extraction_task_delay,
        retry_delay: float = settings.extraction_retry_delay,
        batch_size: int = settings.extraction_batch_size,
        batch_delay: float = settings.extraction_batch_delay,
        max_tokens: int = settings.extraction_max_tokens,
        degraded_max_tokens: int = settings.extraction_degraded_max_tokens,
        call_timeout: Optional[float] = settings.llm_request_timeout,
        max_queue_size: int = settings.extraction_queue_size,
    ):
        """
        Args:
            provider: Completion collaborator exposing async complete(prompt, max_tokens)
            task_delay: Pause after every task the worker handles
            retry_delay: Wait before a rate-limited task is requeued
            batch_size: Questions submitted together by extract_questions
            batch_delay: Pause between batches
            max_tokens: Output budget of the normal prompt
            degraded_max_tokens: Output budget of the retry prompt
            call_timeout: Deadline of one collaborator call, None for none
            max_queue_size: Capacity of the task queue
        """
        self.provider = provider
        self.task_delay = task_delay
        self.retry_delay = retry_delay
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.max_tokens = max_tokens
        self.degraded_max_tokens = degraded_max_tokens
        self.call_timeout = call_timeout
        self.max_queue_size = max_queue_size

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._retry_tasks: Dict[asyncio.Task, ExtractionTask] = {}
        self._in_flight = 0
        self.max_in_flight = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self):
        """Start the worker task if it is not running"""
        if self.running:
            return
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._worker = asyncio.create_task(self._run(), name="extraction-queue-worker")
        logger.info("Extraction queue worker started")

    async def stop(self):
        """Stop the worker and cancel every pending task"""
        pending = list(self._retry_tasks)
        if self._worker is not None:
            pending.append(self._worker)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._retry_tasks.clear()
        self._worker = None

        if self._queue is not None:
            while not self._queue.empty():
                task = self._queue.get_nowait()
                if not task.future.done():
                    task.future.cancel()
            self._queue = None
        logger.info("Extraction queue worker stopped")

    async def extract(self, chapter_content: str, question: ChapterQuestion) -> str:
        """
        Answer one question about one chapter

        Returns the model's answer verbatim, or the extraction error sentinel
        after a failed retry. Raises CollaboratorUnavailableError when the
        completion service cannot be reached.
        """
        await self.start()
        task = ExtractionTask(
            content=chapter_content,
            question=question,
            future=asyncio.get_running_loop().create_future(),
        )
        await self._queue.put(task)
        return await task.future

    async def extract_questions(self, chapter_content: str, questions: Sequence[ChapterQuestion]) -> Dict[str, str]:
        """Answer several questions about one chapter in batches"""
        answers: Dict[str, str] = {}
        for index, batch in enumerate(batched(questions, self.batch_size)):
            if index > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            logger.debug(f"Extracting batch {index + 1} ({len(batch)} questions)")
            results = await asyncio.gather(*(self.extract(chapter_content, q) for q in batch))
            for question, answer in zip(batch, results):
                answers[question.id] = answer
        return answers

    def build_prompt(self, task: ExtractionTask) -> str:
        excerpt = extract_relevant_section(task.content, task.question.keywords)
        return (
            "אנא חלץ מידע ספציפי מפוליסת ביטוח בריאות.\n\n"
            f"שאלה: {task.question.question}\n\n"
            f"תוכן הפרק:\n{excerpt}\n\n"
            f'אנא תן תשובה קצרה וברורה לשאלה. אם המידע אינו מופיע בתוכן, ציין "{NOT_SPECIFIED_ANSWER}".'
        )

    def build_degraded_prompt(self, task: ExtractionTask) -> str:
        excerpt = get_brief_excerpt(task.content, task.question.keywords)
        return f'חלץ מידע: "{task.question.question}"\nמתוך: "{excerpt}"'

    async def _run(self):
        while True:
            task = await self._queue.get()
            try:
                await self._process(task)
            except asyncio.CancelledError:
                if not task.future.done():
                    task.future.cancel()
                raise
            finally:
                self._queue.task_done()
            if self.task_delay > 0:
                await asyncio.sleep(self.task_delay)

    async def _process(self, task: ExtractionTask):
        task.transition(TaskState.DEQUEUED)
        if task.future.done():
            return

        if task.degraded:
            task.transition(TaskState.RETRYING)
            prompt, max_tokens = self.build_degraded_prompt(task), self.degraded_max_tokens
        else:
            task.transition(TaskState.CALLING)
            prompt, max_tokens = self.build_prompt(task), self.max_tokens

        try:
            answer = await self._call(prompt, max_tokens)
        except RateLimitedError as e:
            if task.degraded:
                self._fail(task, e)
            else:
                task.transition(TaskState.RATE_LIMITED)
                logger.warning(f"Rate limited on '{task.question.id}', retrying in {self.retry_delay}s")
                self._schedule_retry(task)
            return
        except CollaboratorUnavailableError as e:
            task.transition(TaskState.FAILED)
            if not task.future.done():
                task.future.set_exception(e)
            self._fail_pending(e)
            return
        except (CompletionError, asyncio.TimeoutError) as e:
            self._fail(task, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error extracting '{task.question.id}'")
            self._fail(task, e)
            return

        task.transition(TaskState.SUCCEEDED)
        if not task.future.done():
            task.future.set_result(answer)

    async def _call(self, prompt: str, max_tokens: int) -> str:
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            return await asyncio.wait_for(
                self.provider.complete(prompt, max_tokens=max_tokens),
                timeout=self.call_timeout
            )
        finally:
            self._in_flight -= 1

    def _fail(self, task: ExtractionTask, error: Exception):
        task.transition(TaskState.FAILED)
        logger.error(f"Extraction failed for '{task.question.id}': {error!r}")
        if not task.future.done():
            task.future.set_result(EXTRACTION_ERROR_ANSWER)

    def _schedule_retry(self, task: ExtractionTask):
        task.transition(TaskState.BACKOFF)

        async def requeue():
            try:
                await asyncio.sleep(self.retry_delay)
            except asyncio.CancelledError:
                task.future.cancel()
                raise
            if self._queue is None:
                task.future.cancel()
                return
            task.degraded = True
            await self._queue.put(task)

        retry = asyncio.create_task(requeue())
        self._retry_tasks[retry] = task
        retry.add_done_callback(lambda done: self._retry_tasks.pop(done, None))

    def _fail_pending(self, error: CollaboratorUnavailableError):
        """Fail every queued or backing-off task once the collaborator is unreachable"""
        failed = 0
        while self._queue is not None and not self._queue.empty():
            task = self._queue.get_nowait()
            self._queue.task_done()
            task.transition(TaskState.FAILED)
            if not task.future.done():
                task.future.set_exception(error)
                failed += 1
        for retry, task in list(self._retry_tasks.items()):
            task.transition(TaskState.FAILED)
            if not task.future.done():
                task.future.set_exception(error)
                failed += 1
            retry.cancel()
        if failed:
            logger.error(f"{error}; failed {failed} pending extraction tasks")
