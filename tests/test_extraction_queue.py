"""Tests for the rate-limited extraction queue."""

import asyncio

import pytest

from policylens.core.errors import CollaboratorUnavailableError, CompletionError, RateLimitedError
from policylens.models.questions import EXTRACTION_ERROR_ANSWER, ChapterQuestion, ChapterType
from policylens.services.extraction_queue import (
    ExtractionQueue,
    ExtractionTask,
    batched,
    extract_relevant_section,
    normalize_text,
)
from tests.fakes.fake_providers import FakeCompletionProvider

CONTENT = "1. הגדרות כלליות\n2. סכום הכיסוי להשתלה עד 1,000,000 ₪"


def _question(index: int = 0) -> ChapterQuestion:
    return ChapterQuestion(
        id=f"q{index}",
        question=f"שאלה מספר {index}",
        chapter_type=ChapterType.TRANSPLANTS,
        keywords=("כיסוי", "השתלה", "₪"),
    )


def _queue(provider, **overrides) -> ExtractionQueue:
    options = dict(
        task_delay=0,
        retry_delay=0.01,
        batch_size=2,
        batch_delay=0,
        max_tokens=300,
        degraded_max_tokens=50,
        call_timeout=1.0,
    )
    options.update(overrides)
    return ExtractionQueue(provider, **options)


# ============================================================================
# Helpers
# ============================================================================


class TestHelpers:
    def test_batched(self):
        assert batched([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        assert batched([1, 2], 0) == [[1], [2]]

    def test_normalize_text(self):
        assert normalize_text('  "שב״ן"   Plus ') == "שבן plus"

    def test_relevant_section_prefers_scored_section(self):
        assert extract_relevant_section(CONTENT, ("כיסוי", "השתלה", "₪")) == "2. סכום הכיסוי להשתלה עד 1,000,000 ₪"

    def test_relevant_section_falls_back_to_keyword_sentences(self):
        content = "אין כאן סעיפים. הכיסוי מלא בכל מקרה. טקסט אחר"

        assert extract_relevant_section(content, ("כיסוי",)) == "הכיסוי מלא בכל מקרה"

    def test_relevant_section_falls_back_to_prefix(self):
        assert extract_relevant_section("טקסט ללא התאמה", ("השתלה",), prefix_length=4) == "טקסט"


# ============================================================================
# Queue
# ============================================================================


class TestExtractionQueue:
    @pytest.mark.asyncio
    async def test_answer_returned_verbatim(self):
        provider = FakeCompletionProvider(lambda prompt, max_tokens: "1,000,000 ₪")
        queue = _queue(provider)

        answer = await queue.extract(CONTENT, _question())
        await queue.stop()

        assert answer == "1,000,000 ₪"
        assert provider.calls[0]["max_tokens"] == 300
        assert "שאלה מספר 0" in provider.calls[0]["prompt"]
        assert "1,000,000 ₪" in provider.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_questions_submitted_in_batches(self):
        provider = FakeCompletionProvider(lambda prompt, max_tokens: "לא מפורט")
        queue = _queue(provider, batch_delay=0.05)
        questions = [_question(i) for i in range(5)]

        answers = await queue.extract_questions(CONTENT, questions)
        await queue.stop()

        assert list(answers) == ["q0", "q1", "q2", "q3", "q4"]
        starts = [call["started_at"] for call in provider.calls]
        assert starts[2] - starts[1] >= 0.04
        assert starts[4] - starts[3] >= 0.04

    @pytest.mark.asyncio
    async def test_one_call_in_flight(self):
        provider = FakeCompletionProvider(delay=0.01)
        queue = _queue(provider)

        await asyncio.gather(*(queue.extract(CONTENT, _question(i)) for i in range(3)))
        await queue.stop()

        assert len(provider.calls) == 3
        assert queue.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_rate_limited_task_retried_with_short_prompt(self):
        provider = FakeCompletionProvider(
            lambda prompt, max_tokens: RateLimitedError() if len(provider.calls) == 1 else "500 ₪"
        )
        queue = _queue(provider)

        answer = await queue.extract(CONTENT, _question())
        await queue.stop()

        assert answer == "500 ₪"
        assert [call["max_tokens"] for call in provider.calls] == [300, 50]
        assert provider.calls[1]["prompt"].startswith("חלץ מידע")

    @pytest.mark.asyncio
    async def test_second_rate_limit_gives_error_sentinel(self):
        provider = FakeCompletionProvider(lambda prompt, max_tokens: RateLimitedError())
        queue = _queue(provider)

        answer = await queue.extract(CONTENT, _question())
        await queue.stop()

        assert answer == EXTRACTION_ERROR_ANSWER
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_completion_error_gives_error_sentinel(self):
        provider = FakeCompletionProvider(lambda prompt, max_tokens: CompletionError("boom", status_code=500))
        queue = _queue(provider)

        assert await queue.extract(CONTENT, _question()) == EXTRACTION_ERROR_ANSWER
        await queue.stop()
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_call_timeout_gives_error_sentinel(self):
        queue = _queue(FakeCompletionProvider(delay=0.2), call_timeout=0.01)

        assert await queue.extract(CONTENT, _question()) == EXTRACTION_ERROR_ANSWER
        await queue.stop()

    @pytest.mark.asyncio
    async def test_unavailable_collaborator_propagates(self):
        provider = FakeCompletionProvider(
            lambda prompt, max_tokens: CollaboratorUnavailableError("completion service")
        )
        queue = _queue(provider)

        with pytest.raises(CollaboratorUnavailableError):
            await queue.extract(CONTENT, _question())
        await queue.stop()

    @pytest.mark.asyncio
    async def test_unavailable_collaborator_fails_queued_tasks(self):
        provider = FakeCompletionProvider(
            lambda prompt, max_tokens: CollaboratorUnavailableError("completion service")
        )
        queue = _queue(provider, batch_size=5)

        with pytest.raises(CollaboratorUnavailableError):
            await queue.extract_questions(CONTENT, [_question(i) for i in range(5)])
        await asyncio.sleep(0.05)
        await queue.stop()

        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_after_stop_cancels_task(self):
        queue = _queue(FakeCompletionProvider())
        task = ExtractionTask(
            content=CONTENT, question=_question(), future=asyncio.get_running_loop().create_future()
        )

        queue._schedule_retry(task)
        await asyncio.sleep(0.05)

        assert task.future.cancelled()
        assert not queue._retry_tasks

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_tasks(self):
        queue = _queue(FakeCompletionProvider(delay=1.0))
        first = asyncio.create_task(queue.extract(CONTENT, _question(0)))
        second = asyncio.create_task(queue.extract(CONTENT, _question(1)))
        await asyncio.sleep(0.05)

        await queue.stop()

        assert not queue.running
        for pending in (first, second):
            with pytest.raises(asyncio.CancelledError):
                await pending
