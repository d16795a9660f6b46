"""
Comparison engine - diffs the extracted coverage of two policies

Every collaborator call has a degraded fallback, so compare() always returns
a ComparisonResult. Only CollaboratorUnavailableError propagates.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional

from policylens.core.config import settings
from policylens.core.errors import CollaboratorUnavailableError, CompletionError, RateLimitedError
from policylens.data.chapter_questions import ChapterTypeClassifier
from policylens.models.chapter import Policy
from policylens.models.comparison import (
    BetterPolicy, ChapterComparison, ComparisonResult, CoverageComparison, SignificantDifference,
)
from policylens.models.questions import EXTRACTION_ERROR_ANSWER, is_no_information
from policylens.services.amount_extractor import extract_financial_impact
from policylens.services.extraction_queue import ExtractionQueue, normalize_text
from policylens.services.structured_output import parse_structured_output

logger = logging.getLogger(__name__)

CoverageMap = Dict[str, Dict[str, str]]

INSUFFICIENT_INFORMATION = "אין מידע מספיק להשוואה"
NO_INFORMATION_ANALYSIS = "לא ניתן לקבוע הבדל לאור העדר מידע בשתי הפוליסות"
IDENTICAL_DIFFERENCE = "אין הבדל"
IDENTICAL_ANALYSIS = "התשובות בשתי הפוליסות זהות"
PARSE_FAILURE_DIFFERENCE = "שגיאה בעיבוד ההשוואה"
PARSE_FAILURE_ANALYSIS = "לא ניתן לנתח את ההבדלים בצורה אוטומטית"
CALL_FAILURE_DIFFERENCE = "שגיאה בהשוואה"
CALL_FAILURE_ANALYSIS = "אירעה שגיאה בעת ביצוע ההשוואה"
CHAPTER_SUMMARY_UNAVAILABLE = "לא ניתן לייצר סיכום אוטומטי לפרק זה"
OVERALL_SUMMARY_UNAVAILABLE = "לא ניתן לייצר סיכום השוואה אוטומטי"
NO_DIFFERENCES_SUMMARY = "לא נמצאו הבדלים מהותיים בין הפוליסות"


class Deadline:
    """Monotonic deadline shared by all calls of one comparison"""

    def __init__(self, timeout: Optional[float]):
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0


class ComparisonEngine:
    """Orchestrates extraction and comparison of two policies"""

    def __init__(
        self,
        provider,
        extraction_queue: ExtractionQueue,
        classifier: Optional[ChapterTypeClassifier] = None,
        max_concurrent_chapters: int = settings.max_concurrent_chapter_comparisons,
        comparison_timeout: Optional[float] = settings.comparison_timeout,
        call_timeout: Optional[float] = settings.llm_request_timeout,
        rate_limit_retry_delay: float = settings.extraction_retry_delay,
        max_significant_differences: int = settings.max_significant_differences,
    ):
        """
        Args:
            provider: Completion collaborator exposing async complete(prompt, max_tokens)
            extraction_queue: Shared extraction queue
            classifier: Chapter type classifier, default catalog when None
            max_concurrent_chapters: Chapters compared at the same time
            comparison_timeout: Deadline for a whole compare() call
            call_timeout: Deadline for one collaborator call
            rate_limit_retry_delay: Wait before the single retry of a rate-limited call
            max_significant_differences: Upper bound on ranked differences
        """
        self.provider = provider
        self.extraction_queue = extraction_queue
        self.classifier = classifier or ChapterTypeClassifier()
        self.max_concurrent_chapters = max(1, max_concurrent_chapters)
        self.comparison_timeout = comparison_timeout
        self.call_timeout = call_timeout
        self.rate_limit_retry_delay = rate_limit_retry_delay
        self.max_significant_differences = max_significant_differences

    async def compare(self, policy_a: Policy, policy_b: Policy) -> ComparisonResult:
        """
        Compare two structured policies

        Args:
            policy_a: First policy
            policy_b: Second policy

        Returns:
            ComparisonResult, with degraded fields where calls failed
        """
        start_time = time.time()
        deadline = Deadline(self.comparison_timeout)
        logger.info(f"Comparing policy {policy_a.id} with {policy_b.id}")

        coverage_a = await self.extract_coverage(policy_a, deadline)
        coverage_b = await self.extract_coverage(policy_b, deadline)

        result = await self.compare_coverage(
            coverage_a,
            coverage_b,
            policy_a_id=policy_a.id,
            policy_b_id=policy_b.id,
            policy_a_name=policy_a.name,
            policy_b_name=policy_b.name,
            deadline=deadline,
        )
        logger.info(
            f"Comparison finished in {time.time() - start_time:.2f}s: "
            f"{len(result.chapter_comparisons)} chapters, {len(result.significant_differences)} significant differences"
        )
        return result

    async def extract_coverage(self, policy: Policy, deadline: Optional[Deadline] = None) -> CoverageMap:
        """Answer every catalog question that applies to each chapter of a policy"""
        deadline = deadline or Deadline(self.comparison_timeout)
        coverage: CoverageMap = {}
        for chapter in policy.chapters:
            questions = self.classifier.questions_for_chapter(chapter.title)
            if not questions:
                continue
            if deadline.expired:
                logger.warning(f"Deadline passed, skipping extraction for '{chapter.title}'")
                coverage[chapter.title] = {q.id: EXTRACTION_ERROR_ANSWER for q in questions}
                continue
            logger.info(f"Extracting {len(questions)} questions from '{chapter.title}' of {policy.id}")
            coverage[chapter.title] = await self.extraction_queue.extract_questions(chapter.full_text(), questions)
        return coverage

    async def compare_coverage(
        self,
        coverage_a: CoverageMap,
        coverage_b: CoverageMap,
        policy_a_id: str,
        policy_b_id: str,
        policy_a_name: Optional[str] = None,
        policy_b_name: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> ComparisonResult:
        """Diff two coverage maps, rank the differences and summarize them"""
        deadline = deadline or Deadline(self.comparison_timeout)
        titles = list(dict.fromkeys(list(coverage_a) + list(coverage_b)))
        semaphore = asyncio.Semaphore(self.max_concurrent_chapters)

        async def bounded(title: str) -> ChapterComparison:
            async with semaphore:
                return await self.compare_chapter(
                    title, coverage_a.get(title, {}), coverage_b.get(title, {}), deadline
                )

        chapter_results = await asyncio.gather(*(bounded(title) for title in titles))

        result = ComparisonResult(
            policy_a_id=policy_a_id,
            policy_b_id=policy_b_id,
            policy_a_name=policy_a_name,
            policy_b_name=policy_b_name,
            chapter_comparisons={c.title: c for c in chapter_results},
        )
        result.significant_differences = await self.identify_significant_differences(result, deadline)
        result.summary = await self.generate_overall_summary(result, deadline)
        return result

    async def compare_chapter(
        self,
        title: str,
        answers_a: Dict[str, str],
        answers_b: Dict[str, str],
        deadline: Optional[Deadline] = None,
    ) -> ChapterComparison:
        """Compare one chapter; questions answered on one side only are listed as missing on the other"""
        deadline = deadline or Deadline(self.comparison_timeout)
        chapter = ChapterComparison(title=title)

        for question_id in dict.fromkeys(list(answers_a) + list(answers_b)):
            if question_id not in answers_b:
                chapter.missing_in_b.append(question_id)
            elif question_id not in answers_a:
                chapter.missing_in_a.append(question_id)
            else:
                chapter.coverage_comparisons[question_id] = await self.compare_answers(
                    question_id, answers_a[question_id], answers_b[question_id], deadline
                )

        chapter.summary = await self.summarize_chapter(chapter, deadline)
        return chapter

    async def compare_answers(
        self,
        question_id: str,
        answer_a: str,
        answer_b: str,
        deadline: Optional[Deadline] = None,
    ) -> CoverageComparison:
        """Pairwise comparison of two answers to the same question"""
        if is_no_information(answer_a) and is_no_information(answer_b):
            return CoverageComparison(
                policy_a=answer_a,
                policy_b=answer_b,
                difference=INSUFFICIENT_INFORMATION,
                better_policy=BetterPolicy.UNKNOWN,
                analysis=NO_INFORMATION_ANALYSIS,
            )
        if normalize_text(answer_a) == normalize_text(answer_b):
            return CoverageComparison(
                policy_a=answer_a,
                policy_b=answer_b,
                difference=IDENTICAL_DIFFERENCE,
                better_policy=BetterPolicy.EQUAL,
                analysis=IDENTICAL_ANALYSIS,
            )

        prompt = (
            "<השוואה>\n"
            f"שאלה: {self._question_text(question_id)}\n\n"
            f"פוליסה A: {answer_a}\n\n"
            f"פוליסה B: {answer_b}\n"
            "</השוואה>\n\n"
            "השווה בין שני פרטי הפוליסה באופן ישיר.\n"
            "1. חשב הבדלים מספריים (מוחלטים ובאחוזים)\n"
            "2. קבע איזו פוליסה מספקת כיסוי טוב יותר בהיבט זה\n"
            "3. ציין מגבלות או תנאים חשובים בכל פוליסה\n\n"
            "החזר JSON בלבד במבנה הבא:\n"
            "{\n"
            '  "policyA": "סיכום כיסוי פוליסה A",\n'
            '  "policyB": "סיכום כיסוי פוליסה B",\n'
            '  "difference": "הפרש כמותי בין הפוליסות, כולל סכום ב-₪ אם קיים",\n'
            '  "percentageDifference": "הפרש באחוזים אם רלוונטי",\n'
            '  "betterPolicy": "A" | "B" | "equal" | "unknown",\n'
            '  "analysis": "ניתוח קצר של ההבדל"\n'
            "}"
        )

        try:
            text = await self._complete(prompt, settings.comparison_max_tokens, deadline)
        except CollaboratorUnavailableError:
            raise
        except (RateLimitedError, CompletionError, asyncio.TimeoutError) as e:
            logger.warning(f"Comparison call failed for '{question_id}': {e!r}")
            return self._degraded_comparison(answer_a, answer_b, CALL_FAILURE_DIFFERENCE, CALL_FAILURE_ANALYSIS)

        output = parse_structured_output(text, dict)
        if not output.parsed:
            logger.warning(f"Malformed comparison output for '{question_id}'")
            return self._degraded_comparison(answer_a, answer_b, PARSE_FAILURE_DIFFERENCE, PARSE_FAILURE_ANALYSIS)

        data = output.value
        difference = str(data.get("difference") or "")
        percentage = data.get("percentageDifference")
        return CoverageComparison(
            policy_a=str(data.get("policyA") or answer_a),
            policy_b=str(data.get("policyB") or answer_b),
            difference=difference,
            percentage_difference=str(percentage) if percentage not in (None, "") else None,
            better_policy=BetterPolicy.parse(data.get("betterPolicy")),
            analysis=str(data.get("analysis") or ""),
            financial_impact=extract_financial_impact(difference),
        )

    @staticmethod
    def _degraded_comparison(answer_a: str, answer_b: str, difference: str, analysis: str) -> CoverageComparison:
        return CoverageComparison(
            policy_a=answer_a,
            policy_b=answer_b,
            difference=difference,
            better_policy=BetterPolicy.UNKNOWN,
            analysis=analysis,
        )

    async def summarize_chapter(self, chapter: ChapterComparison, deadline: Optional[Deadline] = None) -> str:
        """Short narrative of one chapter's differences"""
        if not chapter.coverage_comparisons and not chapter.missing_in_a and not chapter.missing_in_b:
            return NO_DIFFERENCES_SUMMARY

        comparisons = "\n".join(
            f"- {c.policy_a} (פוליסה A) לעומת {c.policy_b} (פוליסה B): {c.difference}"
            for c in chapter.coverage_comparisons.values()
        )
        missing = "\n".join(
            [f"- פרט חסר בפוליסה A: {self._question_text(q)}" for q in chapter.missing_in_a]
            + [f"- פרט חסר בפוליסה B: {self._question_text(q)}" for q in chapter.missing_in_b]
        )
        prompt = (
            "<פרטי_השוואת_פרק>\n"
            f"פרק: {chapter.title}\n\n"
            f"השוואות:\n{comparisons or '-'}\n\n"
            f"פרטים חסרים:\n{missing or '-'}\n"
            "</פרטי_השוואת_פרק>\n\n"
            "סכם את ההבדלים העיקריים בין שתי הפוליסות בפרק זה, בדגש על המשמעות הכספית והמעשית למבוטח. "
            "עד 3 משפטים."
        )
        try:
            summary = await self._complete(prompt, settings.chapter_summary_max_tokens, deadline)
        except CollaboratorUnavailableError:
            raise
        except (RateLimitedError, CompletionError, asyncio.TimeoutError) as e:
            logger.warning(f"Chapter summary failed for '{chapter.title}': {e!r}")
            return CHAPTER_SUMMARY_UNAVAILABLE
        return summary.strip() or CHAPTER_SUMMARY_UNAVAILABLE

    async def identify_significant_differences(
        self,
        result: ComparisonResult,
        deadline: Optional[Deadline] = None,
    ) -> List[SignificantDifference]:
        """Rank the most important differences across all chapters"""
        if not self._has_differences(result):
            logger.info("No differences between policies, skipping significance ranking")
            return []

        sections = []
        for title, chapter in result.chapter_comparisons.items():
            lines = [
                f"- {c.policy_a} (פוליסה A) לעומת {c.policy_b} (פוליסה B)\n  - הבדל: {c.difference}\n  - ניתוח: {c.analysis}"
                for c in chapter.coverage_comparisons.values()
            ]
            lines += [f"- חסר בפוליסה A: {self._question_text(q)}" for q in chapter.missing_in_a]
            lines += [f"- חסר בפוליסה B: {self._question_text(q)}" for q in chapter.missing_in_b]
            sections.append(f"## {title}\n" + "\n\n".join(lines))

        limit = self.max_significant_differences
        prompt = (
            "<סיכום_הבדלים>\n"
            + "\n\n".join(sections)
            + "\n</סיכום_הבדלים>\n\n"
            f"זהה את {limit} ההבדלים המשמעותיים ביותר בין שתי פוליסות הביטוח מבחינת ההשפעה הכספית "
            "והחשיבות המעשית למבוטח. לכל הבדל כמת את ההשפעה הכספית, הסבר את ההשלכה המעשית וציין איזו פוליסה עדיפה.\n\n"
            "החזר מערך JSON בלבד במבנה הבא:\n"
            "[\n"
            "  {\n"
            '    "aspect": "היבט הכיסוי",\n'
            '    "chapter": "שם הפרק",\n'
            '    "financialImpact": "השפעה כספית מכומתת",\n'
            '    "practicalImplication": "השלכה מעשית למבוטח",\n'
            '    "betterPolicy": "A" | "B" | "equal"\n'
            "  }\n"
            "]"
        )
        try:
            text = await self._complete(prompt, settings.significant_differences_max_tokens, deadline)
        except CollaboratorUnavailableError:
            raise
        except (RateLimitedError, CompletionError, asyncio.TimeoutError) as e:
            logger.warning(f"Significant differences call failed: {e!r}")
            return []

        output = parse_structured_output(text, list)
        if not output.parsed:
            logger.warning("Malformed significant differences output")
            return []

        differences = []
        for item in output.value:
            if not isinstance(item, dict) or not item.get("aspect"):
                continue
            differences.append(SignificantDifference(
                aspect=str(item.get("aspect")),
                chapter=str(item.get("chapter") or ""),
                financial_impact=str(item.get("financialImpact") or ""),
                practical_implication=str(item.get("practicalImplication") or ""),
                better_policy=BetterPolicy.parse(item.get("betterPolicy")),
            ))
        return differences[:limit]

    async def generate_overall_summary(self, result: ComparisonResult, deadline: Optional[Deadline] = None) -> str:
        """Narrative summary built from the significant differences"""
        if not result.significant_differences:
            return NO_DIFFERENCES_SUMMARY if not self._has_differences(result) else OVERALL_SUMMARY_UNAVAILABLE

        differences = "\n\n".join(
            f"{index}. {d.aspect} ({d.chapter}): {d.financial_impact}. {d.practical_implication}"
            for index, d in enumerate(result.significant_differences, start=1)
        )
        prompt = (
            "<השוואת_פוליסות>\n"
            f"פוליסה A: {result.policy_a_name or result.policy_a_id}\n"
            f"פוליסה B: {result.policy_b_name or result.policy_b_id}\n\n"
            f"הבדלים משמעותיים:\n{differences}\n"
            "</השוואת_פוליסות>\n\n"
            "כתוב סיכום קצר (עד 5 משפטים) של ההבדלים העיקריים בין שתי הפוליסות, בדגש על ההשלכות הכספיות "
            "והמעשיות למבוטח. אם אחת הפוליסות עדיפה באופן כללי, ציין זאת ונמק."
        )
        try:
            summary = await self._complete(prompt, settings.overall_summary_max_tokens, deadline)
        except CollaboratorUnavailableError:
            raise
        except (RateLimitedError, CompletionError, asyncio.TimeoutError) as e:
            logger.warning(f"Overall summary failed: {e!r}")
            return OVERALL_SUMMARY_UNAVAILABLE
        return summary.strip() or OVERALL_SUMMARY_UNAVAILABLE

    @staticmethod
    def _has_differences(result: ComparisonResult) -> bool:
        for chapter in result.chapter_comparisons.values():
            if chapter.missing_in_a or chapter.missing_in_b:
                return True
            for comparison in chapter.coverage_comparisons.values():
                if comparison.better_policy == BetterPolicy.EQUAL:
                    continue
                if comparison.difference != INSUFFICIENT_INFORMATION:
                    return True
        return False

    def _question_text(self, question_id: str) -> str:
        question = self.classifier.get_question(question_id)
        return question.question if question else question_id

    async def _complete(self, prompt: str, max_tokens: int, deadline: Optional[Deadline]) -> str:
        """One collaborator call under the call and pipeline deadlines, retried once on rate limit"""
        for attempt in range(2):
            timeout = self.call_timeout
            remaining = deadline.remaining() if deadline else None
            if remaining is not None:
                if remaining <= 0:
                    raise asyncio.TimeoutError("comparison deadline exceeded")
                timeout = remaining if timeout is None else min(timeout, remaining)
            try:
                return await asyncio.wait_for(self.provider.complete(prompt, max_tokens=max_tokens), timeout=timeout)
            except RateLimitedError:
                if attempt == 1:
                    raise
                logger.warning(f"Rate limited, retrying in {self.rate_limit_retry_delay}s")
                await asyncio.sleep(self.rate_limit_retry_delay)
        raise RateLimitedError()
