"""
API routes for the policy comparison service
"""
import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request

from policylens.core.config import settings
from policylens.core.errors import CollaboratorUnavailableError
from policylens.core.security import verify_token
from policylens.models.requests import (
    ChapterExtractionRequest, ChapterExtractionResponse, ComparisonRequest, ComparisonResponse,
    ConsolidationRequest, ConsolidationResponse, HealthResponse, QuestionRequest, QuestionResponse,
    SourceResponse,
)
from policylens.services.policy_coordinator import PolicyCoordinator
from policylens.services.policy_parser import identify_policy_type

logger = logging.getLogger(__name__)

router = APIRouter()


def get_coordinator(request: Request) -> PolicyCoordinator:
    """Coordinator created at application startup"""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return coordinator


def _unavailable(error: CollaboratorUnavailableError) -> HTTPException:
    logger.error(f"Collaborator unavailable: {error}")
    return HTTPException(status_code=503, detail=f"{error.service} is unavailable, try again later")


@router.get("/", response_model=dict)
async def root():
    """Root endpoint"""
    return {
        "message": f"{settings.app_name} is running",
        "version": settings.version,
        "status": "ready"
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint"""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        return HealthResponse(status="unhealthy", service="policy-comparison")
    details = coordinator.health_check()
    return HealthResponse(status=details["status"], service="policy-comparison", details=details)


@router.post("/chapters/extract", response_model=ChapterExtractionResponse)
async def extract_chapters(
    request: ChapterExtractionRequest,
    token: str = Depends(verify_token),
    coordinator: PolicyCoordinator = Depends(get_coordinator),
):
    """Split policy text into chapters with their numbered sections"""
    try:
        if request.layered:
            policy = coordinator.parse_layered_policy("request", "request", request.text)
            chapters = policy.chapters
        else:
            chapters = coordinator.extract_chapters(request.text)
        return ChapterExtractionResponse(
            chapters=[chapter.to_dict() for chapter in chapters],
            policy_type=identify_policy_type(request.text).value,
            chapter_count=len(chapters),
        )
    except Exception as e:
        logger.exception("Chapter extraction failed")
        raise HTTPException(status_code=500, detail=f"Chapter extraction failed: {str(e)}")


@router.post("/policies/compare", response_model=ComparisonResponse)
async def compare_policies(
    request: ComparisonRequest,
    token: str = Depends(verify_token),
    coordinator: PolicyCoordinator = Depends(get_coordinator),
):
    """
    Compare two policies

    This endpoint:
    1. Structures both policies into chapters
    2. Extracts coverage answers for every recognised chapter
    3. Compares the answers and ranks the significant differences
    """
    try:
        policy_a = coordinator.structure_policy(
            request.policy_a.id, request.policy_a.name, request.policy_a.text, request.policy_a.issuer
        )
        policy_b = coordinator.structure_policy(
            request.policy_b.id, request.policy_b.name, request.policy_b.text, request.policy_b.issuer
        )
        report = await coordinator.compare_policies(policy_a, policy_b)
        return ComparisonResponse(
            comparison=report.result.model_dump(mode="json", by_alias=True),
            analytics={key: value.to_dict() for key, value in report.analytics.items()},
            processing_time=report.processing_time,
        )
    except CollaboratorUnavailableError as e:
        raise _unavailable(e)
    except Exception as e:
        logger.exception("Policy comparison failed")
        raise HTTPException(status_code=500, detail=f"Policy comparison failed: {str(e)}")


@router.post("/policies/ask", response_model=QuestionResponse)
async def ask_question(
    request: QuestionRequest,
    token: str = Depends(verify_token),
    coordinator: PolicyCoordinator = Depends(get_coordinator),
):
    """Answer a free-form question from the most relevant policy chapters"""
    start_time = time.time()
    try:
        policies = [
            coordinator.structure_policy(doc.id, doc.name, doc.text, doc.issuer)
            for doc in request.policies
        ]
        result = await coordinator.ask(request.question, policies)
        return QuestionResponse(
            answer=result.answer,
            sources=[
                SourceResponse(
                    policy_id=source.policy_id,
                    policy_name=source.policy_name,
                    chapter_title=source.chapter_title,
                    similarity=source.similarity,
                )
                for source in result.sources
            ],
            relevant_policies=result.relevant_policies,
            confidence=result.confidence,
            processing_time=time.time() - start_time,
        )
    except CollaboratorUnavailableError as e:
        raise _unavailable(e)
    except Exception as e:
        logger.exception("Question answering failed")
        raise HTTPException(status_code=500, detail=f"Question answering failed: {str(e)}")


@router.post("/policies/consolidate", response_model=ConsolidationResponse)
async def consolidate_policies(
    request: ConsolidationRequest,
    token: str = Depends(verify_token),
    coordinator: PolicyCoordinator = Depends(get_coordinator),
):
    """Line up similar chapters of several layered policies"""
    try:
        policies = [
            coordinator.parse_layered_policy(doc.id, doc.name, doc.text, doc.issuer)
            for doc in request.policies
        ]
        groups = coordinator.consolidate(policies)
        return ConsolidationResponse(chapters=[group.to_dict() for group in groups])
    except Exception as e:
        logger.exception("Policy consolidation failed")
        raise HTTPException(status_code=500, detail=f"Policy consolidation failed: {str(e)}")
