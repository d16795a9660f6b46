"""
Request/Response models for the API
"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional


class PolicyDocument(BaseModel):
    """Plain text of one policy"""
    id: str
    name: str
    text: str
    issuer: Optional[str] = None

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('policy text must not be empty')
        return v


class ChapterExtractionRequest(BaseModel):
    """Request model for chapter extraction"""
    text: str
    layered: bool = False  # Use the layer / chapter / numbered item parser

    class Config:
        json_schema_extra = {
            "example": {
                "text": "פרק א: השתלות\n1. כיסוי להשתלה בישראל ...\nפרק ב: תרופות\n1. תרופות שאינן בסל ...",
                "layered": False
            }
        }


class ChapterExtractionResponse(BaseModel):
    chapters: List[Dict[str, Any]]
    policy_type: str
    chapter_count: int


class ComparisonRequest(BaseModel):
    """Request model for comparing two policies"""
    policy_a: PolicyDocument
    policy_b: PolicyDocument

    class Config:
        json_schema_extra = {
            "example": {
                "policy_a": {"id": "harel-2024", "name": "הראל בריאות", "text": "פרק א: השתלות ..."},
                "policy_b": {"id": "migdal-2024", "name": "מגדל בריאות", "text": "פרק א: השתלות ..."}
            }
        }


class ComparisonResponse(BaseModel):
    comparison: Dict[str, Any]  # ComparisonResult in its camelCase form
    analytics: Dict[str, Dict[str, Any]]
    processing_time: float


class QuestionRequest(BaseModel):
    """Request model for a free-form question over policies"""
    policies: List[PolicyDocument] = Field(min_length=1)
    question: str

    @field_validator('question')
    @classmethod
    def validate_question(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('question must not be empty')
        return v


class SourceResponse(BaseModel):
    policy_id: str
    policy_name: str
    chapter_title: str
    similarity: float


class QuestionResponse(BaseModel):
    answer: str
    sources: List[SourceResponse]
    relevant_policies: List[str]
    confidence: float
    processing_time: float


class ConsolidationRequest(BaseModel):
    """Request model for lining up chapters of several policies"""
    policies: List[PolicyDocument] = Field(min_length=2)


class ConsolidationResponse(BaseModel):
    chapters: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    details: Optional[Dict[str, Any]] = None
