from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class Suggestion(BaseModel):
    text: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    rationale: Optional[str] = None


class SuggestionsRead(BaseModel):
    available: bool
    business_id: str
    question_id: str
    suggestions: List[Suggestion] = Field(default_factory=list)
    conversation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    message: Optional[str] = None


class AwaitSuggestionsRead(BaseModel):
    status: Literal["ready", "still_processing"]
    business_id: str
    question_id: str
    suggestions: List[Suggestion] = Field(default_factory=list)
    attempts: Optional[int] = None
    message: Optional[str] = None


class TriggerRead(BaseModel):
    success: bool
    simulated: bool = False
    business_id: str
    question_id: str
    status_code: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None
    lindy_response: Optional[Dict[str, Any]] = None


class GenerationRequest(BaseModel):
    wait: bool = True


class GenerationStateRead(BaseModel):
    business_id: str
    question_id: str
    status: Literal["idle", "loading", "ready", "still_processing", "failed"]
    is_loading: bool
    suggestions: List[Suggestion] = Field(default_factory=list)
    error: Optional[str] = None
    simulated: bool = False


class LindyResponseRead(BaseModel):
    id: int
    business_id: str
    question_id: str
    role: str
    idempotency_key: str
    suggestions: List[Suggestion]
    content: Optional[Dict[str, Any]]
    created_at: datetime


class RequestLogRead(BaseModel):
    id: int
    business_id: Optional[str]
    question_id: Optional[str]
    direction: str
    endpoint: str
    method: str
    payload: Optional[Any]
    response_status: Optional[int]
    response_body: Optional[Any]
    success: bool
    error_message: Optional[str]
    processing_time_ms: Optional[int]
    created_at: datetime


class SimulateCallbackRequest(BaseModel):
    business_id: str = Field(..., min_length=1, max_length=64)
    question_id: str = Field(default="Q7", min_length=1, max_length=32)
