"""
Pydantic request/response models for the Symptom Service API.
"""
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# --- Symptom Analysis ---

class AnalyzeRequest(BaseModel):
    symptoms: str


class Condition(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    description: str
    likelihood: Union[int, float]  # nominally 0-100, not clamped
    severity: str  # "low", "medium", "high"


class Insight(BaseModel):
    model_config = ConfigDict(extra="allow")

    category: str  # "red_flags", "lifestyle", "prevention", "general"
    title: str
    content: str


class ConfidenceScore(BaseModel):
    model_config = ConfigDict(extra="allow")

    condition: str
    confidence: Union[int, float]  # nominally 0-100, not clamped
    reasoning: str


class StructuredAnalysis(BaseModel):
    """Analysis record returned to the client.

    Only the structure is checked. Values outside the nominal ranges and
    unknown severities or categories pass through as the model wrote them.
    """
    model_config = ConfigDict(extra="allow", frozen=True)

    conditions: list[Condition]
    recommendedSpecialist: str = Field(min_length=1)
    insights: list[Insight]
    confidenceScores: list[ConfidenceScore]


# --- Chat ---

class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
