"""
Structured extraction of a symptom analysis from free-text model output.

The model reply is untrusted. ``extract_analysis`` never raises: every reply
ends up as exactly one of

  ParsedAnalysis    the reply held a structurally valid analysis
  ModelRejected     the model flagged the input as not a symptom description
  FallbackAnalysis  nothing usable was found, a fixed safe record is used
"""
import logging
from dataclasses import dataclass
from typing import Union

from pydantic import ValidationError

from .json_utils import MalformedModelOutput, extract_json
from .models import StructuredAnalysis

logger = logging.getLogger(__name__)

INVALID_INPUT_ERROR = "invalid_input"
DEFAULT_REJECTION_MESSAGE = "Please describe your actual medical symptoms"

FALLBACK_CONDITION_NAME = "Multiple Possible Conditions"

_FALLBACK_PAYLOAD = {
    "conditions": [
        {
            "name": FALLBACK_CONDITION_NAME,
            "description": (
                "Based on your symptoms, several conditions could be possible. "
                "A healthcare professional can provide proper diagnosis."
            ),
            "likelihood": 50,
            "severity": "medium",
        }
    ],
    "recommendedSpecialist": "General Practitioner",
    "insights": [
        {
            "category": "red_flags",
            "title": "When to Seek Immediate Care",
            "content": (
                "If symptoms worsen, become severe, or you experience difficulty "
                "breathing, chest pain, or severe headache, seek immediate medical attention."
            ),
        },
        {
            "category": "lifestyle",
            "title": "General Care",
            "content": (
                "Rest, stay hydrated, monitor your symptoms, and avoid strenuous "
                "activities until you can see a healthcare provider."
            ),
        },
        {
            "category": "prevention",
            "title": "Health Maintenance",
            "content": (
                "Maintain a healthy lifestyle with regular exercise, balanced diet, "
                "adequate sleep, and regular health check-ups."
            ),
        },
        {
            "category": "general",
            "title": "Professional Evaluation",
            "content": (
                "This analysis could not be completed automatically. Share your "
                "symptoms with a healthcare professional for an accurate assessment."
            ),
        },
    ],
    "confidenceScores": [
        {
            "condition": FALLBACK_CONDITION_NAME,
            "confidence": 50,
            "reasoning": "Symptoms require professional medical evaluation for accurate diagnosis.",
        }
    ],
}


@dataclass(frozen=True)
class ParsedAnalysis:
    """A structurally valid analysis. ``data`` is the reply exactly as parsed."""

    analysis: StructuredAnalysis
    data: dict

    @property
    def payload(self) -> dict:
        return self.data


@dataclass(frozen=True)
class ModelRejected:
    message: str


@dataclass(frozen=True)
class FallbackAnalysis:
    analysis: StructuredAnalysis
    reason: str

    @property
    def payload(self) -> dict:
        return self.analysis.model_dump()


ExtractionResult = Union[ParsedAnalysis, ModelRejected, FallbackAnalysis]


def fallback_analysis() -> StructuredAnalysis:
    """A fresh copy of the fixed safe analysis record."""
    return StructuredAnalysis.model_validate(_FALLBACK_PAYLOAD)


def is_model_rejection(data: dict) -> bool:
    return data.get("error") == INVALID_INPUT_ERROR


def extract_analysis(raw_text: str) -> ExtractionResult:
    """Turn a model reply into a parsed analysis, a rejection, or the fallback."""
    try:
        data = extract_json(raw_text or "")
    except MalformedModelOutput as e:
        logger.warning(f"Using fallback analysis: {e}")
        return FallbackAnalysis(fallback_analysis(), reason=str(e))

    if is_model_rejection(data):
        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            message = DEFAULT_REJECTION_MESSAGE
        logger.info("Model rejected the symptom description")
        return ModelRejected(message)

    try:
        analysis = StructuredAnalysis.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Model JSON does not match the analysis schema ({e.error_count()} errors); using fallback")
        return FallbackAnalysis(fallback_analysis(), reason="Model JSON did not match the analysis schema")

    # the reply goes out as parsed, not as the coerced model
    return ParsedAnalysis(analysis, data)
