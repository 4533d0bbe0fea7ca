"""
Input sanitization and validation for symptom descriptions.

A coarse pre-filter that rejects obviously non-substantive input before any
call to the inference engine. It does not try to understand medical content;
the analysis prompt asks the model to perform that second check.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

MIN_SYMPTOMS_LENGTH = 10
MAX_SYMPTOMS_LENGTH = 5000

NON_MEDICAL_PATTERNS = [
    # Greetings and filler
    re.compile(r"^(hi|hello|hey|hii|hiii|yo|sup|what's up|whatsup)$", re.IGNORECASE),
    # Test tokens
    re.compile(r"^(test|testing|123|abc|xyz|qwerty)$", re.IGNORECASE),
    # Only numbers/symbols
    re.compile(r"^[^a-zA-Z]*$"),
    # One character repeated, e.g. "aaaaa"
    re.compile(r"^(.)\1{4,}$", re.DOTALL),
    # A short fragment repeated, e.g. "xyzxyz", "hahaha"
    re.compile(r"^(\w{2,3})\1+$"),
]


class RejectionReason(str, Enum):
    TOO_SHORT = "too_short"
    NON_MEDICAL_PATTERN = "non_medical_pattern"


REJECTION_MESSAGES = {
    RejectionReason.TOO_SHORT: (
        "Please provide a more detailed description of your symptoms "
        f"(at least {MIN_SYMPTOMS_LENGTH} characters)"
    ),
    RejectionReason.NON_MEDICAL_PATTERN: (
        "Please describe your actual medical symptoms. For example: "
        "'headache and fever for 2 days' or 'chest pain when breathing'"
    ),
}


@dataclass(frozen=True)
class Accepted:
    text: str


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self.reason]


ValidationOutcome = Union[Accepted, Rejected]


def sanitize_symptoms(text: str) -> str:
    """Strip control characters and cap the length of raw symptom text."""
    if not text:
        return ""
    text = _remove_control_chars(text)
    if len(text) > MAX_SYMPTOMS_LENGTH:
        text = text[:MAX_SYMPTOMS_LENGTH]
    return text


def is_non_medical(text: str) -> bool:
    """True if text matches any known greeting, test token or junk pattern."""
    return any(pattern.search(text) for pattern in NON_MEDICAL_PATTERNS)


def validate_symptoms(text: str) -> ValidationOutcome:
    """Classify a symptom description as Accepted or Rejected.

    Anything under MIN_SYMPTOMS_LENGTH after trimming is TOO_SHORT, whatever
    it contains; the junk patterns only decide for longer text.
    """
    cleaned = text.strip()

    if len(cleaned) < MIN_SYMPTOMS_LENGTH:
        return Rejected(RejectionReason.TOO_SHORT)

    if is_non_medical(cleaned):
        return Rejected(RejectionReason.NON_MEDICAL_PATTERN)

    return Accepted(cleaned)


def _remove_control_chars(text: str) -> str:
    """Remove control characters other than tab and newline."""
    return re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
