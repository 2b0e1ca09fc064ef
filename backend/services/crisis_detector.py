"""
crisis_detector.py — Safety layer.
Runs on every turn before routing. Detectors are pluggable; the keyword
matcher is the default. Any detector failure is treated as a crisis.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from errors import CrisisDetectionFailure

logger = logging.getLogger(__name__)


CRISIS_KEYWORDS = [
    "suicide", "suicidal", "kill myself", "end my life", "want to die",
    "self-harm", "hurt myself", "cutting", "overdose", "relapse",
    "can't go on", "give up", "no reason to live", "better off dead",
]

SAFETY_RESOURCES = (
    "If you're in crisis or thinking about harming yourself, please reach out now:\n"
    "- Call or text 988 (Suicide & Crisis Lifeline), available 24/7\n"
    "- Text HOME to 741741 (Crisis Text Line)\n"
    "- https://988lifeline.org\n"
    "- If you are in immediate danger, call 911."
)

SAFETY_RESPONSE = (
    "I'm really glad you told me, and I'm taking what you shared seriously. "
    "You don't have to go through this alone. Professional support is available right now.\n\n"
    + SAFETY_RESOURCES
)


@dataclass
class CrisisCheck:
    is_crisis: bool
    matched_keywords: list[str] = field(default_factory=list)
    failed: bool = False  # True when the detector errored and we failed open


class BaseCrisisDetector(ABC):
    @abstractmethod
    def detect(self, text: str) -> CrisisCheck:
        """Inspect sanitized text. Raise CrisisDetectionFailure when unable to decide."""
        ...


class KeywordCrisisDetector(BaseCrisisDetector):
    """Case-insensitive substring match over a fixed phrase list."""

    def __init__(self, keywords: list[str] | None = None):
        self.keywords = [k.lower() for k in (keywords or CRISIS_KEYWORDS)]

    def detect(self, text: str) -> CrisisCheck:
        if not isinstance(text, str):
            raise CrisisDetectionFailure("Crisis detector expects text", details=type(text).__name__)
        lowered = text.lower()
        matched = [k for k in self.keywords if k in lowered]
        return CrisisCheck(is_crisis=bool(matched), matched_keywords=matched)


def check_for_crisis(text: str, detector: BaseCrisisDetector | None = None) -> CrisisCheck:
    """Run the detector, failing open: an error means we assume crisis."""
    detector = detector or KeywordCrisisDetector()
    try:
        result = detector.detect(text)
    except Exception as e:
        logger.error(f"Crisis detector failed, assuming crisis: {e}")
        return CrisisCheck(is_crisis=True, failed=True)
    if result.is_crisis:
        logger.warning(f"Crisis language detected: {result.matched_keywords}")
    return result


def ensure_safety_resources(text: str) -> str:
    """Append the safety resources block unless it is already present."""
    text = text or ""
    if "988" in text and "741741" in text:
        return text
    if not text.strip():
        return SAFETY_RESPONSE
    return f"{text.rstrip()}\n\n{SAFETY_RESOURCES}"
