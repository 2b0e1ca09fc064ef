"""
intent_classifier.py — Router layer 1.
Assigns each turn to a lane. Must stay cheap: every later stage waits on it.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from config import CLASSIFIER_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class Lane(str, Enum):
    CHAT = "chat"
    DATA_READ = "data-read"
    ACTION_WRITE = "action-write"
    SUPPORT = "support"


@dataclass
class IntentResult:
    lane: Lane
    confidence: float


class BaseIntentClassifier(ABC):
    @abstractmethod
    async def classify(self, text: str, context: list[dict] | None = None) -> IntentResult:
        ...


# Phrase patterns per lane; each hit adds one point
_LANE_PATTERNS: dict[Lane, list[str]] = {
    Lane.ACTION_WRITE: [
        r"\b(create|add|set up|start|make) (?:(?:a|an|my|new|another)\s+)*(goal|journal|entry|check[- ]?in|plan)",
        r"\b(log|record|save|write down|note down)\b",
        r"\bcheck me in\b",
        r"\bi want to check in\b",
        r"\bmark .* (as )?(done|complete|completed|finished)\b",
        r"\b(completed|finished|achieved) (my |the )?goal\b",
        r"\baction plan\b",
        r"\b(i did|i tried|i used) (some |a |the )?(breathing|meditation|walk|exercise|journaling)\b",
    ],
    Lane.DATA_READ: [
        r"\b(show|list|display|see|view|check) (me )?(my|all)\b",
        r"\bhow many days\b",
        r"\b(days sober|sober for|my streak|my progress|my level|my xp)\b",
        r"\bmy (goals|journals?|entries|check[- ]?ins|moods?|sleep|stress|heart rate|steps|stats|data)\b",
        r"\bwhat (are|were|was|is) my\b",
        r"\bhow (am i|have i been) doing\b",
        r"\bnext milestone\b",
        r"\b(is that|was it|did you) (added|saved|created|add it|save it)\b",
    ],
    Lane.SUPPORT: [
        r"\b(struggling|craving|cravings|urge|urges|tempted|triggered)\b",
        r"\b(stressed|anxious|anxiety|overwhelmed|lonely|sad|depressed|angry|scared)\b",
        r"\bhelp me (cope|calm|relax|get through)\b",
        r"\b(cope|coping)\b",
        r"\b(last time|remember when|we talked|you said|we discussed)\b",
        r"\bhard (day|time|week)\b",
    ],
}

_COMPILED = {
    lane: [re.compile(p, re.IGNORECASE) for p in patterns]
    for lane, patterns in _LANE_PATTERNS.items()
}

# Tie-break: the more specific lane wins
_LANE_PRIORITY = [Lane.ACTION_WRITE, Lane.DATA_READ, Lane.SUPPORT]

_CONFIRMATION = re.compile(
    r"^\s*(yes|yeah|yep|sure|ok|okay|please|do it|go ahead|sounds good|that's right|correct)\b[\s.!]*",
    re.IGNORECASE,
)
_WRITE_PROPOSAL = re.compile(
    r"\b(create|add|log|save|record|set up|mark)\b.*\?|\bshall i\b|\bwould you like me to\b",
    re.IGNORECASE,
)


class KeywordIntentClassifier(BaseIntentClassifier):
    """Phrase-scoring classifier. No model call, so it answers in microseconds."""

    async def classify(self, text: str, context: list[dict] | None = None) -> IntentResult:
        scores = {
            lane: sum(1 for p in patterns if p.search(text))
            for lane, patterns in _COMPILED.items()
        }
        total = sum(scores.values())

        if total == 0:
            if _CONFIRMATION.match(text) and self._last_assistant_proposed_write(context):
                return IntentResult(Lane.ACTION_WRITE, 0.6)
            return IntentResult(Lane.CHAT, 0.5)

        best = max(_LANE_PRIORITY, key=lambda lane: (scores[lane], -_LANE_PRIORITY.index(lane)))
        return IntentResult(best, round(scores[best] / total, 2))

    @staticmethod
    def _last_assistant_proposed_write(context: list[dict] | None) -> bool:
        for msg in reversed(context or []):
            if msg.get("role") == "assistant":
                return bool(_WRITE_PROPOSAL.search(msg.get("content") or ""))
        return False


async def classify_intent(
    classifier: BaseIntentClassifier,
    text: str,
    context: list[dict] | None = None,
    timeout: float = CLASSIFIER_TIMEOUT_SECONDS,
) -> IntentResult:
    """Classify with a deadline. Errors and timeouts route to the chat lane."""
    try:
        return await asyncio.wait_for(classifier.classify(text, context), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Intent classifier timed out; defaulting to chat lane")
    except Exception as e:
        logger.warning(f"Intent classifier failed ({e}); defaulting to chat lane")
    return IntentResult(Lane.CHAT, 0.0)
