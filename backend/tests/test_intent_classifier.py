"""
Tests for the intent classifier and its fail-safe wrapper.
"""

import asyncio

import pytest

from services.intent_classifier import (
    BaseIntentClassifier,
    IntentResult,
    KeywordIntentClassifier,
    Lane,
    classify_intent,
)


class SlowClassifier(BaseIntentClassifier):
    async def classify(self, text, context=None):
        await asyncio.sleep(1)
        return IntentResult(Lane.SUPPORT, 1.0)


class BrokenClassifier(BaseIntentClassifier):
    async def classify(self, text, context=None):
        raise ValueError("bad model output")


def classify(text, context=None):
    return asyncio.run(KeywordIntentClassifier().classify(text, context))


class TestKeywordClassifier:
    @pytest.mark.parametrize("text,lane", [
        ("How many days sober am I?", Lane.DATA_READ),
        ("show me my goals", Lane.DATA_READ),
        ("What are my recent moods?", Lane.DATA_READ),
        ("Create a new goal to run 5k", Lane.ACTION_WRITE),
        ("Log a check-in for me", Lane.ACTION_WRITE),
        ("I'm having really strong cravings tonight", Lane.SUPPORT),
        ("I feel so anxious and overwhelmed", Lane.SUPPORT),
        ("hello there", Lane.CHAT),
    ])
    def test_lanes(self, text, lane):
        assert classify(text).lane == lane

    def test_confidence_in_range(self):
        result = classify("show me my goals")
        assert 0 < result.confidence <= 1

    def test_confirmation_after_write_proposal(self):
        context = [
            {"role": "user", "content": "I want to walk every morning"},
            {"role": "assistant", "content": "Would you like me to create a goal for that?"},
        ]
        assert classify("yes please", context).lane == Lane.ACTION_WRITE

    def test_confirmation_without_proposal_is_chat(self):
        context = [{"role": "assistant", "content": "Nice to hear from you!"}]
        assert classify("ok", context).lane == Lane.CHAT


class TestFailSafe:
    def test_timeout_defaults_to_chat(self):
        result = asyncio.run(classify_intent(SlowClassifier(), "hi", timeout=0.01))
        assert result == IntentResult(Lane.CHAT, 0.0)

    def test_error_defaults_to_chat(self):
        result = asyncio.run(classify_intent(BrokenClassifier(), "show my goals"))
        assert result.lane == Lane.CHAT
