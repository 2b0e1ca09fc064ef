"""
Tests for the crisis detector and safety resource handling.
"""

import pytest

from errors import CrisisDetectionFailure
from services.crisis_detector import (
    BaseCrisisDetector,
    KeywordCrisisDetector,
    SAFETY_RESOURCES,
    check_for_crisis,
    ensure_safety_resources,
)


class ExplodingDetector(BaseCrisisDetector):
    def detect(self, text):
        raise RuntimeError("model unavailable")


class TestKeywordDetector:
    @pytest.mark.parametrize("text", [
        "I want to die",
        "Sometimes I think about SUICIDE",
        "I might Hurt Myself tonight",
        "there's no reason to live",
    ])
    def test_matches_any_case(self, text):
        assert check_for_crisis(text).is_crisis is True

    def test_benign_text(self):
        result = check_for_crisis("Had a good day, went for a run")
        assert result.is_crisis is False
        assert result.matched_keywords == []

    def test_reports_matched_keywords(self):
        result = KeywordCrisisDetector().detect("I want to die and give up")
        assert "want to die" in result.matched_keywords
        assert "give up" in result.matched_keywords

    def test_custom_keywords(self):
        detector = KeywordCrisisDetector(keywords=["Hopeless"])
        assert detector.detect("feeling hopeless").is_crisis

    def test_non_string_raises(self):
        with pytest.raises(CrisisDetectionFailure):
            KeywordCrisisDetector().detect(None)


class TestFailOpen:
    def test_detector_error_means_crisis(self):
        result = check_for_crisis("hello", detector=ExplodingDetector())
        assert result.is_crisis is True
        assert result.failed is True

    def test_non_string_input_fails_open(self):
        assert check_for_crisis(None).is_crisis is True


class TestSafetyResources:
    def test_appends_resources(self):
        text = ensure_safety_resources("I'm here for you.")
        assert text.startswith("I'm here for you.")
        assert "988" in text and "741741" in text

    def test_idempotent(self):
        once = ensure_safety_resources("Hang in there.")
        assert ensure_safety_resources(once) == once

    def test_empty_text_gets_full_response(self):
        assert SAFETY_RESOURCES in ensure_safety_resources("")
