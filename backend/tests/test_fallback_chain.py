"""
Tests for the provider fallback chain.
"""

import asyncio

import pytest

from errors import ParseError, ProviderError
from providers.base import BaseProvider
from services.fallback_chain import DEFAULT_STATIC_TEXT, STATIC_PROVIDER, FallbackChain, build_providers
from fakes import ScriptedProvider, failing, make_chain, text_reply


class HangingProvider(BaseProvider):
    @property
    def name(self):
        return "hanging"

    async def complete(self, messages, tools=None, options=None):
        await asyncio.sleep(5)


def run(chain, **kwargs):
    return asyncio.run(chain.complete([{"role": "user", "content": "hi"}], **kwargs))


class TestFallbackChain:
    def test_primary_serves(self):
        primary = ScriptedProvider("primary", [text_reply("hello")])
        secondary = ScriptedProvider("secondary", [text_reply("unused")])
        result = run(make_chain(primary, secondary))

        assert result.provider == "primary"
        assert result.stage == 0
        assert result.is_static is False
        assert result.response.text == "hello"
        assert secondary.calls == []

    def test_advances_on_provider_error(self):
        primary = ScriptedProvider("primary", [failing("primary", "rate_limit")])
        secondary = ScriptedProvider("secondary", [text_reply("from secondary", provider="secondary")])
        result = run(make_chain(primary, secondary))

        assert result.provider == "secondary"
        assert result.stage == 1
        assert [a["status"] for a in result.attempts] == ["rate_limit", "success"]

    def test_parse_error_treated_like_provider_error(self):
        primary = ScriptedProvider("primary", [ParseError("garbled", provider="primary")])
        secondary = ScriptedProvider("secondary", [text_reply("ok", provider="secondary")])
        result = run(make_chain(primary, secondary))
        assert result.provider == "secondary"
        assert result.attempts[0]["status"] == "parse_error"

    def test_validation_rejection_advances(self):
        def reject_primary(response):
            if response.provider == "primary":
                raise ParseError("not acceptable", provider="primary")

        primary = ScriptedProvider("primary", [text_reply("bad")])
        secondary = ScriptedProvider("secondary", [text_reply("good", provider="secondary")])
        result = run(make_chain(primary, secondary), validate=reject_primary)
        assert result.response.text == "good"

    def test_unexpected_exception_advances(self):
        primary = ScriptedProvider("primary", [KeyError("oops")])
        secondary = ScriptedProvider("secondary", [text_reply("fine", provider="secondary")])
        assert run(make_chain(primary, secondary)).provider == "secondary"

    def test_timeout_advances(self):
        secondary = ScriptedProvider("secondary", [text_reply("fast", provider="secondary")])
        chain = FallbackChain([HangingProvider(), secondary], stage_timeout=0.05)
        result = run(chain)
        assert result.provider == "secondary"
        assert result.attempts[0]["status"] == "timeout"

    @pytest.mark.parametrize("n", [0, 1, 2, 3])
    def test_all_failing_reaches_static_after_n_attempts(self, n):
        providers = [ScriptedProvider(f"p{i}", [failing(f"p{i}")]) for i in range(n)]
        result = run(make_chain(*providers))

        assert result.is_static is True
        assert result.stage == n
        assert result.provider == STATIC_PROVIDER
        assert result.response.text == DEFAULT_STATIC_TEXT
        assert sum(len(p.calls) for p in providers) == n
        assert len(result.attempts) == n + 1

    def test_static_text_override(self):
        result = run(make_chain(), static_text="Hey River")
        assert result.response.text == "Hey River"

    def test_one_attempt_per_stage(self):
        primary = ScriptedProvider("primary", [failing("primary"), text_reply("would succeed on retry")])
        run(make_chain(primary))
        assert len(primary.calls) == 1

    def test_provider_status_tracks_stats(self):
        primary = ScriptedProvider("primary", [failing("primary")])
        secondary = ScriptedProvider("secondary", [text_reply("ok", provider="secondary")])
        chain = make_chain(primary, secondary)
        run(chain)

        status = {s["name"]: s for s in chain.get_provider_status()}
        assert status["primary"]["failure_count"] == 1
        assert status["secondary"]["total_calls"] == 1
        assert status["secondary"]["last_used"] is not None


class TestBuildProviders:
    def test_unconfigured_providers_are_skipped(self):
        assert build_providers(["gemini", "groq", "unknown"]) == []

    def test_provider_error_kinds_map_to_codes(self):
        assert ProviderError("x", kind="rate_limit").code.value == "PROVIDER_RATE_LIMITED"
        assert ProviderError("x", kind="timeout").code.value == "PROVIDER_TIMEOUT"
