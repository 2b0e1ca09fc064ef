"""
Tests for the bounded tool execution loop.
"""

import asyncio
import json

from errors import ToolExecutionError
from services.agent_dispatcher import dispatch
from services.agent_loop import (
    GENERIC_FALLBACK_TEXT,
    FinalAnswer,
    LoopState,
    ToolExecutionLoop,
    ToolRequests,
    summarize_tool_result,
    to_step,
)
from services.crisis_detector import SAFETY_RESPONSE
from services.intent_classifier import Lane
from fakes import ScriptedProvider, failing, make_chain, text_reply, tool_reply


class FakeTools:
    def __init__(self, results: dict | None = None, fail: tuple = ()):
        self.results = results or {}
        self.fail = fail
        self.executed: list[tuple[str, dict]] = []

    async def execute(self, name, args=None):
        self.executed.append((name, args))
        if name in self.fail:
            raise ToolExecutionError("database unavailable", tool_name=name)
        return self.results.get(name, {"ok": True})


MESSAGES = [{"role": "system", "content": "coach"}, {"role": "user", "content": "hi"}]


def run_loop(chain, tools, lane, max_iterations=5):
    loop = ToolExecutionLoop(chain, tools, max_iterations=max_iterations)
    return asyncio.run(loop.run(MESSAGES, dispatch(lane)))


class TestStepParsing:
    def test_final_answer(self):
        assert isinstance(to_step(text_reply("done")), FinalAnswer)

    def test_tool_requests(self):
        step = to_step(tool_reply("get_active_goals", text="let me look"))
        assert isinstance(step, ToolRequests)
        assert step.calls[0].name == "get_active_goals"
        assert step.text == "let me look"


class TestTermination:
    def test_no_tool_calls_is_done(self):
        provider = ScriptedProvider("primary", [text_reply("Hello!")])
        result = run_loop(make_chain(provider), FakeTools(), Lane.CHAT)

        assert result.state == LoopState.DONE
        assert result.text == "Hello!"
        assert result.tool_iterations == 0
        assert provider.calls[0]["tools"] is None

    def test_iteration_cap_ends_done_at_exactly_cap(self):
        """A model that always asks for another tool stops at the cap."""
        provider = ScriptedProvider("primary", [tool_reply("get_user_progress")])
        tools = FakeTools()
        result = run_loop(make_chain(provider), tools, Lane.DATA_READ, max_iterations=5)

        assert result.state == LoopState.DONE
        assert result.tool_iterations == 5
        assert len(tools.executed) == 5
        assert len(provider.calls) == 6
        assert result.text

    def test_cap_uses_partial_text(self):
        provider = ScriptedProvider("primary", [tool_reply("get_user_progress", text="Checking your progress")])
        result = run_loop(make_chain(provider), FakeTools(), Lane.DATA_READ, max_iterations=2)
        assert result.text == "Checking your progress"

    def test_cap_without_text_uses_contextual_summary(self):
        provider = ScriptedProvider("primary", [tool_reply("get_recent_moods")])
        tools = FakeTools(results={"get_recent_moods": {"total_check_ins": 0}})
        result = run_loop(make_chain(provider), tools, Lane.DATA_READ, max_iterations=1)
        assert "check-in" in result.text

    def test_crisis_escalation_overrides_response(self):
        provider = ScriptedProvider("primary", [
            tool_reply("escalate_crisis", {"crisis_type": "self_harm", "severity": "critical"}),
            text_reply("should never be used"),
        ])
        result = run_loop(make_chain(provider), FakeTools(), Lane.SUPPORT)

        assert result.state == LoopState.DONE
        assert result.crisis_escalated is True
        assert result.text == SAFETY_RESPONSE
        assert len(provider.calls) == 1

    def test_static_stage_is_error_state(self):
        provider = ScriptedProvider("primary", [failing("primary")])
        result = run_loop(make_chain(provider), FakeTools(), Lane.CHAT)

        assert result.state == LoopState.ERROR
        assert result.served_by == "static"
        assert result.text == GENERIC_FALLBACK_TEXT
        assert result.fallback_stage == 1

    def test_static_after_tool_results_summarizes(self):
        provider = ScriptedProvider("primary", [tool_reply("get_active_goals"), failing("primary")])
        tools = FakeTools(results={"get_active_goals": {"goals": [{"title": "Walk daily", "progress": 40}]}})
        result = run_loop(make_chain(provider), tools, Lane.DATA_READ)

        assert result.state == LoopState.ERROR
        assert "Walk daily" in result.text


class TestToolRequirement:
    def test_required_lane_rejects_direct_answer(self):
        """A direct answer in a data-read lane advances the chain until a tool is called."""
        primary = ScriptedProvider("primary", [text_reply("You are 999 days sober"), text_reply("You're 40 days sober!")])
        secondary = ScriptedProvider("secondary", [tool_reply("get_user_progress", provider="secondary")])
        result = run_loop(make_chain(primary, secondary), FakeTools(), Lane.DATA_READ)

        assert result.tool_iterations == 1
        assert result.tools_called == ["get_user_progress"]
        assert result.text == "You're 40 days sober!"
        assert "999" not in result.text

    def test_tool_choice_required_then_auto(self):
        provider = ScriptedProvider("primary", [tool_reply("get_active_goals"), text_reply("Here are your goals")])
        run_loop(make_chain(provider), FakeTools(), Lane.ACTION_WRITE)

        assert provider.calls[0]["options"]["tool_choice"] == "required"
        assert provider.calls[1]["options"]["tool_choice"] == "auto"
        assert provider.calls[0]["options"]["model_tier"] == "standard"

    def test_refused_call_keeps_tool_required(self):
        """A call to a tool the lane does not bind never unlocks a direct answer."""
        provider = ScriptedProvider("primary", [tool_reply("create_goal", {"title": "x"}), text_reply("You are 999 days sober")])
        tools = FakeTools()
        result = run_loop(make_chain(provider), tools, Lane.DATA_READ)

        assert tools.executed == []
        assert provider.calls[1]["options"]["tool_choice"] == "required"
        assert "999" not in result.text
        assert result.write_tools == 0
        assert result.read_tools == 0

    def test_support_lane_does_not_require_tools(self):
        provider = ScriptedProvider("primary", [text_reply("That sounds hard.")])
        result = run_loop(make_chain(provider), FakeTools(), Lane.SUPPORT)
        assert result.tool_iterations == 0
        assert provider.calls[0]["options"]["tool_choice"] == "auto"


class TestToolExecution:
    def test_tool_failure_is_fed_back(self):
        provider = ScriptedProvider("primary", [tool_reply("get_active_goals"), text_reply("I couldn't load your goals.")])
        result = run_loop(make_chain(provider), FakeTools(fail=("get_active_goals",)), Lane.DATA_READ)

        assert result.state == LoopState.DONE
        assert result.text == "I couldn't load your goals."
        tool_message = provider.calls[1]["messages"][-1]
        assert tool_message["role"] == "tool"
        assert "error" in json.loads(tool_message["content"])

    def test_unbound_tool_is_refused(self):
        provider = ScriptedProvider("primary", [tool_reply("create_goal", {"title": "x"}), text_reply("ok")])
        tools = FakeTools()
        result = run_loop(make_chain(provider), tools, Lane.SUPPORT)

        assert tools.executed == []
        assert result.tool_results[0]["result"]["error"]
        assert result.write_tools == 0

    def test_read_and_write_counts(self):
        provider = ScriptedProvider("primary", [
            tool_reply("get_active_goals"),
            tool_reply("create_goal", {"title": "Meditate"}),
            text_reply("Created!"),
        ])
        result = run_loop(make_chain(provider), FakeTools(), Lane.ACTION_WRITE)

        assert result.read_tools == 1
        assert result.write_tools == 1
        assert result.tools_called == ["get_active_goals", "create_goal"]


class TestSummaries:
    def test_progress_summary(self):
        text = summarize_tool_result("get_user_progress", {
            "days_sober": 40, "current_streak": 12, "level": 3, "xp": 250, "days_to_milestone": 20,
        })
        assert "40 days sober" in text
        assert "20 days until your next milestone" in text

    def test_error_result(self):
        assert "processed" in summarize_tool_result("get_user_progress", {"error": "x"})
