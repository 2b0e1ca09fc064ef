"""
agent_loop.py — Bounded tool execution loop.

Every model step is reduced to either a FinalAnswer or a ToolRequests batch.
The loop ends when the model stops asking for tools, when the iteration cap
is reached, when escalate_crisis has run, or when the fallback chain had to
serve its static stage.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from config import MAX_TOOL_ITERATIONS
from errors import ParseError, ToolExecutionError
from logging_config import log_tool
from providers.base import ProviderResponse, ToolCall
from services.agent_dispatcher import AgentSpec
from services.crisis_detector import SAFETY_RESPONSE
from services.fallback_chain import FallbackChain, ChainResult
from services.tools_service import ToolsService, classify_tool, declarations_for

logger = logging.getLogger(__name__)

GENERIC_FALLBACK_TEXT = "I'm here to support you on your recovery journey. How can I help you today?"
PROCESSED_TEXT = "I've processed your request. Is there anything else I can help you with?"
TOOL_RESULT_LIMIT = 4000


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"
    ERROR = "error"


@dataclass
class FinalAnswer:
    text: str


@dataclass
class ToolRequests:
    calls: list[ToolCall]
    text: str | None = None


Step = Union[FinalAnswer, ToolRequests]


@dataclass
class LoopResult:
    text: str
    state: LoopState
    tool_iterations: int = 0
    tools_called: list[str] = field(default_factory=list)
    read_tools: int = 0
    write_tools: int = 0
    crisis_escalated: bool = False
    served_by: str = ""
    model: str = ""
    fallback_stage: int | None = None
    attempts: list[dict] = field(default_factory=list)
    tool_results: list[dict] = field(default_factory=list)


def to_step(response: ProviderResponse) -> Step:
    if response.tool_calls:
        return ToolRequests(calls=list(response.tool_calls), text=response.text or None)
    return FinalAnswer(text=response.text or "")


def summarize_tool_result(tool_name: str, result: dict) -> str:
    """Plain-language reply built from the last tool result when the model gave none."""
    if not isinstance(result, dict) or "error" in result:
        return PROCESSED_TEXT

    if tool_name == "get_recent_journal_entries":
        entries = result.get("recent_entries") or []
        if not entries:
            return ("You don't have any journal entries yet. Would you like to start one? "
                    "Journaling can be a powerful tool for reflection.")
        lines = "\n".join(
            f"{i + 1}. **{e.get('title') or 'Untitled'}** ({(e.get('date') or '')[:10]}): {e.get('excerpt')}"
            for i, e in enumerate(entries)
        )
        return f"Here are your recent journal entries:\n\n{lines}\n\nWould you like to add a new entry or discuss any of these?"

    if tool_name == "get_active_goals":
        goals = result.get("goals") or []
        if not goals:
            return ("You don't have any active goals yet. Would you like to set one? "
                    "I can help you create a meaningful recovery goal.")
        lines = "\n".join(
            f"{i + 1}. **{g['title']}** - {g.get('progress') or 0}% complete"
            + (f" ({g['days_remaining']} days left)" if g.get("days_remaining") else "")
            for i, g in enumerate(goals)
        )
        return f"Here are your active goals:\n\n{lines}\n\nWould you like to update any of these or add a new goal?"

    if tool_name == "get_user_progress":
        text = (
            f"You're {result.get('days_sober', 0)} days sober - that's amazing! "
            f"Your current streak is {result.get('current_streak', 0)} days, and you're at "
            f"Level {result.get('level', 1)} with {result.get('xp', 0)} XP."
        )
        if result.get("days_to_milestone"):
            text += f" Only {result['days_to_milestone']} days until your next milestone!"
        return text + " How are you feeling today?"

    if tool_name == "get_recent_moods":
        if not result.get("total_check_ins"):
            return "I don't see any recent check-ins. How are you feeling right now? Would you like to log a check-in?"
        return (
            f"In the past week, you've done {result['total_check_ins']} check-ins. "
            f"Your mood trend is {result.get('trend')}, with an average urge intensity of "
            f"{result.get('average_urge_intensity')}/10. How are you feeling today?"
        )

    if tool_name in ("create_goal", "create_journal_entry", "create_check_in", "complete_goal",
                     "log_coping_activity", "create_action_plan") and result.get("success"):
        return result.get("message") or PROCESSED_TEXT

    return PROCESSED_TEXT


class ToolExecutionLoop:
    def __init__(self, chain: FallbackChain, tools_service: ToolsService, max_iterations: int = MAX_TOOL_ITERATIONS):
        self.chain = chain
        self.tools_service = tools_service
        self.max_iterations = max_iterations

    # ------------------------------------------------------------------
    @staticmethod
    def _validator(require_tool: bool, have_results: bool):
        def validate(response: ProviderResponse):
            if require_tool and not response.tool_calls:
                raise ParseError("Tool call required but the model answered directly", provider=response.provider)
            if not response.tool_calls and not (response.text or "").strip() and not have_results:
                raise ParseError("Empty reply", provider=response.provider)
        return validate

    async def _call_model(self, messages: list[dict], spec: AgentSpec, declarations: list[dict],
                          require_tool: bool, have_results: bool, static_text: str) -> ChainResult:
        options = {"model_tier": spec.model_tier}
        if declarations:
            options["tool_choice"] = "required" if require_tool else "auto"
        return await self.chain.complete(
            messages,
            tools=declarations or None,
            options=options,
            validate=self._validator(require_tool, have_results),
            static_text=static_text,
        )

    async def _execute(self, call: ToolCall, spec: AgentSpec, iteration: int) -> dict:
        """Run one tool call; failures become an error-bearing result."""
        if call.name not in spec.tools:
            log_tool(logger, call.name, iteration, ok=False)
            return {"error": f"Tool {call.name} is not available here"}
        try:
            result = await self.tools_service.execute(call.name, call.arguments)
        except ToolExecutionError as e:
            logger.warning(f"Tool {call.name} failed: {e}")
            log_tool(logger, call.name, iteration, ok=False)
            return {"error": e.message}
        except Exception as e:
            logger.exception(f"Unexpected failure in tool {call.name}")
            log_tool(logger, call.name, iteration, ok=False)
            return {"error": f"Tool {call.name} failed: {type(e).__name__}"}
        log_tool(logger, call.name, iteration)
        return result

    # ------------------------------------------------------------------
    async def run(self, messages: list[dict], spec: AgentSpec, static_text: str | None = None) -> LoopResult:
        messages = list(messages)
        declarations = declarations_for(spec.tools)
        result = LoopResult(text="", state=LoopState.AWAITING_MODEL)
        tool_results: list[tuple[str, dict]] = []
        partial_text = None
        # Only a call that reached the tools service satisfies a required-tool lane
        bound_call_sent = False

        def contextual(default: str) -> str:
            if tool_results:
                return summarize_tool_result(*tool_results[-1])
            return default

        while True:
            require_tool = spec.tool_required and not bound_call_sent
            chain_result = await self._call_model(
                messages, spec, declarations, require_tool, bool(tool_results),
                static_text or GENERIC_FALLBACK_TEXT,
            )
            result.attempts.extend(chain_result.attempts)
            result.served_by = chain_result.provider
            result.model = chain_result.model
            result.fallback_stage = chain_result.stage

            if chain_result.is_static:
                result.state = LoopState.ERROR
                result.text = contextual(chain_result.response.text)
                return result

            step = to_step(chain_result.response)
            if isinstance(step, FinalAnswer):
                result.state = LoopState.DONE
                result.text = step.text.strip() or contextual(GENERIC_FALLBACK_TEXT)
                return result

            if step.text:
                partial_text = step.text
            if result.tool_iterations >= self.max_iterations:
                logger.warning(f"Tool loop hit the iteration cap ({self.max_iterations})")
                result.state = LoopState.DONE
                result.text = partial_text or contextual(GENERIC_FALLBACK_TEXT)
                return result

            result.state = LoopState.EXECUTING_TOOL
            result.tool_iterations += 1
            messages.append({"role": "assistant", "content": step.text or "", "tool_calls": step.calls})

            for call in step.calls:
                payload = await self._execute(call, spec, result.tool_iterations)
                result.tools_called.append(call.name)
                if call.name in spec.tools:
                    bound_call_sent = True
                    kind = classify_tool(call.name)
                    if kind == "read":
                        result.read_tools += 1
                    elif kind == "write":
                        result.write_tools += 1
                if call.name == "escalate_crisis" and "error" not in payload:
                    result.crisis_escalated = True
                tool_results.append((call.name, payload))
                result.tool_results.append({"tool": call.name, "result": payload})
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": json.dumps(payload, default=str)[:TOOL_RESULT_LIMIT],
                })

            if result.crisis_escalated:
                result.state = LoopState.DONE
                result.text = SAFETY_RESPONSE
                return result

            result.state = LoopState.AWAITING_MODEL
