"""
agent_dispatcher.py — Router layer 2.
Binds each lane to a model tier, a tool subset and a tool-requirement mode.
Data-read and action-write lanes must call a tool before answering so the
coach never reports data it did not actually fetch or change.
"""

from dataclasses import dataclass, field

from services.intent_classifier import Lane
from services.tools_service import READ_TOOLS, WRITE_TOOLS, ACTION_TOOLS, SAFETY_TOOLS


@dataclass(frozen=True)
class AgentSpec:
    lane: Lane
    model_tier: str
    tools: tuple[str, ...] = field(default_factory=tuple)
    tool_required: bool = False
    system_hint: str = ""


SUPPORT_TOOLS = (
    "get_conversation_context",
    "get_recent_moods",
    "get_recent_journal_entries",
    "suggest_coping_activity",
)

_SPECS = {
    Lane.CHAT: AgentSpec(
        lane=Lane.CHAT,
        model_tier="fast",
        tools=(),
        tool_required=False,
        system_hint="Keep it conversational and brief. You have no tools in this turn; do not claim to know the user's data.",
    ),
    Lane.DATA_READ: AgentSpec(
        lane=Lane.DATA_READ,
        model_tier="standard",
        tools=READ_TOOLS + SAFETY_TOOLS,
        tool_required=True,
        system_hint="The user is asking about their own data. Call the matching read tool first, then describe exactly what it returned.",
    ),
    Lane.ACTION_WRITE: AgentSpec(
        lane=Lane.ACTION_WRITE,
        model_tier="standard",
        tools=READ_TOOLS + WRITE_TOOLS + ACTION_TOOLS + SAFETY_TOOLS,
        tool_required=True,
        system_hint=(
            "The user wants something created or updated. If details are missing, call a read tool to check "
            "what already exists and ask for them; only call create_* tools with details the user gave. "
            "Never claim a change you did not make through a tool."
        ),
    ),
    Lane.SUPPORT: AgentSpec(
        lane=Lane.SUPPORT,
        model_tier="fast",
        tools=SUPPORT_TOOLS + SAFETY_TOOLS,
        tool_required=False,
        system_hint="The user needs emotional support. Use prior context or coping suggestions when helpful.",
    ),
}


def dispatch(lane: Lane) -> AgentSpec:
    """Return the agent binding for a lane; unknown lanes get the chat binding."""
    return _SPECS.get(lane, _SPECS[Lane.CHAT])
