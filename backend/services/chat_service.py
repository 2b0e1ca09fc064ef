"""
chat_service.py — One coach turn, end to end.

sanitize → crisis check → conversation → classify → dispatch → tool loop
→ sanitize reply → safety resources → persist → observability entry.
A crisis turn that fails after detection still answers with the safety response.
"""

import json
import logging
import time
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from config import HISTORY_WINDOW, MAX_HISTORY_ITEM_LENGTH, MAX_TOOL_ITERATIONS
from errors import NotFoundError, ValidationError
from logging_config import log_turn_in, log_turn_out
from models.conversation import Conversation, ConversationMessage
from services.agent_dispatcher import AgentSpec, dispatch
from services.agent_loop import GENERIC_FALLBACK_TEXT, LoopResult, ToolExecutionLoop
from services.crisis_detector import SAFETY_RESPONSE, BaseCrisisDetector, check_for_crisis, ensure_safety_resources
from services.fallback_chain import FallbackChain, get_fallback_chain
from services.intent_classifier import BaseIntentClassifier, KeywordIntentClassifier, Lane, classify_intent
from services.intervention_service import InterventionService
from services.observability import ObservabilityLogger
from services.profile_service import get_or_create_profile
from services.sanitizer import sanitize_input, sanitize_response
from services.tools_service import ToolsService

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50
TOOL_MESSAGE_LIMIT = 2000


class CoachService:
    def __init__(
        self,
        db: Session,
        chain: FallbackChain | None = None,
        classifier: BaseIntentClassifier | None = None,
        crisis_detector: BaseCrisisDetector | None = None,
        intervention_service: InterventionService | None = None,
        max_iterations: int = MAX_TOOL_ITERATIONS,
    ):
        self.db = db
        self.chain = chain or get_fallback_chain()
        self.classifier = classifier or KeywordIntentClassifier()
        self.crisis_detector = crisis_detector
        self.intervention_service = intervention_service or InterventionService(db, self.chain)
        self.max_iterations = max_iterations
        self.observability = ObservabilityLogger(db)

    # ------------------------------------------------------------------
    async def handle_turn(self, user_id: int, message: str, conversation_id: int | None = None) -> dict:
        start = time.monotonic()
        clean = sanitize_input(message)
        if not clean:
            raise ValidationError("Message is empty")

        crisis = check_for_crisis(clean, self.crisis_detector)
        log_turn_in(logger, clean, user=user_id, crisis=crisis.is_crisis)

        spec = None
        active_conversation_id = None
        try:
            profile = get_or_create_profile(self.db, user_id)
            conversation = self._get_or_create_conversation(user_id, conversation_id, clean)
            active_conversation_id = conversation.id
            history = self._history(conversation)

            intent = await classify_intent(self.classifier, clean, history)
            spec = dispatch(intent.lane)
            logger.info(f"Lane {spec.lane.value} (confidence {intent.confidence})")

            messages = [{"role": "system", "content": self._system_prompt(profile, spec, crisis.is_crisis)}]
            messages += history
            messages.append({"role": "user", "content": clean})

            loop = ToolExecutionLoop(
                self.chain,
                ToolsService(self.db, user_id, self.intervention_service),
                max_iterations=self.max_iterations,
            )
            result = await loop.run(messages, spec)
        except Exception as e:
            if isinstance(e, NotFoundError):
                logger.warning(f"Chat turn for user {user_id}: {e}")
            else:
                logger.exception("Chat turn failed")
            self.db.rollback()
            elapsed_ms = int((time.monotonic() - start) * 1000)
            lane = spec.lane.value if spec else None
            self.observability.record(
                user_id=user_id,
                function_name="chat",
                input_summary=clean,
                response_summary=SAFETY_RESPONSE if crisis.is_crisis else None,
                response_time_ms=elapsed_ms,
                lane=lane,
                error_message=f"{type(e).__name__}: {e}",
                crisis_detected=crisis.is_crisis,
                intervention_type="crisis_response" if crisis.is_crisis else None,
            )
            if not crisis.is_crisis:
                raise
            # A crisis turn always answers with resources, whatever failed
            return {
                "conversation_id": active_conversation_id,
                "role": "assistant",
                "content": SAFETY_RESPONSE,
                "lane": lane or Lane.SUPPORT.value,
                "tools_used": [],
                "response_time_ms": elapsed_ms,
                "metrics": {
                    "tool_iterations": 0,
                    "read_tools": 0,
                    "write_tools": 0,
                    "crisis_detected": True,
                    "autonomy_score": 0,
                },
            }

        content = sanitize_response(result.text) or GENERIC_FALLBACK_TEXT
        if crisis.is_crisis or result.crisis_escalated:
            content = ensure_safety_resources(content)

        self._persist_turn(conversation, clean, result, content)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        self.observability.record(
            user_id=user_id,
            function_name="chat",
            input_summary=clean,
            response_summary=content,
            response_time_ms=elapsed_ms,
            model_used=result.model,
            tools_called=result.tools_called,
            lane=spec.lane.value,
            tool_iterations=result.tool_iterations,
            fallback_stage=result.fallback_stage,
            provider_attempts=result.attempts,
            error_message=self._attempt_errors(result),
            crisis_detected=crisis.is_crisis or result.crisis_escalated,
            intervention_triggered=any(t in ("log_intervention", "escalate_crisis") for t in result.tools_called),
            intervention_type=(
                "crisis_response" if crisis.is_crisis
                else "proactive_support" if "log_intervention" in result.tools_called
                else None
            ),
        )
        log_turn_out(
            logger, result.tools_called,
            lane=spec.lane.value, state=result.state.value,
            stage=result.fallback_stage, ms=elapsed_ms,
        )

        return {
            "conversation_id": conversation.id,
            "role": "assistant",
            "content": content,
            "lane": spec.lane.value,
            "tools_used": result.tools_called,
            "response_time_ms": elapsed_ms,
            "metrics": {
                "tool_iterations": result.tool_iterations,
                "read_tools": result.read_tools,
                "write_tools": result.write_tools,
                "crisis_detected": crisis.is_crisis or result.crisis_escalated,
                "autonomy_score": len(result.tools_called),
            },
        }

    # ------------------------------------------------------------------
    @staticmethod
    def _system_prompt(profile, spec: AgentSpec, crisis: bool) -> str:
        days_sober = 0
        if profile.sobriety_start_date:
            days_sober = max(0, (datetime.now(timezone.utc).date() - profile.sobriety_start_date).days)
        crisis_rule = (
            "CRISIS DETECTED: call escalate_crisis immediately if available and share the 988 hotline."
            if crisis else
            "If the user mentions suicide or self-harm, call escalate_crisis immediately."
        )
        return (
            f"You are a compassionate AI Recovery Coach for {profile.pseudonym or 'a user'} "
            f"who is {days_sober} days sober (Level {profile.level or 1}).\n\n"
            "CORE RULES:\n"
            "1. Be warm, supportive, and practical. Keep responses under 150 words.\n"
            "2. Only state facts about the user that a tool returned in this conversation.\n"
            "3. Ask for details before creating anything, and never create duplicates.\n"
            f"4. {crisis_rule}\n\n"
            f"{spec.system_hint}\n\n"
            "After calling any tool, reply with text that describes or confirms the result."
        )

    def _get_or_create_conversation(self, user_id: int, conversation_id: int | None, first_message: str) -> Conversation:
        if conversation_id is not None:
            return self._owned_conversation(user_id, conversation_id)
        title = first_message[:TITLE_LENGTH] + ("..." if len(first_message) > TITLE_LENGTH else "")
        conversation = Conversation(user_id=user_id, title=title)
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def _owned_conversation(self, user_id: int, conversation_id: int) -> Conversation:
        conversation = self.db.query(Conversation).filter_by(id=conversation_id, user_id=user_id).first()
        if conversation is None:
            raise NotFoundError("Conversation not found", conversation_id=conversation_id)
        return conversation

    def _history(self, conversation: Conversation) -> list[dict]:
        rows = (
            self.db.query(ConversationMessage)
            .filter(
                ConversationMessage.conversation_id == conversation.id,
                ConversationMessage.role.in_(("user", "assistant")),
            )
            .order_by(ConversationMessage.id.desc())
            .limit(HISTORY_WINDOW)
            .all()
        )
        history = []
        for row in reversed(rows):
            content = sanitize_input(row.content, MAX_HISTORY_ITEM_LENGTH)
            if content:
                history.append({"role": row.role, "content": content})
        return history

    def _persist_turn(self, conversation: Conversation, user_text: str, result: LoopResult, reply: str):
        """Append user, tool and assistant messages in arrival order."""
        try:
            self.db.add(ConversationMessage(conversation_id=conversation.id, role="user", content=user_text))
            self.db.flush()
            for record in result.tool_results:
                self.db.add(ConversationMessage(
                    conversation_id=conversation.id,
                    role="tool",
                    content=json.dumps(record, default=str)[:TOOL_MESSAGE_LIMIT],
                ))
                self.db.flush()
            self.db.add(ConversationMessage(conversation_id=conversation.id, role="assistant", content=reply))
            conversation.last_updated = datetime.now(timezone.utc)
            self.db.commit()
        except Exception as e:
            logger.warning(f"Could not persist messages for conversation {conversation.id}: {e}")
            self.db.rollback()

    @staticmethod
    def _attempt_errors(result: LoopResult) -> str | None:
        errors = [f"{a['provider']}: {a['error']}" for a in result.attempts if a.get("error")]
        return "; ".join(errors)[:1000] if errors else None

    # === Conversation management =====================================
    def list_conversations(self, user_id: int) -> list[dict]:
        rows = (
            self.db.query(Conversation)
            .filter_by(user_id=user_id)
            .order_by(Conversation.last_updated.desc(), Conversation.id.desc())
            .all()
        )
        return [c.to_dict() for c in rows]

    def get_messages(self, user_id: int, conversation_id: int, include_tools: bool = False) -> list[dict]:
        conversation = self._owned_conversation(user_id, conversation_id)
        return [m.to_dict() for m in conversation.messages if include_tools or m.role != "tool"]

    def delete_conversation(self, user_id: int, conversation_id: int):
        conversation = self._owned_conversation(user_id, conversation_id)
        self.db.delete(conversation)
        self.db.commit()
