"""
intervention_service.py — Intervention generation and acknowledgment.

A user has at most one open (unacknowledged) intervention. Generation returns
the open one unchanged when it exists; a concurrent insert that loses the race
on the partial unique index gets the winner back instead of a duplicate.

Lifecycle: unacknowledged → acknowledged (user action, feedback, dismissal or
timeout). Acknowledged is terminal.
"""

import json
import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import INTERVENTION_TIMEOUT_HOURS
from errors import NotFoundError, ParseError
from models.intervention import Intervention
from services.fallback_chain import FallbackChain, get_fallback_chain
from services.notification_service import NotificationDispatcher
from services.risk_scorer import RiskAssessment
from services.sanitizer import sanitize_response

logger = logging.getLogger(__name__)


ACTION_MAP = {
    "multiple_relapses": ["talk_to_coach", "review_triggers"],
    "recent_relapse": ["talk_to_coach", "review_triggers"],
    "high_urges": ["try_coping_tool"],
    "moderate_urges": ["try_coping_tool"],
    "declining_mood": ["talk_to_coach"],
    "high_stress": ["talk_to_coach"],
    "missed_check_ins": ["do_check_in"],
    "chat_inactivity": ["talk_to_coach"],
    "poor_sleep": ["try_meditation"],
    "journal_sentiment_decline": ["write_journal"],
    "journal_inactivity": ["write_journal"],
}
DEFAULT_ACTIONS = ["talk_to_coach", "do_check_in"]
CRISIS_ACTIONS = ["call_988", "contact_support", "emergency_services"]

PROMPT_CONTEXTS = {
    "chat_inactivity": "The user hasn't chatted with the AI Coach in several days. Generate a warm, non-intrusive check-in message that invites them back without pressure.",
    "journal_inactivity": "The user hasn't journaled recently. Gently encourage them to write about their feelings without being pushy.",
    "missed_check_ins": "The user hasn't done a daily check-in recently. Encourage them to take a moment to reflect.",
    "multiple_relapses": "The user has experienced relapse(s) recently. Be extra compassionate and remind them that setbacks are part of recovery. Offer concrete support without judgment.",
    "recent_relapse": "The user has experienced relapse(s) recently. Be extra compassionate and remind them that setbacks are part of recovery. Offer concrete support without judgment.",
    "journal_sentiment_decline": "The user's journal entries show declining mood. Acknowledge their feelings and offer gentle support.",
}
DEFAULT_PROMPT_CONTEXT = "Generate a supportive check-in message based on the detected risk signals."
INTENSITY_NOTE = " This is a critical situation - be especially warm and emphasize available support resources."

ACKNOWLEDGED_DISMISSED = "dismissed"
ACKNOWLEDGED_EXPIRED = "expired"


def suggested_actions(signal_types: list[str]) -> list[str]:
    """Ordered, de-duplicated action tags for the matched signals. Never empty."""
    actions: list[str] = []
    for signal_type in signal_types:
        for action in ACTION_MAP.get(signal_type, []):
            if action not in actions:
                actions.append(action)
    return actions or list(DEFAULT_ACTIONS)


def static_message(name: str | None) -> str:
    return (
        f"Hey {name or 'Friend'}, I noticed you might be going through a challenging time. "
        "Remember, you're not alone in this. Would you like to talk, try a coping exercise, or just check in?"
    )


def build_prompt(assessment: RiskAssessment, name: str | None) -> list[dict]:
    primary = assessment.primary_signal
    context = PROMPT_CONTEXTS.get(primary.type if primary else "", DEFAULT_PROMPT_CONTEXT)
    if assessment.is_critical:
        context += INTENSITY_NOTE
    summary = "\n".join(f"- {s.description} ({s.severity.value})" for s in assessment.signals)
    return [
        {
            "role": "system",
            "content": (
                f"You are a caring AI Recovery Coach. {context} Be warm but not alarming. "
                "Offer 2-3 specific, actionable suggestions. Keep it under 100 words. "
                f"Use the user's name: {name or 'Friend'}"
            ),
        },
        {"role": "user", "content": f"Risk signals detected:\n{summary}\n\nGenerate a supportive check-in message."},
    ]


def _require_text(response):
    if not sanitize_response(response.text or ""):
        raise ParseError("Empty intervention message", provider=response.provider)


class InterventionService:
    def __init__(self, db: Session, chain: FallbackChain | None = None, notifier: NotificationDispatcher | None = None):
        self.db = db
        self._chain = chain
        self.notifier = notifier or NotificationDispatcher()

    @property
    def chain(self) -> FallbackChain:
        if self._chain is None:
            self._chain = get_fallback_chain()
        return self._chain

    def get_open(self, user_id: int) -> Intervention | None:
        return (
            self.db.query(Intervention)
            .filter_by(user_id=user_id, was_acknowledged=False)
            .order_by(Intervention.id)
            .first()
        )

    def _owned(self, user_id: int, intervention_id: int) -> Intervention:
        intervention = self.db.query(Intervention).filter_by(id=intervention_id, user_id=user_id).first()
        if intervention is None:
            raise NotFoundError("Intervention not found", intervention_id=intervention_id)
        return intervention

    # === Generation ===================================================
    async def compose_message(self, assessment: RiskAssessment, name: str | None) -> tuple[str, str]:
        """Returns (message, model_used); the static template is the last stage."""
        result = await self.chain.complete(
            build_prompt(assessment, name),
            options={"model_tier": "fast", "max_tokens": 200, "temperature": 0.7},
            validate=_require_text,
            static_text=static_message(name),
        )
        text = result.response.text if result.is_static else sanitize_response(result.response.text)
        return text, result.model

    async def generate(
        self,
        user_id: int,
        assessment: RiskAssessment,
        pseudonym: str | None = None,
        trigger_type: str | None = None,
    ) -> tuple[Intervention, bool]:
        """Create an intervention for the assessment, or return the open one.

        Returns (intervention, is_existing).
        """
        existing = self.get_open(user_id)
        if existing is not None:
            return existing, True

        message, model_used = await self.compose_message(assessment, pseudonym)
        primary = assessment.primary_signal
        intervention = Intervention(
            user_id=user_id,
            trigger_type=trigger_type or (primary.type if primary else "proactive_check"),
            risk_score=assessment.risk_score,
            message=message,
            suggested_actions=json.dumps(suggested_actions([s.type for s in assessment.signals])),
            model_used=model_used,
        )
        return await self._insert(intervention, assessment.is_critical)

    async def create_crisis_intervention(self, user_id: int, crisis_type: str, severity: str) -> tuple[Intervention, bool]:
        existing = self.get_open(user_id)
        if existing is not None:
            return existing, True
        intervention = Intervention(
            user_id=user_id,
            trigger_type=crisis_type,
            risk_score=1.0 if severity == "critical" else 0.8,
            message="Crisis support resources provided",
            suggested_actions=json.dumps(CRISIS_ACTIONS),
        )
        return await self._insert(intervention, is_critical=True)

    async def _insert(self, intervention: Intervention, is_critical: bool) -> tuple[Intervention, bool]:
        try:
            self.db.add(intervention)
            self.db.commit()
            self.db.refresh(intervention)
        except IntegrityError:
            # Another request opened one first
            self.db.rollback()
            winner = self.get_open(intervention.user_id)
            if winner is None:
                raise
            logger.info(f"Intervention insert lost the race for user {intervention.user_id}; returning {winner.id}")
            return winner, True

        logger.info(f"Intervention {intervention.id} created for user {intervention.user_id} ({intervention.trigger_type})")
        try:
            await self.notifier.notify_intervention(self.db, intervention, is_critical=is_critical)
        except Exception as e:
            logger.warning(f"Notification handoff failed for intervention {intervention.id}: {e}")
        return intervention, False

    # === Acknowledgment ===============================================
    def acknowledge(
        self,
        user_id: int,
        intervention_id: int,
        action_taken: str | None = None,
        was_helpful: bool | None = None,
    ) -> Intervention:
        intervention = self._owned(user_id, intervention_id)
        if intervention.was_acknowledged:
            return intervention

        updated = (
            self.db.query(Intervention)
            .filter(Intervention.id == intervention_id, Intervention.was_acknowledged.is_(False))
            .update(
                {
                    Intervention.was_acknowledged: True,
                    Intervention.acknowledged_at: datetime.now(timezone.utc),
                    Intervention.action_taken: action_taken,
                    Intervention.was_helpful: was_helpful,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        self.db.refresh(intervention)
        if updated:
            logger.info(f"Intervention {intervention_id} acknowledged ({action_taken or 'no action'})")
        return intervention

    def dismiss(self, user_id: int, intervention_id: int) -> Intervention:
        return self.acknowledge(user_id, intervention_id, action_taken=ACKNOWLEDGED_DISMISSED)

    def expire_stale(self, user_id: int | None = None, max_age_hours: int = INTERVENTION_TIMEOUT_HOURS) -> int:
        """Close open interventions older than max_age_hours. Returns the count."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        query = self.db.query(Intervention).filter(
            Intervention.was_acknowledged.is_(False),
            Intervention.created_at < cutoff,
        )
        if user_id is not None:
            query = query.filter(Intervention.user_id == user_id)
        count = query.update(
            {
                Intervention.was_acknowledged: True,
                Intervention.acknowledged_at: datetime.now(timezone.utc),
                Intervention.action_taken: ACKNOWLEDGED_EXPIRED,
            },
            synchronize_session=False,
        )
        self.db.commit()
        if count:
            logger.info(f"Expired {count} stale intervention(s)")
        return count
