"""
risk_signals.py — Behavioral risk signal battery.

Each check looks at one bounded window of the user's data and yields at most
one RiskSignal. Checks are independent; one that fails is logged and skipped.
The battery order is the priority order used to frame an intervention.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from enum import Enum

from sqlalchemy.orm import Session

import config
from models.biometric_log import BiometricLog
from models.check_in import CheckIn
from models.conversation import Conversation, ConversationMessage
from models.journal import JournalEntry
from models.profile import Profile
from models.relapse import Relapse
from services.tools_service import MOOD_SCORES

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class RiskSignal:
    type: str
    severity: Severity
    description: str
    weight: float

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
            "weight": self.weight,
        }


@dataclass
class RiskSettings:
    """Tunable inputs for the battery; defaults come from config."""

    weights: dict = field(default_factory=lambda: dict(config.RISK_WEIGHTS))
    activity_lookback_hours: int = config.ACTIVITY_LOOKBACK_HOURS
    inactivity_lookback_hours: int = config.INACTIVITY_LOOKBACK_HOURS
    mood_lookback_days: int = config.MOOD_LOOKBACK_DAYS
    relapse_lookback_days: int = config.RELAPSE_LOOKBACK_DAYS
    relapse_history_days: int = config.RELAPSE_HISTORY_DAYS
    mood_window: int = config.MOOD_WINDOW
    declining_mood_max_avg: float = config.DECLINING_MOOD_MAX_AVG
    high_urge_min_avg: float = config.HIGH_URGE_MIN_AVG
    moderate_urge_min_avg: float = config.MODERATE_URGE_MIN_AVG
    high_stress_min_avg: float = config.HIGH_STRESS_MIN_AVG
    poor_sleep_max_avg: float = config.POOR_SLEEP_MAX_AVG
    milestone_days: list = field(default_factory=lambda: list(config.MILESTONE_DAYS))


class RiskSignalCollector:
    def __init__(self, db: Session, settings: RiskSettings | None = None):
        self.db = db
        self.settings = settings or RiskSettings()
        self.checks = [
            self._multiple_relapses,
            self._recent_relapse,
            self._urges,
            self._declining_mood,
            self._high_stress,
            self._missed_check_ins,
            self._chat_inactivity,
            self._poor_sleep,
            self._journal_sentiment_decline,
            self._journal_inactivity,
            self._milestone_approaching,
        ]

    def _signal(self, type_: str, severity: Severity, description: str) -> RiskSignal:
        return RiskSignal(type_, severity, description, self.settings.weights.get(type_, 0.0))

    # ------------------------------------------------------------------
    def collect(self, user_id: int, now: datetime | None = None) -> list[RiskSignal]:
        now = now or datetime.now(timezone.utc)
        signals = []
        for check in self.checks:
            try:
                signal = check(user_id, now)
            except Exception as e:
                logger.warning(f"Risk check {check.__name__} failed for user {user_id}: {e}")
                self.db.rollback()
                continue
            if signal is not None:
                signals.append(signal)
        return signals

    # === Relapse history ==============================================
    def _relapses_since(self, user_id: int, since: datetime) -> int:
        return (
            self.db.query(Relapse)
            .filter(Relapse.user_id == user_id, Relapse.relapse_date >= since)
            .count()
        )

    def _multiple_relapses(self, user_id, now):
        since = now - timedelta(days=self.settings.relapse_history_days)
        if self._relapses_since(user_id, since) >= 2:
            return self._signal(
                "multiple_relapses", Severity.CRITICAL,
                "You've been through a challenging period - let's work together on stronger support strategies",
            )
        return None

    def _recent_relapse(self, user_id, now):
        since = now - timedelta(days=self.settings.relapse_lookback_days)
        if self._relapses_since(user_id, since) > 0:
            return self._signal(
                "recent_relapse", Severity.HIGH,
                "You've had a recent setback - I'm here to support your continued journey",
            )
        return None

    # === Check-ins ====================================================
    def _urges(self, user_id, now):
        since = now - timedelta(hours=self.settings.activity_lookback_hours)
        rows = (
            self.db.query(CheckIn.urge_intensity)
            .filter(
                CheckIn.user_id == user_id,
                CheckIn.created_at >= since,
                CheckIn.urge_intensity.isnot(None),
            )
            .all()
        )
        if not rows:
            return None
        avg_urge = sum(r.urge_intensity for r in rows) / len(rows)
        if avg_urge >= self.settings.high_urge_min_avg:
            return self._signal("high_urges", Severity.HIGH, "Your urge levels have been elevated")
        if avg_urge >= self.settings.moderate_urge_min_avg:
            return self._signal("moderate_urges", Severity.MEDIUM, "You've been experiencing some urges")
        return None

    def _declining_mood(self, user_id, now):
        since = now - timedelta(days=self.settings.mood_lookback_days)
        window = self.settings.mood_window
        rows = (
            self.db.query(CheckIn.mood)
            .filter(CheckIn.user_id == user_id, CheckIn.created_at >= since)
            .order_by(CheckIn.created_at.desc(), CheckIn.id.desc())
            .limit(window)
            .all()
        )
        if len(rows) < window:
            return None
        avg = sum(MOOD_SCORES.get(r.mood, 3) for r in rows) / len(rows)
        if avg <= self.settings.declining_mood_max_avg:
            return self._signal("declining_mood", Severity.HIGH, "Your recent moods indicate you might be struggling")
        return None

    def _missed_check_ins(self, user_id, now):
        since = now - timedelta(hours=self.settings.activity_lookback_hours)
        recent = (
            self.db.query(CheckIn.id)
            .filter(CheckIn.user_id == user_id, CheckIn.created_at >= since)
            .first()
        )
        if recent is None:
            return self._signal("missed_check_ins", Severity.MEDIUM, "You haven't checked in for 2+ days")
        return None

    # === Biometrics ===================================================
    def _biometric_rows(self, user_id, now):
        since = now - timedelta(hours=self.settings.activity_lookback_hours)
        return (
            self.db.query(BiometricLog.stress_level, BiometricLog.sleep_hours)
            .filter(BiometricLog.user_id == user_id, BiometricLog.logged_at >= since)
            .all()
        )

    def _high_stress(self, user_id, now):
        rows = self._biometric_rows(user_id, now)
        if not rows:
            return None
        avg_stress = sum(r.stress_level or 0 for r in rows) / len(rows)
        if avg_stress >= self.settings.high_stress_min_avg:
            return self._signal("high_stress", Severity.HIGH, "Your stress levels are very high")
        return None

    def _poor_sleep(self, user_id, now):
        rows = self._biometric_rows(user_id, now)
        if not rows:
            return None
        avg_sleep = sum(r.sleep_hours or 0 for r in rows) / len(rows)
        if avg_sleep < self.settings.poor_sleep_max_avg:
            return self._signal("poor_sleep", Severity.MEDIUM, "You haven't been getting enough sleep")
        return None

    # === Engagement ===================================================
    def _chat_inactivity(self, user_id, now):
        since = now - timedelta(hours=self.settings.inactivity_lookback_hours)
        recent = (
            self.db.query(ConversationMessage.id)
            .join(Conversation, Conversation.id == ConversationMessage.conversation_id)
            .filter(
                Conversation.user_id == user_id,
                ConversationMessage.role == "user",
                ConversationMessage.created_at >= since,
            )
            .first()
        )
        if recent is None:
            return self._signal(
                "chat_inactivity", Severity.MEDIUM,
                "I haven't heard from you in a while. I'm here whenever you need to talk.",
            )
        return None

    def _journal_sentiment_decline(self, user_id, now):
        entries = (
            self.db.query(JournalEntry)
            .filter_by(user_id=user_id)
            .order_by(JournalEntry.created_at.desc(), JournalEntry.id.desc())
            .limit(3)
            .all()
        )
        if len(entries) < 3:
            return None
        negative = 0
        for entry in entries:
            sentiment = entry.sentiment_data
            score = sentiment.get("score")
            if sentiment.get("overall") == "negative" or (isinstance(score, (int, float)) and score < 0.3):
                negative += 1
        if negative >= 2:
            return self._signal(
                "journal_sentiment_decline", Severity.MEDIUM,
                "Your recent journal entries suggest you might be going through a difficult time",
            )
        return None

    def _journal_inactivity(self, user_id, now):
        since = now - timedelta(hours=self.settings.inactivity_lookback_hours)
        recent = (
            self.db.query(JournalEntry.id)
            .filter(JournalEntry.user_id == user_id, JournalEntry.created_at >= since)
            .first()
        )
        if recent is None:
            return self._signal(
                "journal_inactivity", Severity.LOW,
                "Writing can help process your feelings. Consider journaling today.",
            )
        return None

    def _milestone_approaching(self, user_id, now):
        profile = self.db.query(Profile).filter_by(id=user_id).first()
        if not profile or not profile.sobriety_start_date:
            return None
        days_sober = (now.date() - profile.sobriety_start_date).days
        for milestone in sorted(self.settings.milestone_days):
            if milestone - 2 <= days_sober <= milestone + 1:
                return self._signal(
                    "milestone_approaching", Severity.LOW,
                    f"You're approaching your {milestone}-day milestone!",
                )
        return None
