"""
proactive_service.py — Risk engine.

check(): on-demand poll for one user (client-debounced, ~5 min interval).
run_scheduled(): background sweep across all profiles, honouring each user's
proactive preferences, quiet hours and frequency cooldown.
"""

import logging
import time
from datetime import datetime, timezone, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from config import FREQUENCY_COOLDOWN_HOURS, RISK_THRESHOLD
from models.intervention import Intervention
from models.profile import Profile
from services.fallback_chain import FallbackChain
from services.intervention_service import InterventionService
from services.observability import ObservabilityLogger
from services.profile_service import get_or_create_profile
from services.risk_scorer import RiskAssessment, score_signals
from services.risk_signals import RiskSignalCollector

logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY = "medium"


def _hour_of(value: str | None, default: int) -> int:
    try:
        return int(str(value).split(":")[0]) % 24
    except (TypeError, ValueError):
        return default


def is_in_quiet_hours(prefs: dict, now: datetime) -> bool:
    """Quiet windows may cross midnight (e.g. 22:00 → 08:00)."""
    if not prefs.get("quiet_hours_enabled"):
        return False
    start = _hour_of(prefs.get("quiet_hours_start", "22:00"), 22)
    end = _hour_of(prefs.get("quiet_hours_end", "08:00"), 8)
    try:
        hour = now.astimezone(ZoneInfo(prefs.get("timezone") or "UTC")).hour
    except (ZoneInfoNotFoundError, ValueError):
        hour = now.astimezone(timezone.utc).hour
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end


def scheduled_trigger_type(assessment: RiskAssessment) -> str:
    if assessment.has_critical:
        return "critical_outreach"
    if assessment.is_critical:
        return "high_priority_check_in"
    primary = assessment.primary_signal
    return primary.type if primary else "proactive_scheduled"


class RiskEngine:
    def __init__(
        self,
        db: Session,
        chain: FallbackChain | None = None,
        collector: RiskSignalCollector | None = None,
        interventions: InterventionService | None = None,
        threshold: float = RISK_THRESHOLD,
    ):
        self.db = db
        self.collector = collector or RiskSignalCollector(db)
        self.interventions = interventions or InterventionService(db, chain)
        self.threshold = threshold
        self.observability = ObservabilityLogger(db)

    # ------------------------------------------------------------------
    async def check(self, user_id: int) -> dict:
        start = time.monotonic()
        self.interventions.expire_stale(user_id)

        existing = self.interventions.get_open(user_id)
        if existing is not None:
            self.observability.record(
                user_id=user_id,
                function_name="proactive-check",
                input_summary=f"Open intervention {existing.id} returned",
                response_summary=existing.message,
                response_time_ms=int((time.monotonic() - start) * 1000),
                model_used=existing.model_used,
                risk_score=existing.risk_score,
                intervention_triggered=False,
                intervention_type=existing.trigger_type,
            )
            return {
                "needs_intervention": True,
                "is_existing": True,
                "intervention": existing.to_dict(),
                "risk_score": existing.risk_score,
            }

        profile = get_or_create_profile(self.db, user_id)
        signals = self.collector.collect(user_id)
        assessment = score_signals(signals, self.threshold)

        if not assessment.needs_intervention:
            self.observability.record(
                user_id=user_id,
                function_name="proactive-check",
                input_summary=f"Risk signals: {', '.join(s.type for s in signals) or 'none'}",
                response_time_ms=int((time.monotonic() - start) * 1000),
                risk_score=assessment.risk_score,
            )
            return {
                "needs_intervention": False,
                "risk_score": assessment.risk_score,
                "signals_detected": len(signals),
            }

        intervention, is_existing = await self.interventions.generate(user_id, assessment, profile.pseudonym)
        self.observability.record(
            user_id=user_id,
            function_name="proactive-check",
            input_summary=f"Risk signals: {', '.join(s.type for s in signals)}",
            response_summary=intervention.message,
            response_time_ms=int((time.monotonic() - start) * 1000),
            model_used=intervention.model_used,
            risk_score=assessment.risk_score,
            intervention_triggered=not is_existing,
            intervention_type=intervention.trigger_type,
        )
        return {
            "needs_intervention": True,
            "is_existing": is_existing,
            "intervention": intervention.to_dict(),
            "risk_score": assessment.risk_score,
            "signals_detected": len(signals),
            "risk_signals": [s.to_dict() for s in signals],
        }

    # ------------------------------------------------------------------
    def _in_cooldown(self, user_id: int, frequency: str, now: datetime) -> bool:
        hours = FREQUENCY_COOLDOWN_HOURS.get(frequency, FREQUENCY_COOLDOWN_HOURS[DEFAULT_FREQUENCY])
        if hours <= 0:
            return False
        recent = (
            self.db.query(Intervention.id)
            .filter(Intervention.user_id == user_id, Intervention.created_at >= now - timedelta(hours=hours))
            .first()
        )
        return recent is not None

    async def _sweep_user(self, profile: Profile, now: datetime) -> str:
        """Returns one of: skipped, processed, cooldown, intervention."""
        prefs = profile.preferences
        if prefs.get("proactive_enabled") is False:
            return "skipped"
        if is_in_quiet_hours(prefs, now):
            logger.info(f"User {profile.id} in quiet hours")
            return "skipped"

        self.interventions.expire_stale(profile.id)
        if self.interventions.get_open(profile.id) is not None:
            return "skipped"

        start = time.monotonic()
        signals = self.collector.collect(profile.id, now)
        assessment = score_signals(signals, self.threshold)
        if not assessment.needs_intervention:
            return "processed"

        frequency = prefs.get("proactive_frequency") or DEFAULT_FREQUENCY
        if not assessment.is_critical and self._in_cooldown(profile.id, frequency, now):
            logger.info(f"User {profile.id} in cooldown ({frequency})")
            return "cooldown"

        trigger_type = scheduled_trigger_type(assessment)
        intervention, is_existing = await self.interventions.generate(
            profile.id, assessment, profile.pseudonym, trigger_type=trigger_type,
        )
        self.observability.record(
            user_id=profile.id,
            function_name="proactive-check-scheduled",
            input_summary=(
                f"Risk signals: {', '.join(f'{s.type}({s.severity.value})' for s in signals)} "
                f"| Frequency: {frequency} | Score: {assessment.risk_score:.2f}"
            ),
            response_summary=intervention.message,
            response_time_ms=int((time.monotonic() - start) * 1000),
            model_used=intervention.model_used,
            risk_score=assessment.risk_score,
            intervention_triggered=not is_existing,
            intervention_type=trigger_type,
        )
        return "processed" if is_existing else "intervention"

    async def run_scheduled(self, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        counts = {"processed": 0, "interventions": 0, "skipped": 0, "cooldown_skipped": 0}

        for profile in self.db.query(Profile).order_by(Profile.id).all():
            try:
                outcome = await self._sweep_user(profile, now)
            except Exception:
                logger.exception(f"Scheduled risk check failed for user {profile.id}")
                self.db.rollback()
                counts["skipped"] += 1
                continue

            if outcome == "skipped":
                counts["skipped"] += 1
                continue
            counts["processed"] += 1
            if outcome == "cooldown":
                counts["cooldown_skipped"] += 1
            elif outcome == "intervention":
                counts["interventions"] += 1

        logger.info(
            f"Scheduled sweep: {counts['processed']} processed, {counts['interventions']} interventions, "
            f"{counts['skipped']} skipped, {counts['cooldown_skipped']} cooldown-skipped"
        )
        return counts
