"""
risk_scorer.py — Weighted aggregation of risk signals.

risk_score = min(1, sum of weights). An intervention is needed when the
score reaches the threshold or when any single signal is high or critical,
so one acute signal is never averaged away by several mild ones.
"""

from dataclasses import dataclass, field

from config import RISK_THRESHOLD, CRITICAL_RISK_SCORE
from services.risk_signals import RiskSignal, Severity

_ACUTE = (Severity.HIGH, Severity.CRITICAL)


@dataclass
class RiskAssessment:
    risk_score: float
    needs_intervention: bool
    has_critical: bool
    signals: list[RiskSignal] = field(default_factory=list)

    @property
    def is_critical(self) -> bool:
        return self.has_critical or self.risk_score >= CRITICAL_RISK_SCORE

    @property
    def primary_signal(self) -> RiskSignal | None:
        return self.signals[0] if self.signals else None


def score_signals(signals: list[RiskSignal], threshold: float = RISK_THRESHOLD) -> RiskAssessment:
    total = sum(max(0.0, s.weight) for s in signals)
    risk_score = round(min(1.0, total), 4)
    has_acute = any(s.severity in _ACUTE for s in signals)
    return RiskAssessment(
        risk_score=risk_score,
        needs_intervention=risk_score >= threshold or has_acute,
        has_critical=any(s.severity == Severity.CRITICAL for s in signals),
        signals=list(signals),
    )
