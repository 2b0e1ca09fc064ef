"""
observability.py — Best-effort audit log.
One entry per chat turn and per risk evaluation. Writes never raise: a failed
insert is rolled back and logged, and the caller carries on.
"""

import json
import logging

from sqlalchemy.orm import Session

from models.observability_log import ObservabilityLogEntry

logger = logging.getLogger(__name__)

INPUT_SUMMARY_LIMIT = 100
RESPONSE_SUMMARY_LIMIT = 200


def _truncate(text, limit: int):
    if text is None:
        return None
    text = str(text)
    return text[:limit]


class ObservabilityLogger:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        user_id: int | None,
        function_name: str,
        input_summary: str | None = None,
        response_summary: str | None = None,
        response_time_ms: int | None = None,
        model_used: str | None = None,
        tools_called: list[str] | None = None,
        lane: str | None = None,
        tool_iterations: int | None = None,
        fallback_stage: int | None = None,
        provider_attempts: list[dict] | None = None,
        risk_score: float | None = None,
        error_message: str | None = None,
        crisis_detected: bool = False,
        intervention_triggered: bool = False,
        intervention_type: str | None = None,
    ) -> bool:
        """Append one entry. Returns False if the write was lost."""
        try:
            entry = ObservabilityLogEntry(
                user_id=user_id,
                function_name=function_name,
                input_summary=_truncate(input_summary, INPUT_SUMMARY_LIMIT),
                response_summary=_truncate(response_summary, RESPONSE_SUMMARY_LIMIT),
                response_time_ms=response_time_ms,
                model_used=model_used,
                tools_called=json.dumps(list(tools_called or [])),
                lane=lane,
                tool_iterations=tool_iterations,
                fallback_stage=fallback_stage,
                provider_attempts=json.dumps(provider_attempts) if provider_attempts is not None else None,
                risk_score=risk_score,
                error_message=error_message,
                crisis_detected=bool(crisis_detected),
                intervention_triggered=bool(intervention_triggered),
                intervention_type=intervention_type,
            )
            self.db.add(entry)
            self.db.commit()
            return True
        except Exception as e:
            logger.warning(f"Observability write dropped for {function_name}: {e}")
            try:
                self.db.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback after observability failure also failed: {rollback_error}")
            return False
