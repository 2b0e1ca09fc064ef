from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Float, DateTime, Boolean, ForeignKey
from database import Base


class ObservabilityLogEntry(Base):
    """Write-once audit record for one chat turn or one risk evaluation."""

    __tablename__ = "ai_observability_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=True, index=True)
    function_name = Column(String(100), nullable=False, index=True)
    input_summary = Column(Text, nullable=True)
    response_summary = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    model_used = Column(String(100), nullable=True)
    tools_called = Column(Text, nullable=True)  # JSON array of tool names, in call order
    lane = Column(String(20), nullable=True)
    tool_iterations = Column(Integer, nullable=True)
    fallback_stage = Column(Integer, nullable=True)  # 0 = primary provider
    provider_attempts = Column(Text, nullable=True)  # JSON array of stage outcomes
    risk_score = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    crisis_detected = Column(Boolean, default=False)
    intervention_triggered = Column(Boolean, default=False)
    intervention_type = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
