import json
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Float, DateTime, Boolean, ForeignKey, Index, text
from database import Base


class Intervention(Base):
    __tablename__ = "ai_interventions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    trigger_type = Column(String(100), nullable=False)
    risk_score = Column(Float, nullable=False, default=0.0)
    message = Column(Text, nullable=False)
    suggested_actions = Column(Text, nullable=False, default="[]")  # JSON array of action tags
    was_acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime, nullable=True)
    action_taken = Column(String(100), nullable=True)
    was_helpful = Column(Boolean, nullable=True)
    model_used = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)

    # At most one open intervention per user; enforced by the database
    __table_args__ = (
        Index(
            "uq_interventions_open_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("was_acknowledged = 0"),
            postgresql_where=text("was_acknowledged = false"),
        ),
    )

    @property
    def actions(self) -> list[str]:
        try:
            actions = json.loads(self.suggested_actions or "[]")
        except ValueError:
            return []
        return actions if isinstance(actions, list) else []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "trigger_type": self.trigger_type,
            "risk_score": self.risk_score,
            "message": self.message,
            "suggested_actions": self.actions,
            "was_acknowledged": bool(self.was_acknowledged),
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "action_taken": self.action_taken,
            "was_helpful": self.was_helpful,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
