from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey
from database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    type = Column(String(50), nullable=False)  # proactive_intervention/crisis
    title = Column(String(300), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False)
    action_url = Column(String(300), nullable=True)
    reference_id = Column(Integer, nullable=True)  # intervention id
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
