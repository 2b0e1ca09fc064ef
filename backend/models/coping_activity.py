from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from database import Base


class CopingActivity(Base):
    __tablename__ = "coping_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    activity_name = Column(String(200), nullable=False)
    category = Column(String(30), nullable=False)  # breathing/physical/mindfulness/social/creative/other
    helpful = Column(Boolean, default=True)
    times_used = Column(Integer, default=1)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
