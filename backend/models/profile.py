import json
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, Date, DateTime
from database import Base


class Profile(Base):
    """Recovery profile; `id` is the authenticated user id."""

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=False)
    pseudonym = Column(String(100), nullable=True)
    addiction_type = Column(String(100), nullable=True)
    sobriety_start_date = Column(Date, nullable=True)
    level = Column(Integer, default=1)
    xp = Column(Integer, default=0)
    current_streak = Column(Integer, default=0)
    longest_streak = Column(Integer, default=0)
    last_check_in = Column(DateTime, nullable=True)
    # JSON: proactive_enabled, proactive_frequency, timezone, quiet_hours_*
    notification_preferences = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def preferences(self) -> dict:
        try:
            prefs = json.loads(self.notification_preferences or "{}")
        except ValueError:
            return {}
        return prefs if isinstance(prefs, dict) else {}
