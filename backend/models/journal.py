import json
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from database import Base


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String(300), nullable=True)
    content = Column(Text, nullable=False)
    sentiment = Column(Text, nullable=True)  # JSON: {"overall": "negative", "score": 0.2}
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)

    @property
    def sentiment_data(self) -> dict:
        try:
            data = json.loads(self.sentiment or "{}")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
