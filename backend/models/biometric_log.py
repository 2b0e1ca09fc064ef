from datetime import datetime, timezone

from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey
from database import Base


class BiometricLog(Base):
    __tablename__ = "biometric_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    heart_rate = Column(Integer, nullable=True)
    sleep_hours = Column(Float, nullable=True)
    steps = Column(Integer, nullable=True)
    stress_level = Column(Float, nullable=True)  # 0-10
    logged_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
