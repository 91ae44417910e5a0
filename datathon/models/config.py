from sqlalchemy import Column, String, DateTime, JSON
from datathon.db.base import Base
from datathon.models.submission import utcnow


class ConfigEntry(Base):
    __tablename__ = "competition_config"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
