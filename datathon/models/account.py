from sqlalchemy import Column, String, Integer, Boolean, Date, DateTime
from datathon.db.base import Base
from datathon.models.submission import utcnow


class UserAccount(Base):
    """Competitor state the scoring core reads and updates.

    ``attempt_count`` only ever grows: it counts every recorded submission,
    including ones the user later deleted.
    """

    __tablename__ = "user_accounts"

    user_id = Column(String, primary_key=True, index=True)
    display_name = Column(String, nullable=True)

    upload_limit = Column(Integer, nullable=True)  # null means use global default
    daily_upload_limit = Column(Integer, nullable=True)  # null means use global default

    attempt_count = Column(Integer, nullable=False, default=0)
    today_submission_count = Column(Integer, nullable=False, default=0)
    last_submission_date = Column(Date, nullable=True)

    is_banned = Column(Boolean, default=False)
    ban_reason = Column(String, nullable=True)
    is_disqualified = Column(Boolean, default=False)
    hide_from_leaderboard = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "upload_limit": self.upload_limit,
            "daily_upload_limit": self.daily_upload_limit,
            "attempt_count": self.attempt_count,
            "today_submission_count": self.today_submission_count,
            "last_submission_date": self.last_submission_date.isoformat() if self.last_submission_date else None,
            "is_banned": bool(self.is_banned),
            "ban_reason": self.ban_reason,
            "is_disqualified": bool(self.is_disqualified),
            "hide_from_leaderboard": bool(self.hide_from_leaderboard),
        }
