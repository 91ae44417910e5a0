from sqlalchemy import Column, String, Float, Integer, Boolean, DateTime, JSON, Index
from datetime import datetime, timezone
from datathon.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(String, primary_key=True, index=True)  # UUID
    user_id = Column(String, index=True, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    filename = Column(String, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow)
    problem_type = Column(String, index=True)  # classification | regression
    status = Column(String, default="done")

    # Full metric sets: private partition is the record of truth,
    # public partition feeds the leaderboard during the contest.
    private_metrics = Column(JSON, nullable=False, default=dict)
    public_metrics = Column(JSON, nullable=False, default=dict)
    private_score = Column(Float, nullable=True)
    public_score = Column(Float, nullable=True)
    score_metric = Column(String, nullable=True)

    # Row diagnostics (private partition)
    rows_in_canonical = Column(Integer, default=0)
    rows_in_submission = Column(Integer, default=0)
    rows_compared = Column(Integer, default=0)
    missing_rows = Column(Integer, default=0)
    extra_rows = Column(Integer, default=0)
    matches = Column(Integer, default=0)
    missing_row_ids = Column(JSON, default=list)
    extra_row_ids = Column(JSON, default=list)
    preview = Column(JSON, default=list)

    is_selected_for_final = Column(Boolean, default=False, index=True)
    comments = Column(String, default="")
    flagged_for_review = Column(Boolean, default=False)
    review_note = Column(String, nullable=True)

    __table_args__ = (Index("ix_submissions_user_attempt", "user_id", "attempt_number"),)

    def to_dict(self, include_preview: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "attempt_number": self.attempt_number,
            "filename": self.filename,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "problem_type": self.problem_type,
            "status": self.status,
            "metrics": dict(self.private_metrics or {}),
            "public_metrics": dict(self.public_metrics or {}),
            "private_score": self.private_score,
            "public_score": self.public_score,
            "score_metric": self.score_metric,
            "summary": {
                "rows_in_canonical": self.rows_in_canonical,
                "rows_in_submission": self.rows_in_submission,
                "rows_compared": self.rows_compared,
                "matches": self.matches,
                "mismatches": (self.rows_compared or 0) - (self.matches or 0),
                "missing_rows": self.missing_rows,
                "extra_rows": self.extra_rows,
                "missing_row_ids": list(self.missing_row_ids or []),
                "extra_row_ids": list(self.extra_row_ids or []),
            },
            "is_selected_for_final": bool(self.is_selected_for_final),
            "comments": self.comments or "",
            "flagged_for_review": bool(self.flagged_for_review),
            "review_note": self.review_note,
        }
        if include_preview:
            data["preview"] = list(self.preview or [])
        return data
