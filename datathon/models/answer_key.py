from sqlalchemy import Column, String, Integer, DateTime, JSON
from datathon.db.base import Base
from datathon.models.submission import utcnow


class AnswerKeyRecord(Base):
    """Metadata needed to rebuild the in-memory answer key after a restart.

    Only the split parameters and the backing file location are stored; the
    rows themselves live in the backing file.
    """

    __tablename__ = "answer_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String, nullable=True)
    location = Column(String, nullable=False)
    id_column = Column(String, nullable=False, default="row_id")
    label_column = Column(String, nullable=False, default="label")
    public_percentage = Column(Integer, nullable=False, default=50)
    delimiter = Column(String, nullable=False, default=",")
    columns = Column(JSON, default=list)
    total_rows = Column(Integer, default=0)
    public_rows = Column(Integer, default=0)
    private_rows = Column(Integer, default=0)
    uploaded_by = Column(String, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow)

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "location": self.location,
            "id_column": self.id_column,
            "label_column": self.label_column,
            "public_percentage": self.public_percentage,
            "columns": list(self.columns or []),
            "total_rows": self.total_rows,
            "public_rows": self.public_rows,
            "private_rows": self.private_rows,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }
