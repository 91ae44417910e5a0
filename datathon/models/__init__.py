from datathon.models.submission import Submission
from datathon.models.account import UserAccount
from datathon.models.answer_key import AnswerKeyRecord
from datathon.models.config import ConfigEntry

__all__ = ["Submission", "UserAccount", "AnswerKeyRecord", "ConfigEntry"]
