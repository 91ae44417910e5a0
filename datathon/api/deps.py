from typing import Optional

from fastapi import Header, HTTPException

from datathon.core.config import settings
from datathon.core.errors import ScoringError
from datathon.core.storage import build_answer_key_files
from datathon.db.session import SessionLocal
from datathon.services.answer_keys import AnswerKeyStore
from datathon.services.competition import CompetitionConfigRepository
from datathon.services.leaderboard import LeaderboardService, leaderboard_cache
from datathon.services.submissions import SubmissionService

# Global instances
config_repo = CompetitionConfigRepository(SessionLocal)
answer_key_store = AnswerKeyStore(SessionLocal, build_answer_key_files(), settings.TABLE_DELIMITER)
leaderboard_service = LeaderboardService(SessionLocal, config_repo, leaderboard_cache)
submission_service = SubmissionService(
    SessionLocal,
    answer_key_store,
    config_repo,
    leaderboard_cache=leaderboard_cache,
    delimiter=settings.TABLE_DELIMITER,
)


def get_config_repo() -> CompetitionConfigRepository:
    return config_repo


def get_answer_key_store() -> AnswerKeyStore:
    return answer_key_store


def get_leaderboard_service() -> LeaderboardService:
    return leaderboard_service


def get_submission_service() -> SubmissionService:
    return submission_service


def is_admin(x_admin_key: Optional[str]) -> bool:
    return bool(settings.ADMIN_API_KEY) and x_admin_key == settings.ADMIN_API_KEY


def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    if not is_admin(x_admin_key):
        raise HTTPException(403, {"error": "Admin access required", "reason": "admin_required"})


def http_error(exc: ScoringError) -> HTTPException:
    return HTTPException(exc.status_code, exc.to_dict())
