import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from datathon.api.deps import get_config_repo, get_leaderboard_service, http_error, is_admin
from datathon.core.errors import ScoringError
from datathon.services.competition import CompetitionConfigRepository
from datathon.services.leaderboard import PRIVATE_VIEW, LeaderboardService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/")
@router.get("")
def get_leaderboard(
    view: str = Query("public", description="public | private"),
    limit: int = Query(50, ge=1, le=500, description="Number of results to return"),
    user_id: Optional[str] = Query(None, description="Include this user's rank"),
    metric: Optional[str] = Query(None, description="Rank by this metric instead of the configured one"),
    x_admin_key: Optional[str] = Header(None),
    service: LeaderboardService = Depends(get_leaderboard_service),
    config_repo: CompetitionConfigRepository = Depends(get_config_repo),
):
    """
    Best submission per user, ranked.
    The private view is admin-only unless enableUserPrivateLeaderboard is set.
    """
    if view == PRIVATE_VIEW and not is_admin(x_admin_key):
        if not config_repo.load().enable_user_private_leaderboard:
            raise HTTPException(
                403,
                {"error": "Private leaderboard is not available yet", "reason": "private_leaderboard_disabled"},
            )
    try:
        return service.get_leaderboard(view=view, limit=limit, user_id=user_id, metric=metric)
    except ScoringError as e:
        logger.warning(f"Leaderboard query rejected: {e.message}", extra={"view": view, "reason": e.reason})
        raise http_error(e)


@router.get("/config")
def leaderboard_config(config_repo: CompetitionConfigRepository = Depends(get_config_repo)):
    config = config_repo.load()
    return {
        "problemType": config.problem_type,
        "leaderboardMetric": config.leaderboard_metric,
        "enableUserPrivateLeaderboard": config.enable_user_private_leaderboard,
    }
