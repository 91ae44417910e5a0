import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from datathon.api.deps import (
    get_answer_key_store,
    get_config_repo,
    get_leaderboard_service,
    get_submission_service,
    http_error,
    require_admin,
)
from datathon.core.config import settings
from datathon.core.errors import ScoringError
from datathon.services.answer_keys import AnswerKeyStore
from datathon.services.competition import CompetitionConfigRepository
from datathon.services.leaderboard import LeaderboardService
from datathon.services.submissions import SubmissionService

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_admin)])


class ConfigUpdate(BaseModel):
    key: str
    value: Any = None


class AccountUpdate(BaseModel):
    display_name: Optional[str] = None
    upload_limit: Optional[int] = None
    daily_upload_limit: Optional[int] = None
    is_banned: Optional[bool] = None
    ban_reason: Optional[str] = None
    is_disqualified: Optional[bool] = None
    hide_from_leaderboard: Optional[bool] = None


@router.post("/answer-key")
async def upload_answer_key(
    file: UploadFile | None = File(None),
    id_column: str = Form("row_id", alias="idColumn"),
    label_column: str = Form("label", alias="labelColumn"),
    public_percentage: str = Form("50", alias="publicPercentage"),
    uploaded_by: Optional[str] = Form(None),
    store: AnswerKeyStore = Depends(get_answer_key_store),
    leaderboard: LeaderboardService = Depends(get_leaderboard_service),
):
    """Replace the canonical answer table and split it into public/private partitions."""
    if file is None or not file.filename:
        raise HTTPException(400, {"error": "No file uploaded", "reason": "no_file"})
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            413,
            {"error": f"File exceeds {settings.MAX_UPLOAD_BYTES} bytes", "reason": "file_too_large"},
        )
    try:
        summary = await run_in_threadpool(
            store.replace_from_upload,
            content,
            file.filename,
            id_column,
            label_column,
            public_percentage,
            uploaded_by=uploaded_by,
        )
    except ScoringError as e:
        raise http_error(e)
    leaderboard.invalidate()
    return {"message": "Answer table uploaded successfully", **summary}


@router.get("/answer-key")
def describe_answer_key(store: AnswerKeyStore = Depends(get_answer_key_store)):
    info = store.describe()
    if info is None:
        raise HTTPException(404, {"error": "No answer table uploaded", "reason": "no_answer_key"})
    return info


@router.post("/answer-key/reload")
def reload_answer_key(store: AnswerKeyStore = Depends(get_answer_key_store)):
    return {"reloaded": store.reload(), "is_loaded": store.is_loaded()}


@router.delete("/answer-key")
def delete_answer_key(
    store: AnswerKeyStore = Depends(get_answer_key_store),
    leaderboard: LeaderboardService = Depends(get_leaderboard_service),
):
    if not store.clear():
        raise HTTPException(404, {"error": "No answer table uploaded", "reason": "no_answer_key"})
    leaderboard.invalidate()
    logger.info("Answer key deleted", extra={"stage": "answer_key"})
    return {"message": "Answer table deleted"}


@router.get("/config")
def get_config(config_repo: CompetitionConfigRepository = Depends(get_config_repo)):
    return config_repo.load().public_dict()


@router.put("/config")
def update_config(
    update: ConfigUpdate = Body(...),
    config_repo: CompetitionConfigRepository = Depends(get_config_repo),
    leaderboard: LeaderboardService = Depends(get_leaderboard_service),
):
    try:
        config = config_repo.update(update.key, update.value)
    except ScoringError as e:
        raise http_error(e)
    leaderboard.invalidate()
    return {"message": "Configuration updated", "config": config.public_dict()}


@router.put("/accounts/{user_id}")
def update_account(
    user_id: str,
    update: AccountUpdate = Body(...),
    service: SubmissionService = Depends(get_submission_service),
):
    try:
        account = service.update_account(user_id, update.model_dump(exclude_unset=True))
    except ScoringError as e:
        raise http_error(e)
    return {"message": "Account updated", "account": account}


@router.get("/submissions")
def list_all_submissions(
    user_id: Optional[str] = Query(None),
    service: SubmissionService = Depends(get_submission_service),
):
    records = service.list_submissions(user_id)
    return {"submissions": [r.to_dict(include_preview=False) for r in records]}
