import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool

from datathon.api.deps import get_submission_service, http_error
from datathon.core.config import settings
from datathon.core.errors import ScoringError
from datathon.services.submissions import SubmissionService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/upload")
async def upload_submission(
    file: UploadFile | None = File(None),
    user_id: str = Form(...),
    comments: str = Form(""),
    service: SubmissionService = Depends(get_submission_service),
):
    """Score an uploaded prediction table and record the result."""
    if file is None or not file.filename:
        raise HTTPException(400, {"error": "No file uploaded", "reason": "no_file"})
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            413,
            {"error": f"File exceeds {settings.MAX_UPLOAD_BYTES} bytes", "reason": "file_too_large"},
        )

    try:
        record = await run_in_threadpool(
            service.evaluate, user_id, content, filename=file.filename, comments=comments
        )
    except ScoringError as e:
        raise http_error(e)

    response = {
        "message": "Submission evaluated successfully",
        "submission": record.to_dict(),
    }
    if record.flagged_for_review:
        response["warning"] = record.review_note
    return response


@router.get("/status")
def submission_status(
    user_id: str = Query(...),
    service: SubmissionService = Depends(get_submission_service),
):
    return service.status(user_id)


@router.get("/column-config")
def column_config(service: SubmissionService = Depends(get_submission_service)):
    return service.column_config()


@router.get("/best")
def best_submission(
    user_id: str = Query(...),
    service: SubmissionService = Depends(get_submission_service),
):
    record = service.best_submission(user_id)
    return {"submission": record.to_dict() if record else None}


@router.get("")
@router.get("/")
def list_submissions(
    user_id: str = Query(...),
    service: SubmissionService = Depends(get_submission_service),
):
    records = service.list_submissions(user_id)
    return {"submissions": [r.to_dict(include_preview=False) for r in records]}


@router.get("/{submission_id}")
def get_submission(
    submission_id: str,
    user_id: str = Query(...),
    service: SubmissionService = Depends(get_submission_service),
):
    try:
        record = service.get_submission(user_id, submission_id)
    except ScoringError as e:
        raise http_error(e)
    return {"submission": record.to_dict()}


@router.put("/{submission_id}/select-final")
def select_final(
    submission_id: str,
    user_id: str = Body(...),
    is_selected: bool = Body(True, alias="isSelected"),
    service: SubmissionService = Depends(get_submission_service),
):
    try:
        record = service.select_final(user_id, submission_id, is_selected)
    except ScoringError as e:
        raise http_error(e)
    message = (
        "Submission selected for final leaderboard. Previous selection has been cleared."
        if is_selected
        else "Submission deselected"
    )
    return {
        "message": message,
        "submission": {
            "id": record.id,
            "attempt_number": record.attempt_number,
            "is_selected_for_final": bool(record.is_selected_for_final),
        },
    }


@router.put("/{submission_id}/comments")
def update_comments(
    submission_id: str,
    user_id: str = Body(...),
    comments: Optional[str] = Body(""),
    service: SubmissionService = Depends(get_submission_service),
):
    try:
        record = service.update_comments(user_id, submission_id, comments)
    except ScoringError as e:
        raise http_error(e)
    return {"message": "Comments updated successfully", "submission": {"id": record.id, "comments": record.comments}}


@router.delete("/{submission_id}")
def delete_submission(
    submission_id: str,
    user_id: str = Query(...),
    service: SubmissionService = Depends(get_submission_service),
):
    try:
        service.delete_submission(user_id, submission_id)
    except ScoringError as e:
        raise http_error(e)
    return {
        "message": "Submission deleted successfully",
        "note": "This submission still counts towards your submission limit",
    }
