"""Submission pipeline.

``SubmissionService.evaluate`` takes one uploaded prediction table through
the gates below, in order, and records the scored result:

1. account status (banned, disqualified)
2. competition window
3. answer key present (one reload attempt)
4. total upload limit
5. daily upload limit
6. table structure
7. constant predictions
8. numeric predictions (regression)

A rejected upload changes nothing. The attempt and daily counters are
incremented in the same transaction that inserts the record.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from datathon.core.errors import (
    Forbidden,
    NotFound,
    PolicyRejection,
    ScoringError,
    ValidationError,
)
from datathon.core.metrics import (
    EVALUATION_COMPLETED_TOTAL,
    EVALUATION_DURATION_SECONDS,
    PERFECT_SCORE_FLAGS_TOTAL,
    SUBMISSIONS_RECEIVED_TOTAL,
    SUBMISSIONS_REJECTED_TOTAL,
    SUBMISSIONS_UPLOAD_BYTES_TOTAL,
    DurationTimer,
)
from datathon.models import Submission, UserAccount
from datathon.scoring.aligner import SubmissionRow, compare
from datathon.scoring.metrics import DEFAULT_METRIC, REGRESSION, is_perfect_score, metric_names
from datathon.scoring.table import read_table
from datathon.services.answer_keys import PRIVATE, PUBLIC
from datathon.services.leaderboard import ranking_key
from datathon.services.locks import UserLockRegistry

logger = logging.getLogger(__name__)

PREVIEW_MISMATCHES = 15
PREVIEW_MATCHES = 5
SAMPLE_IDS = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_numeric(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def score_metric(metric: Optional[str], problem_type: str) -> str:
    if metric in metric_names(problem_type):
        return metric
    return DEFAULT_METRIC[problem_type]


ACCOUNT_FIELDS = (
    "display_name",
    "upload_limit",
    "daily_upload_limit",
    "is_banned",
    "ban_reason",
    "is_disqualified",
    "hide_from_leaderboard",
)


class SubmissionService:
    def __init__(
        self,
        session_factory,
        answer_keys,
        config_repo,
        locks: Optional[UserLockRegistry] = None,
        leaderboard_cache=None,
        clock: Optional[Callable[[], datetime]] = None,
        delimiter: str = ",",
    ):
        self.session_factory = session_factory
        self.answer_keys = answer_keys
        self.config_repo = config_repo
        self.locks = locks or UserLockRegistry()
        self.leaderboard_cache = leaderboard_cache
        self.clock = clock or utcnow
        self.delimiter = delimiter

    # ----------
    # Accounts
    # ----------

    def _account(self, db, user_id: str, for_update: bool = False) -> UserAccount:
        q = db.query(UserAccount).filter(UserAccount.user_id == user_id)
        if for_update:
            q = q.with_for_update()
        account = q.first()
        if account is None:
            account = UserAccount(user_id=user_id, attempt_count=0, today_submission_count=0)
            db.add(account)
            db.flush()
        return account

    def get_account(self, user_id: str) -> dict:
        with self.session_factory() as db:
            account = self._account(db, user_id)
            db.commit()
            return account.to_dict()

    def update_account(self, user_id: str, changes: dict) -> dict:
        unknown = set(changes) - set(ACCOUNT_FIELDS)
        if unknown:
            raise ValidationError("invalid_account_field", f"Unknown account fields: {', '.join(sorted(unknown))}")
        with self.locks.hold(user_id):
            with self.session_factory() as db:
                account = self._account(db, user_id, for_update=True)
                for field, value in changes.items():
                    setattr(account, field, value)
                db.commit()
                data = account.to_dict()
        self._invalidate()
        logger.info(f"Account {user_id} updated: {', '.join(sorted(changes))}", extra={"user_id": user_id})
        return data

    @staticmethod
    def _upload_limit(account: UserAccount, config) -> int:
        if account.upload_limit is not None:
            return account.upload_limit
        return config.default_upload_limit

    @staticmethod
    def _daily_limit(account: UserAccount, config) -> Optional[int]:
        if account.daily_upload_limit is not None:
            return account.daily_upload_limit
        return config.daily_upload_limit

    @staticmethod
    def _today_count(account: UserAccount, today) -> int:
        if account.last_submission_date != today:
            return 0
        return account.today_submission_count or 0

    # ----------
    # Evaluation
    # ----------

    def evaluate(self, user_id: str, raw: bytes, filename: Optional[str] = None, comments: str = "") -> Submission:
        """Run every gate, score both partitions and record the result."""
        SUBMISSIONS_RECEIVED_TOTAL.inc()
        SUBMISSIONS_UPLOAD_BYTES_TOTAL.inc(len(raw or b""))
        try:
            with self.locks.hold(user_id):
                record = self._evaluate_locked(user_id, raw, filename, comments)
        except ScoringError as e:
            SUBMISSIONS_REJECTED_TOTAL.labels(reason=e.reason).inc()
            logger.warning(
                f"Submission rejected: {e.message}",
                extra={"user_id": user_id, "reason": e.reason},
            )
            raise
        self._invalidate()
        return record

    def _evaluate_locked(self, user_id, raw, filename, comments) -> Submission:
        with self.session_factory() as db:
            account = self._account(db, user_id, for_update=True)
            config = self.config_repo.load(db)
            now = self.clock()
            today = now.date()

            if account.is_banned:
                reason = f": {account.ban_reason}" if account.ban_reason else ""
                raise PolicyRejection("banned", f"Your account has been banned{reason}")
            if account.is_disqualified:
                raise PolicyRejection("disqualified", "Your account has been disqualified from this competition")

            window = config.window_status(now)
            if window == "not_started":
                raise PolicyRejection(
                    "not_started",
                    f"Competition has not started yet. It will begin on {config.competition_start_time.isoformat()}.",
                )
            if window == "ended":
                raise PolicyRejection(
                    "ended",
                    f"Competition has ended on {config.competition_end_time.isoformat()}. No more submissions are accepted.",
                )

            key = self.answer_keys.ensure_loaded()

            limit = self._upload_limit(account, config)
            used = account.attempt_count or 0
            if used >= limit:
                raise PolicyRejection(
                    "upload_limit_reached",
                    f"Upload limit reached. You have used {used} of {limit} allowed submissions.",
                    detail={"used": used, "limit": limit},
                )

            daily_limit = self._daily_limit(account, config)
            today_count = self._today_count(account, today)
            if daily_limit is not None and today_count >= daily_limit:
                raise PolicyRejection(
                    "daily_limit_reached",
                    f"Daily submission limit reached. You can submit {daily_limit} times per day. Try again tomorrow.",
                    detail={"used_today": today_count, "daily_limit": daily_limit},
                )

            rows = self._parse(raw, key.id_column, key.label_column)
            self._check_predictions(rows, config.problem_type)

            problem_type = config.problem_type
            with DurationTimer() as t:
                private_partition = key.partition(PRIVATE)
                public_partition = key.partition(PUBLIC)
                # Row diagnostics come from whichever partition is non-empty.
                private = compare(rows, private_partition or public_partition, problem_type)
                public = compare(rows, public_partition, problem_type) if public_partition else private

            metric = score_metric(config.leaderboard_metric, problem_type)
            flagged = is_perfect_score(private.metrics, problem_type)

            account.attempt_count = used + 1
            account.today_submission_count = today_count + 1
            account.last_submission_date = today

            record = Submission(
                id=str(uuid.uuid4()),
                user_id=user_id,
                attempt_number=account.attempt_count,
                filename=filename,
                uploaded_at=now,
                problem_type=problem_type,
                status="done",
                private_metrics=private.metrics,
                public_metrics=public.metrics,
                private_score=private.metrics.get(metric),
                public_score=public.metrics.get(metric),
                score_metric=metric,
                rows_in_canonical=private.rows_in_canonical,
                rows_in_submission=private.rows_in_submission,
                rows_compared=private.rows_compared,
                missing_rows=private.missing_rows,
                extra_rows=private.extra_rows,
                matches=private.matches,
                missing_row_ids=private.missing_row_ids,
                extra_row_ids=private.extra_row_ids,
                preview=private.preview(PREVIEW_MISMATCHES, PREVIEW_MATCHES),
                is_selected_for_final=False,
                comments=comments or "",
                flagged_for_review=flagged,
                review_note="Perfect score detected; flagged for manual review." if flagged else None,
            )
            db.add(record)
            db.commit()

        EVALUATION_COMPLETED_TOTAL.labels(problem_type=problem_type).inc()
        EVALUATION_DURATION_SECONDS.labels(problem_type=problem_type).observe(t.seconds)
        if flagged:
            PERFECT_SCORE_FLAGS_TOTAL.labels(problem_type=problem_type).inc()
            logger.warning(
                f"Perfect score detected for user {user_id}, attempt {record.attempt_number}",
                extra={"user_id": user_id, "submission_id": record.id, "attempt_number": record.attempt_number},
            )
        logger.info(
            f"Submission {record.id} scored: {metric}={record.private_score}",
            extra={
                "submission_id": record.id,
                "user_id": user_id,
                "attempt_number": record.attempt_number,
                "problem_type": problem_type,
                "metric": metric,
            },
        )
        return record

    def _parse(self, raw: bytes, id_column: str, label_column: str) -> list[SubmissionRow]:
        table = read_table(raw, self.delimiter)
        if len(table) == 0:
            raise ValidationError("empty_table", "Submission table has no rows")
        if not table.has_columns(id_column, label_column):
            raise ValidationError(
                "missing_columns",
                f'Table must contain "{id_column}" and "{label_column}" columns',
                detail={"found_columns": table.columns},
            )
        seen = set()
        duplicates = []
        rows = []
        for record in table.rows:
            row_id = record[id_column]
            if row_id in seen:
                duplicates.append(row_id)
            seen.add(row_id)
            rows.append(SubmissionRow(id=row_id, predicted=record[label_column]))
        if duplicates:
            raise ValidationError(
                "duplicate_ids",
                f"Found {len(duplicates)} duplicate ids in submission",
                detail={"sample": duplicates[:SAMPLE_IDS]},
            )
        return rows

    @staticmethod
    def _check_predictions(rows: list[SubmissionRow], problem_type: str) -> None:
        if len({row.predicted for row in rows}) == 1:
            raise PolicyRejection(
                "constant_predictions",
                "Submission rejected: All predictions are identical. Please submit varied predictions.",
            )
        if problem_type == REGRESSION:
            bad = [row.id for row in rows if not _is_numeric(row.predicted)]
            if bad:
                raise ValidationError(
                    "non_numeric_predictions",
                    f"Regression predictions must be numeric values. Found {len(bad)} non-numeric predictions",
                    detail={"count": len(bad), "sample": bad[:SAMPLE_IDS]},
                )

    # ----------
    # Records
    # ----------

    def status(self, user_id: str) -> dict:
        """Competition state and the caller's remaining quota."""
        with self.session_factory() as db:
            account = db.query(UserAccount).filter(UserAccount.user_id == user_id).first()
            config = self.config_repo.load(db)
            submission_count = db.query(Submission).filter(Submission.user_id == user_id).count()
        now = self.clock()
        window = config.window_status(now)
        messages = {
            "active": "Competition is active",
            "not_started": "Competition has not started yet",
            "ended": "Competition has ended",
        }

        if account is None:
            account = UserAccount(user_id=user_id, attempt_count=0, today_submission_count=0)
        limit = self._upload_limit(account, config)
        used = account.attempt_count or 0
        remaining = max(0, limit - used)
        daily_limit = self._daily_limit(account, config)
        today_count = self._today_count(account, now.date())
        daily_remaining = None if daily_limit is None else max(0, daily_limit - today_count)

        blocked = bool(account.is_banned or account.is_disqualified)
        return {
            "status": window,
            "message": messages[window],
            "competitionStartTime": config.competition_start_time.isoformat() if config.competition_start_time else None,
            "competitionEndTime": config.competition_end_time.isoformat() if config.competition_end_time else None,
            "problemType": config.problem_type,
            "submissionCount": submission_count,
            "attemptCount": used,
            "uploadLimit": limit,
            "remainingSubmissions": remaining,
            "dailyUploadLimit": daily_limit,
            "todaySubmissionCount": today_count,
            "dailyRemaining": daily_remaining,
            "answerKeyLoaded": self.answer_keys.is_loaded(),
            "canSubmit": window == "active"
            and remaining > 0
            and (daily_remaining is None or daily_remaining > 0)
            and not blocked,
        }

    def list_submissions(self, user_id: Optional[str] = None) -> list[Submission]:
        with self.session_factory() as db:
            q = db.query(Submission)
            if user_id is not None:
                q = q.filter(Submission.user_id == user_id)
            return q.order_by(Submission.attempt_number.desc(), Submission.uploaded_at.desc()).all()

    def _owned(self, db, user_id: str, submission_id: str) -> Submission:
        record = db.get(Submission, submission_id)
        if record is None:
            raise NotFound("submission_not_found", "Submission not found")
        if record.user_id != user_id:
            raise Forbidden("not_owner", "You do not have permission to access this submission")
        return record

    def get_submission(self, user_id: str, submission_id: str) -> Submission:
        with self.session_factory() as db:
            return self._owned(db, user_id, submission_id)

    def best_submission(self, user_id: str) -> Optional[Submission]:
        """The caller's best record by private metrics under the configured metric."""
        with self.session_factory() as db:
            config = self.config_repo.load(db)
            records = (
                db.query(Submission)
                .filter(Submission.user_id == user_id, Submission.problem_type == config.problem_type)
                .all()
            )
        if not records:
            return None
        metric = score_metric(config.leaderboard_metric, config.problem_type)
        return min(
            records,
            key=lambda r: ranking_key(r, r.private_metrics or {}, metric, config.problem_type),
        )

    def select_final(self, user_id: str, submission_id: str, selected: bool = True) -> Submission:
        """Mark one record as the user's final choice; every other flag is cleared in the same transaction."""
        with self.locks.hold(user_id):
            with self.session_factory() as db:
                self._account(db, user_id, for_update=True)
                record = self._owned(db, user_id, submission_id)
                if selected:
                    db.query(Submission).filter(
                        Submission.user_id == user_id,
                        Submission.id != submission_id,
                        Submission.is_selected_for_final.is_(True),
                    ).update({Submission.is_selected_for_final: False}, synchronize_session=False)
                record.is_selected_for_final = bool(selected)
                db.commit()
        self._invalidate()
        logger.info(
            f"Submission {submission_id} {'selected' if selected else 'deselected'} for final leaderboard",
            extra={"user_id": user_id, "submission_id": submission_id},
        )
        return record

    def update_comments(self, user_id: str, submission_id: str, comments: Optional[str]) -> Submission:
        with self.session_factory() as db:
            record = self._owned(db, user_id, submission_id)
            record.comments = comments or ""
            db.commit()
        return record

    def delete_submission(self, user_id: str, submission_id: str) -> None:
        """Remove a record. The account's attempt count is left untouched."""
        with self.locks.hold(user_id):
            with self.session_factory() as db:
                record = self._owned(db, user_id, submission_id)
                db.delete(record)
                db.commit()
        self._invalidate()
        logger.info(f"Submission {submission_id} deleted", extra={"user_id": user_id, "submission_id": submission_id})

    def column_config(self) -> dict:
        return self.answer_keys.column_config()

    def _invalidate(self) -> None:
        if self.leaderboard_cache is not None:
            self.leaderboard_cache.invalidate()

