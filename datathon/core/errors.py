"""Errors raised by the scoring core.

Every error carries a machine-readable ``reason`` code, a human message and
an optional ``detail`` payload. API routes turn them into HTTP responses via
:meth:`ScoringError.to_dict` and :attr:`ScoringError.status_code`.
"""

from typing import Any, Optional


class ScoringError(Exception):
    status_code = 500

    def __init__(self, reason: str, message: str, detail: Optional[Any] = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        payload = {"error": self.message, "reason": self.reason}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class ValidationError(ScoringError):
    """Malformed table, missing columns, non-numeric regression predictions."""

    status_code = 400


class PolicyRejection(ScoringError):
    """Account status, competition window, quota and anti-cheat rejections."""

    status_code = 403


class RecoverableStateError(ScoringError):
    """Answer key not resident in memory although a backing file is recorded."""

    status_code = 503


class DataUnavailable(ScoringError):
    status_code = 503

    def __init__(self, reason: str, message: str, detail: Optional[Any] = None):
        super().__init__(reason, message, detail)
        # Nothing was ever uploaded: the client can do nothing but wait for an admin.
        if reason == "no_answer_key":
            self.status_code = 400


class ComputationError(ScoringError):
    """Metric input that validation should have rejected. Never swallowed."""

    status_code = 500


class NotFound(ScoringError):
    status_code = 404


class Forbidden(ScoringError):
    status_code = 403
