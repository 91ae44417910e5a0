from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from datathon.scoring.metrics import compute_metrics, CLASSIFICATION

_DIGITS = re.compile(r"(\d+)")

# Number of missing/extra ids kept on a comparison for diagnostics.
ID_SAMPLE_SIZE = 10


def natural_key(value: str) -> tuple:
    """Sort key that orders digit runs numerically and text case-insensitively.

    ``"row2" < "row10"`` and ``"9" < "10"``. The raw string is appended as a
    final tie-break so the order is total.
    """
    parts = []
    for chunk in _DIGITS.split(value):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((0, int(chunk), ""))
        else:
            parts.append((1, 0, chunk.casefold()))
    return (tuple(parts), value)


@dataclass(frozen=True)
class CanonicalRow:
    id: str
    label: str
    extra: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SubmissionRow:
    id: str
    predicted: str


@dataclass(frozen=True)
class RowComparison:
    id: str
    predicted: str
    actual: str
    match: bool

    def as_dict(self) -> dict:
        return {"row_id": self.id, "predicted": self.predicted, "actual": self.actual, "match": self.match}


@dataclass
class ComparisonResult:
    comparisons: list[RowComparison]
    rows_in_canonical: int
    rows_in_submission: int
    missing_rows: int
    extra_rows: int
    missing_row_ids: list[str] = field(default_factory=list)
    extra_row_ids: list[str] = field(default_factory=list)
    problem_type: str = CLASSIFICATION
    metrics: dict = field(default_factory=dict)

    @property
    def rows_compared(self) -> int:
        return len(self.comparisons)

    @property
    def matches(self) -> int:
        return sum(1 for c in self.comparisons if c.match)

    def pairs(self) -> list[tuple[str, str]]:
        return [(c.predicted, c.actual) for c in self.comparisons]

    def preview(self, mismatches: int = 15, matches: int = 5) -> list[dict]:
        """Mismatching rows first (for debugging), then a few matching ones."""
        wrong = [c for c in self.comparisons if not c.match][:mismatches]
        right = [c for c in self.comparisons if c.match][:matches]
        return [c.as_dict() for c in wrong + right][: mismatches + matches]


def align_rows(submission: Sequence[SubmissionRow], canonical: Sequence[CanonicalRow]) -> ComparisonResult:
    """Join submission rows against one canonical partition by id.

    Canonical rows are walked in natural id order, so identical inputs always
    yield identical comparisons.
    """
    predicted_by_id = {row.id: row.predicted for row in submission}
    canonical_ids = set()
    comparisons: list[RowComparison] = []
    missing: list[str] = []

    for row in sorted(canonical, key=lambda r: natural_key(r.id)):
        canonical_ids.add(row.id)
        if row.id in predicted_by_id:
            predicted = predicted_by_id[row.id]
            comparisons.append(RowComparison(row.id, predicted, row.label, predicted == row.label))
        else:
            missing.append(row.id)

    extra = sorted((row.id for row in submission if row.id not in canonical_ids), key=natural_key)

    return ComparisonResult(
        comparisons=comparisons,
        rows_in_canonical=len(canonical),
        rows_in_submission=len(submission),
        missing_rows=len(missing),
        extra_rows=len(extra),
        missing_row_ids=missing[:ID_SAMPLE_SIZE],
        extra_row_ids=extra[:ID_SAMPLE_SIZE],
    )


def compare(
    submission: Sequence[SubmissionRow],
    canonical: Sequence[CanonicalRow],
    problem_type: str = CLASSIFICATION,
) -> ComparisonResult:
    """Align rows and attach the metric set for ``problem_type``."""
    result = align_rows(submission, canonical)
    result.problem_type = problem_type
    result.metrics = compute_metrics(result.pairs(), problem_type)
    return result
