"""Pure scoring functions: table reading, row alignment and metrics."""

from datathon.scoring.aligner import (
    CanonicalRow,
    SubmissionRow,
    RowComparison,
    ComparisonResult,
    align_rows,
    compare,
    natural_key,
)
from datathon.scoring.metrics import (
    CLASSIFICATION,
    REGRESSION,
    PROBLEM_TYPES,
    classification_metrics,
    regression_metrics,
    compute_metrics,
)
from datathon.scoring.table import Table, read_table

__all__ = [
    "CanonicalRow",
    "SubmissionRow",
    "RowComparison",
    "ComparisonResult",
    "align_rows",
    "compare",
    "natural_key",
    "CLASSIFICATION",
    "REGRESSION",
    "PROBLEM_TYPES",
    "classification_metrics",
    "regression_metrics",
    "compute_metrics",
    "Table",
    "read_table",
]
