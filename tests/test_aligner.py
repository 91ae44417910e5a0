from datathon.scoring.aligner import (
    ID_SAMPLE_SIZE,
    CanonicalRow,
    SubmissionRow,
    align_rows,
    compare,
    natural_key,
)
from datathon.scoring.metrics import REGRESSION


def canonical(*pairs):
    return [CanonicalRow(id=str(i), label=str(label)) for i, label in pairs]


def submission(*pairs):
    return [SubmissionRow(id=str(i), predicted=str(p)) for i, p in pairs]


def test_worked_example_counts_and_accuracy():
    result = compare(
        submission((1, "a"), (2, "a"), (4, "b")),
        canonical((1, "a"), (2, "b"), (3, "a")),
    )
    assert result.rows_compared == 2
    assert result.missing_rows == 1
    assert result.missing_row_ids == ["3"]
    assert result.extra_rows == 1
    assert result.extra_row_ids == ["4"]
    assert result.metrics["accuracy"] == 0.5


def test_row_count_identities_hold():
    sub = submission((1, "x"), (2, "y"), (7, "z"), (8, "z"))
    can = canonical((1, "x"), (2, "x"), (3, "x"))
    result = align_rows(sub, can)
    assert result.rows_compared + result.missing_rows == result.rows_in_canonical
    assert result.rows_compared + result.extra_rows == result.rows_in_submission


def test_comparisons_follow_natural_id_order():
    can = canonical(("row10", "a"), ("row2", "b"), ("row1", "c"))
    sub = submission(("row1", "c"), ("row2", "b"), ("row10", "a"))
    result = align_rows(sub, can)
    assert [c.id for c in result.comparisons] == ["row1", "row2", "row10"]


def test_natural_key_orders_digits_numerically_and_text_case_insensitively():
    ids = ["10", "9", "b2", "B10", "a1"]
    assert sorted(ids, key=natural_key) == ["9", "10", "a1", "b2", "B10"]


def test_identical_inputs_give_identical_results():
    sub = submission((3, "a"), (1, "b"), (2, "a"))
    can = canonical((2, "a"), (3, "b"), (1, "b"))
    assert compare(sub, can).comparisons == compare(list(reversed(sub)), list(reversed(can))).comparisons


def test_missing_and_extra_id_samples_are_capped():
    can = canonical(*[(i, "a") for i in range(1, 31)])
    sub = submission(*[(i, "a") for i in range(100, 130)])
    result = align_rows(sub, can)
    assert result.missing_rows == 30
    assert len(result.missing_row_ids) == ID_SAMPLE_SIZE
    assert result.extra_rows == 30
    assert len(result.extra_row_ids) == ID_SAMPLE_SIZE


def test_preview_puts_mismatches_first():
    can = canonical(*[(i, "a") for i in range(1, 31)])
    sub = submission(*[(i, "b" if i > 10 else "a") for i in range(1, 31)])
    preview = compare(sub, can).preview()
    assert len(preview) == 20
    assert all(not row["match"] for row in preview[:15])
    assert all(row["match"] for row in preview[15:])
    assert set(preview[0]) == {"row_id", "predicted", "actual", "match"}


def test_regression_compare_uses_regression_metrics():
    result = compare(submission((1, "1"), (2, "2"), (3, "3")), canonical((1, 1), (2, 2), (3, 3)), REGRESSION)
    assert result.metrics["rmse"] == 0.0
    assert result.metrics["r2"] == 1.0
