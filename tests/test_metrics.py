import math

import pytest

from datathon.core.errors import ComputationError
from datathon.scoring.metrics import (
    CLASSIFICATION,
    REGRESSION,
    auc_roc_score,
    classification_metrics,
    compute_metrics,
    f1_from_macro_averages,
    higher_is_better,
    is_perfect_score,
    log_loss_score,
    macro_average,
    macro_f1_score,
    mcc_score,
    per_class_scores,
    regression_metrics,
)

# (predicted, actual)
MULTICLASS = [("a", "a"), ("a", "b"), ("b", "b"), ("c", "b")]


def test_accuracy_counts_exact_matches():
    m = classification_metrics([("a", "a"), ("b", "a")])
    assert m.accuracy == 0.5


def test_per_class_scores_are_sorted_and_zero_on_empty_denominators():
    scores = per_class_scores(MULTICLASS)
    assert [s.label for s in scores] == ["a", "b", "c"]
    a, b, c = scores
    assert (a.precision, a.recall) == (0.5, 1.0)
    assert b.precision == 1.0
    assert b.recall == pytest.approx(1 / 3)
    assert (c.precision, c.recall, c.f1) == (0.0, 0.0, 0.0)


def test_f1_and_macro_f1_are_distinct_definitions():
    per_class = per_class_scores(MULTICLASS)
    precision = macro_average(s.precision for s in per_class)
    recall = macro_average(s.recall for s in per_class)

    assert f1_from_macro_averages(precision, recall) == pytest.approx(0.470588, abs=1e-6)
    assert macro_f1_score(per_class) == pytest.approx(0.388889, abs=1e-6)

    m = classification_metrics(MULTICLASS)
    assert m.f1 == 0.470588
    assert m.macro_f1 == 0.388889
    assert m.precision == 0.5
    assert m.recall == 0.444444


def test_f1_from_macro_averages_zero_when_both_zero():
    assert f1_from_macro_averages(0.0, 0.0) == 0.0


def test_auc_perfect_and_inverted_ranking():
    ranked = [("0.9", "1"), ("0.8", "1"), ("0.2", "0"), ("0.1", "0")]
    inverted = [("0.1", "1"), ("0.2", "1"), ("0.8", "0"), ("0.9", "0")]
    assert auc_roc_score(ranked) == 1.0
    assert auc_roc_score(inverted) == 0.0


def test_auc_ties_share_average_rank():
    assert auc_roc_score([("0.5", "1"), ("0.5", "0")]) == 0.5


def test_auc_zero_when_one_class_missing():
    assert auc_roc_score([("0.9", "1"), ("0.1", "yes")]) == 0.0


def test_auc_uses_label_positivity_for_hard_predictions():
    pairs = [("yes", "yes"), ("no", "no"), ("true", "1"), ("false", "0")]
    assert auc_roc_score(pairs) == 1.0


def test_log_loss_clips_and_scores_probabilities():
    assert log_loss_score([("1", "1"), ("0", "0")]) == 0.0
    assert log_loss_score([("0.5", "1")]) == pytest.approx(math.log(2), abs=1e-6)


def test_log_loss_treats_non_finite_as_label():
    assert log_loss_score([("nan", "0")]) == 0.0


def test_mcc():
    assert mcc_score([("1", "1"), ("0", "0")]) == 1.0
    assert mcc_score([("1", "0"), ("0", "1")]) == -1.0
    # all predictions negative: marginal product is zero
    assert mcc_score([("0", "1"), ("0", "0")]) == 0.0


def test_regression_identical_values():
    m = regression_metrics([("1", "1"), ("2", "2"), ("3", "3")])
    assert (m.mae, m.mse, m.rmse) == (0.0, 0.0, 0.0)
    assert m.r2 == 1.0
    assert m.mape == 0.0
    assert m.rmsle == 0.0


def test_regression_error_metrics():
    m = regression_metrics([("2", "1"), ("2", "2"), ("4", "3")])
    assert m.mae == pytest.approx(0.666667, abs=1e-6)
    assert m.mse == pytest.approx(0.666667, abs=1e-6)
    assert m.rmse == pytest.approx(0.816497, abs=1e-6)
    assert m.r2 == 0.0
    assert m.mape == pytest.approx(44.444444, abs=1e-6)
    assert m.rmsle == pytest.approx(0.267205, abs=1e-5)


def test_r2_zero_when_actuals_constant():
    assert regression_metrics([("1", "5"), ("9", "5")]).r2 == 0.0


def test_mape_skips_zero_actuals():
    assert regression_metrics([("1", "0"), ("1", "2")]).mape == 50.0
    assert regression_metrics([("1", "0")]).mape == 0.0


def test_regression_refuses_unparseable_values():
    with pytest.raises(ComputationError) as exc:
        regression_metrics([("abc", "1")])
    assert exc.value.reason == "non_numeric_value"


def test_empty_input_yields_zeros():
    assert set(compute_metrics([], CLASSIFICATION).values()) == {0.0}
    assert set(compute_metrics([], REGRESSION).values()) == {0.0}


def test_compute_metrics_dispatches_by_problem_type():
    assert set(compute_metrics([("1", "1")], CLASSIFICATION)) == {
        "accuracy", "precision", "recall", "f1", "macro_f1", "log_loss", "auc_roc", "mcc",
    }
    assert set(compute_metrics([("1", "1")], REGRESSION)) == {"mae", "mse", "rmse", "r2", "mape", "rmsle"}


def test_perfect_score_detection():
    assert is_perfect_score({"accuracy": 1.0}, CLASSIFICATION)
    assert not is_perfect_score({"accuracy": 0.99}, CLASSIFICATION)
    assert is_perfect_score({"mae": 0.0, "mse": 0.0, "rmse": 0.0}, REGRESSION)
    assert not is_perfect_score({"mae": 0.0, "mse": 0.0, "rmse": 0.1}, REGRESSION)


def test_metric_direction():
    assert higher_is_better("accuracy")
    assert higher_is_better("r2")
    assert not higher_is_better("rmse")
    assert higher_is_better("log_loss")
