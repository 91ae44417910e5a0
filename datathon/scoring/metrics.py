"""Metric calculators.

Every function takes a sequence of ``(predicted, actual)`` string pairs that
the row aligner already matched by id, and returns plain floats rounded to
six decimals. Intermediate values keep full precision. An empty sequence
yields 0 for every metric.

Classification
--------------
* accuracy: share of exact label matches.
* precision / recall: macro averages of the per-class values.
* macro_f1: mean of the per-class F1 scores (:func:`macro_f1_score`).
* f1: harmonic mean of macro precision and macro recall
  (:func:`f1_from_macro_averages`). Differs from macro_f1 on multi-class data;
  both can be selected as the leaderboard metric.
* log_loss, auc_roc, mcc: binary; a label is positive when it is one of
  ``1``, ``true`` or ``yes`` (case-insensitive).

Regression
----------
mae, mse, rmse, r2, mape (percent), rmsle.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from typing import Iterable, Sequence, Tuple

from datathon.core.errors import ComputationError

PRECISION_DIGITS = 6
POSITIVE_LABELS = frozenset({"1", "true", "yes"})
LOG_LOSS_EPSILON = 1e-15
MAPE_EPSILON = 1e-10

CLASSIFICATION = "classification"
REGRESSION = "regression"
PROBLEM_TYPES = (CLASSIFICATION, REGRESSION)

CLASSIFICATION_METRICS = ("accuracy", "precision", "recall", "f1", "macro_f1", "log_loss", "auc_roc", "mcc")
REGRESSION_METRICS = ("mae", "mse", "rmse", "r2", "mape", "rmsle")

# Metrics where a smaller value ranks higher.
LOWER_IS_BETTER = frozenset({"mae", "mse", "rmse", "mape", "rmsle"})

DEFAULT_METRIC = {CLASSIFICATION: "accuracy", REGRESSION: "rmse"}
TIEBREAK_METRIC = {CLASSIFICATION: "f1", REGRESSION: "rmse"}

Pair = Tuple[str, str]  # (predicted, actual)


def metric_names(problem_type: str) -> tuple:
    return CLASSIFICATION_METRICS if problem_type == CLASSIFICATION else REGRESSION_METRICS


def higher_is_better(metric: str) -> bool:
    return metric not in LOWER_IS_BETTER


def _round(value: float) -> float:
    return round(value, PRECISION_DIGITS)


@dataclass(frozen=True)
class ClassScores:
    label: str
    precision: float
    recall: float
    f1: float


@dataclass(frozen=True)
class ClassificationMetrics:
    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1: float = 0.0
    macro_f1: float = 0.0
    log_loss: float = 0.0
    auc_roc: float = 0.0
    mcc: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RegressionMetrics:
    mae: float = 0.0
    mse: float = 0.0
    rmse: float = 0.0
    r2: float = 0.0
    mape: float = 0.0
    rmsle: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


# ----------
# Classification
# ----------


def is_positive(label: str) -> bool:
    return str(label).strip().lower() in POSITIVE_LABELS


def _binary_score(predicted: str) -> float:
    """Numeric score for ranking/probability metrics.

    Finite numbers are used as-is; anything else maps to 1.0 or 0.0 by label
    positivity so hard label predictions still produce a defined value.
    """
    try:
        value = float(predicted)
    except (TypeError, ValueError):
        return 1.0 if is_positive(predicted) else 0.0
    if not math.isfinite(value):
        return 1.0 if is_positive(predicted) else 0.0
    return value


def accuracy_score(pairs: Sequence[Pair]) -> float:
    if not pairs:
        return 0.0
    matches = sum(1 for predicted, actual in pairs if predicted == actual)
    return _round(matches / len(pairs))


def per_class_scores(pairs: Sequence[Pair]) -> list[ClassScores]:
    """Precision, recall and F1 for every label seen in predicted or actual.

    Labels are returned sorted so downstream averaging is order-independent
    of the input.
    """
    tp: dict[str, int] = {}
    fp: dict[str, int] = {}
    fn: dict[str, int] = {}
    labels: set[str] = set()
    for predicted, actual in pairs:
        labels.add(predicted)
        labels.add(actual)
        if predicted == actual:
            tp[predicted] = tp.get(predicted, 0) + 1
        else:
            fp[predicted] = fp.get(predicted, 0) + 1
            fn[actual] = fn.get(actual, 0) + 1

    scores = []
    for label in sorted(labels):
        t, f_pos, f_neg = tp.get(label, 0), fp.get(label, 0), fn.get(label, 0)
        precision = t / (t + f_pos) if (t + f_pos) > 0 else 0.0
        recall = t / (t + f_neg) if (t + f_neg) > 0 else 0.0
        f1 = 2 * precision * recall / (precision + recall) if (precision + recall) > 0 else 0.0
        scores.append(ClassScores(label=label, precision=precision, recall=recall, f1=f1))
    return scores


def macro_average(values: Iterable[float]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def macro_f1_score(per_class: Sequence[ClassScores]) -> float:
    """Mean of per-class F1 scores (unrounded)."""
    return macro_average(s.f1 for s in per_class)


def f1_from_macro_averages(precision: float, recall: float) -> float:
    """Harmonic mean of already macro-averaged precision and recall (unrounded)."""
    if precision + recall <= 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def log_loss_score(pairs: Sequence[Pair]) -> float:
    if not pairs:
        return 0.0
    total = 0.0
    for predicted, actual in pairs:
        p = min(1 - LOG_LOSS_EPSILON, max(LOG_LOSS_EPSILON, _binary_score(predicted)))
        y = 1.0 if is_positive(actual) else 0.0
        total += y * math.log(p) + (1 - y) * math.log(1 - p)
    return _round(-total / len(pairs))


def auc_roc_score(pairs: Sequence[Pair]) -> float:
    """Wilcoxon-Mann-Whitney AUC.

    Predictions are sorted by score descending; the top score gets rank ``n``
    and tied scores share their average rank.
    """
    if not pairs:
        return 0.0
    scored = sorted(
        ((_binary_score(predicted), is_positive(actual)) for predicted, actual in pairs),
        key=lambda item: item[0],
        reverse=True,
    )
    positives = sum(1 for _, positive in scored if positive)
    negatives = len(scored) - positives
    if positives == 0 or negatives == 0:
        return 0.0

    n = len(scored)
    rank_sum = 0.0
    i = 0
    while i < n:
        j = i
        while j + 1 < n and scored[j + 1][0] == scored[i][0]:
            j += 1
        # positions i..j (descending) hold ranks n-i .. n-j
        average_rank = ((n - i) + (n - j)) / 2.0
        rank_sum += average_rank * sum(1 for k in range(i, j + 1) if scored[k][1])
        i = j + 1

    auc = (rank_sum - positives * (positives + 1) / 2.0) / (positives * negatives)
    return _round(auc)


def mcc_score(pairs: Sequence[Pair]) -> float:
    if not pairs:
        return 0.0
    tp = tn = fp = fn = 0
    for predicted, actual in pairs:
        pred_pos, act_pos = is_positive(predicted), is_positive(actual)
        if pred_pos and act_pos:
            tp += 1
        elif not pred_pos and not act_pos:
            tn += 1
        elif pred_pos:
            fp += 1
        else:
            fn += 1
    denominator = (tp + fp) * (tp + fn) * (tn + fp) * (tn + fn)
    if denominator == 0:
        return 0.0
    return _round((tp * tn - fp * fn) / math.sqrt(denominator))


def classification_metrics(pairs: Sequence[Pair]) -> ClassificationMetrics:
    if not pairs:
        return ClassificationMetrics()
    per_class = per_class_scores(pairs)
    precision = macro_average(s.precision for s in per_class)
    recall = macro_average(s.recall for s in per_class)
    return ClassificationMetrics(
        accuracy=accuracy_score(pairs),
        precision=_round(precision),
        recall=_round(recall),
        f1=_round(f1_from_macro_averages(precision, recall)),
        macro_f1=_round(macro_f1_score(per_class)),
        log_loss=log_loss_score(pairs),
        auc_roc=auc_roc_score(pairs),
        mcc=mcc_score(pairs),
    )


# ----------
# Regression
# ----------


def _as_floats(pairs: Sequence[Pair]) -> list[tuple[float, float]]:
    values = []
    for predicted, actual in pairs:
        try:
            values.append((float(predicted), float(actual)))
        except (TypeError, ValueError) as exc:
            raise ComputationError(
                "non_numeric_value",
                f"Cannot score non-numeric regression value (predicted={predicted!r}, actual={actual!r})",
            ) from exc
    return values


def regression_metrics(pairs: Sequence[Pair]) -> RegressionMetrics:
    if not pairs:
        return RegressionMetrics()
    values = _as_floats(pairs)
    n = len(values)
    mean_actual = sum(actual for _, actual in values) / n

    abs_error = squared_error = ss_tot = percent_error = squared_log_error = 0.0
    valid_mape = 0
    for predicted, actual in values:
        error = actual - predicted
        abs_error += abs(error)
        squared_error += error * error
        ss_tot += (actual - mean_actual) ** 2
        if abs(actual) >= MAPE_EPSILON:
            percent_error += abs(error / actual)
            valid_mape += 1
        log_error = math.log(max(0.0, predicted) + 1) - math.log(max(0.0, actual) + 1)
        squared_log_error += log_error * log_error

    mse = squared_error / n
    return RegressionMetrics(
        mae=_round(abs_error / n),
        mse=_round(mse),
        rmse=_round(math.sqrt(mse)),
        r2=_round(1 - squared_error / ss_tot) if ss_tot > 0 else 0.0,
        mape=_round(percent_error / valid_mape * 100) if valid_mape else 0.0,
        rmsle=_round(math.sqrt(squared_log_error / n)),
    )


def compute_metrics(pairs: Sequence[Pair], problem_type: str) -> dict:
    if problem_type == REGRESSION:
        return regression_metrics(pairs).as_dict()
    return classification_metrics(pairs).as_dict()


def is_perfect_score(metrics: dict, problem_type: str) -> bool:
    if problem_type == REGRESSION:
        return metrics.get("mae") == 0 and metrics.get("mse") == 0 and metrics.get("rmse") == 0
    return metrics.get("accuracy") == 1.0
