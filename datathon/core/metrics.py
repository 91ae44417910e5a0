import logging
import time

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


# ----------
# Submissions
# ----------

SUBMISSIONS_RECEIVED_TOTAL = Counter(
    "submissions_received_total",
    "Total prediction tables received for scoring",
)

SUBMISSIONS_REJECTED_TOTAL = Counter(
    "submissions_rejected_total",
    "Submissions rejected at a pipeline gate",
    labelnames=("reason",),
)

SUBMISSIONS_UPLOAD_BYTES_TOTAL = Counter(
    "submissions_upload_bytes_total",
    "Total bytes uploaded for submissions",
)


# ----------
# Evaluations
# ----------

EVALUATION_COMPLETED_TOTAL = Counter(
    "evaluation_completed_total",
    "Total submissions scored and recorded",
    labelnames=("problem_type",),
)

EVALUATION_DURATION_SECONDS = Histogram(
    "evaluation_duration_seconds",
    "Time spent scoring a submission against both partitions",
    labelnames=("problem_type",),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

PERFECT_SCORE_FLAGS_TOTAL = Counter(
    "perfect_score_flags_total",
    "Submissions flagged for manual review because of a perfect score",
    labelnames=("problem_type",),
)


# ----------
# Answer key
# ----------

ANSWER_KEY_RELOADS_TOTAL = Counter(
    "answer_key_reloads_total",
    "Answer key reconstructions from the backing file",
    labelnames=("outcome",),  # success | missing_record | missing_file | parse_error
)

ANSWER_KEY_REPLACEMENTS_TOTAL = Counter(
    "answer_key_replacements_total",
    "Answer key uploads that replaced the active key",
)


# ----------
# Leaderboard
# ----------

LEADERBOARD_QUERIES_TOTAL = Counter(
    "leaderboard_queries_total",
    "Total leaderboard queries",
    labelnames=("view",),
)

LEADERBOARD_QUERY_DURATION_SECONDS = Histogram(
    "leaderboard_query_duration_seconds",
    "Duration of leaderboard retrieval (including Redis/DB)",
)

LEADERBOARD_CACHE_TOTAL = Counter(
    "leaderboard_cache_total",
    "Leaderboard cache lookups",
    labelnames=("result",),  # hit | miss | error
)


def init_fastapi_instrumentation(app) -> None:
    """Attach Prometheus HTTP instrumentation to the FastAPI app.

    The ``/metrics`` route itself is served by ``datathon.api.prometheus_metrics``.
    """
    from prometheus_fastapi_instrumentator import Instrumentator
    from prometheus_client import REGISTRY

    instrumentator = Instrumentator(registry=REGISTRY)
    instrumentator.instrument(app)


class DurationTimer:
    """Simple context manager to measure durations with perf_counter."""

    def __init__(self):
        self._start = 0.0
        self.seconds = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.seconds = max(0.0, time.perf_counter() - self._start)
        return False
